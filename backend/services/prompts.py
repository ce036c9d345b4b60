"""
Instruction text sent with every try-on request.

Image 1 is always the person, image 2 the garment reference; the Gemini
payload builder sends the parts in that order.
"""

TRY_ON_PROMPT = """VIRTUAL TRY-ON TASK

INPUTS:
[Image 1]: TARGET PERSON (the user). This is the MASTER CANVAS.
[Image 2]: CLOTHING REFERENCE (the outfit). Use it as a TEXTURE REFERENCE ONLY.

STRICT INSTRUCTIONS:
1. IDENTITY: Generate a photorealistic image of the TARGET PERSON from [Image 1] wearing the outfit from [Image 2].
   You MUST keep the face, facial features, skin tone, body proportions, pose, background and lighting of [Image 1] unchanged.
   Do NOT darken the image. The result must look like [Image 1] with different clothes.
2. REPLACE CLOTHING: Completely REMOVE the original clothing of the TARGET PERSON before applying the new outfit.
   Do NOT overlay or layer the new outfit on top of the old one. No part of the original clothing may remain visible
   beneath, around or beside the new garment.
3. SKIN: If the new garment exposes more skin than the original outfit (e.g. sleeveless, shorter hem, open neckline),
   generate realistic skin that matches the TARGET PERSON's skin tone and texture. Never leave gaps or artifacts.
4. IGNORE MANNEQUIN: If [Image 2] shows a mannequin, a dress form or another human model, completely ignore their body,
   face and background. Extract ONLY the fabric pattern, colour, cut and embroidery, and keep those details exact.
   Never generate the mannequin or the other model.
5. SINGLE PERSON: The output must contain EXACTLY ONE person, the TARGET PERSON. Do NOT generate a side-by-side
   comparison or a before/after composite, and do NOT include the original person next to the new one.
6. OUTPUT: Return exactly ONE image. A text-only answer is a failure.

CRITICAL FAILURE CONDITIONS:
- The face or body shape changes -> FAILED.
- The background or lighting changes from [Image 1] -> FAILED.
- Any original clothing is still visible -> FAILED.
- The output looks like a mannequin or shows more than one person -> FAILED.

Output: the final generated image only, containing a SINGLE person."""


def build_try_on_prompt() -> str:
    return TRY_ON_PROMPT
