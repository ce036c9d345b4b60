import base64
import binascii
import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import DEFAULT_JPEG_QUALITY, DEFAULT_MAX_DIMENSION
from .errors import NormalizationError
from .models import NormalizedImage, split_data_uri

logger = logging.getLogger(__name__)

OUTPUT_MEDIA_TYPE = "image/jpeg"


def _try_register_heif() -> bool:
    """
    Try to enable HEIC/HEIF decoding in Pillow via pillow-heif.
    This is optional at runtime; if not installed, HEIC/HEIF uploads fail normalization.
    """
    try:
        import pillow_heif  # type: ignore

        pillow_heif.register_heif_opener()  # type: ignore
        return True
    except ImportError:
        return False


_HEIF_REGISTERED: Optional[bool] = None


def ensure_heif_registered() -> bool:
    global _HEIF_REGISTERED
    if _HEIF_REGISTERED is None:
        _HEIF_REGISTERED = _try_register_heif()
        if _HEIF_REGISTERED:
            logger.info("pillow-heif enabled: HEIC/HEIF decoding available")
        else:
            logger.info("pillow-heif not available: HEIC/HEIF decoding NOT available")
    return bool(_HEIF_REGISTERED)


def scaled_size(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """
    Size that fits within max_dimension on the longest side, keeping aspect ratio.
    Never upscales; when downscaling the longest side lands exactly on max_dimension.
    """
    if max_dimension <= 0:
        raise ValueError("max_dimension must be > 0")
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / float(longest)
    if width >= height:
        return max_dimension, max(1, int(round(height * scale)))
    return max(1, int(round(width * scale))), max_dimension


def _flatten_to_rgb(im: Image.Image) -> Image.Image:
    # JPEG has no alpha channel: composite transparent pixels onto white.
    if im.mode == "P" and "transparency" in (im.info or {}):
        im = im.convert("RGBA")
    if im.mode in ("RGBA", "LA"):
        bg = Image.new("RGB", im.size, (255, 255, 255))
        bg.paste(im, mask=im.split()[-1])
        return bg
    return im.convert("RGB")


def normalize_image_bytes(
    image_bytes: bytes,
    *,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> NormalizedImage:
    """
    Decode an image, apply EXIF orientation, downscale to max_dimension (longest side)
    and re-encode as JPEG at jpeg_quality.

    Raises NormalizationError if the bytes are not a decodable image.
    """
    if not image_bytes:
        raise NormalizationError("Empty image")

    # Enable HEIC/HEIF decoding if possible (no-op if not installed)
    ensure_heif_registered()

    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            im.load()
            im = ImageOps.exif_transpose(im)

            width, height = im.size
            new_w, new_h = scaled_size(width, height, max_dimension)
            if (new_w, new_h) != (width, height):
                im = im.resize((new_w, new_h), Image.Resampling.LANCZOS)

            out = io.BytesIO()
            _flatten_to_rgb(im).save(
                out, format="JPEG", quality=jpeg_quality, optimize=True, progressive=True
            )
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        raise NormalizationError(f"Could not decode image: {e}") from e

    logger.debug(f"Normalized image {width}x{height} -> {new_w}x{new_h} at q={jpeg_quality}")
    return NormalizedImage(
        width=new_w,
        height=new_h,
        encoded_payload=base64.b64encode(out.getvalue()).decode("utf-8"),
        media_type=OUTPUT_MEDIA_TYPE,
    )


def decode_payload(encoded_image: str) -> bytes:
    """Decode a bare base64 payload or a base64 data URI."""
    if not encoded_image or not encoded_image.strip():
        raise NormalizationError("Empty image")
    _, payload = split_data_uri(encoded_image)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise NormalizationError(f"Image is not valid base64: {e}") from e


def normalize(
    encoded_image: str,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    *,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> NormalizedImage:
    """
    Normalize an encoded upload (base64 or data URI) for transmission to the model.
    """
    return normalize_image_bytes(
        decode_payload(encoded_image),
        max_dimension=max_dimension,
        jpeg_quality=jpeg_quality,
    )


def normalize_with_budget(
    encoded_image: str,
    *,
    max_bytes: int,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    min_dimension: int = 400,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    min_jpeg_quality: int = 50,
) -> NormalizedImage:
    """
    Normalize an image and keep the encoded output <= max_bytes by progressively
    downscaling and reducing quality (best-effort).

    Falls back to the smallest attempt if the budget cannot be met.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be > 0")

    image_bytes = decode_payload(encoded_image)
    dim = max_dimension
    floor_dim = min(min_dimension, max_dimension)
    q = jpeg_quality
    floor_q = min(min_jpeg_quality, jpeg_quality)

    best = None
    for _ in range(8):
        best = normalize_image_bytes(image_bytes, max_dimension=dim, jpeg_quality=q)
        if best.byte_size <= max_bytes:
            return best

        if dim == floor_dim and q == floor_q:
            break

        # Tighten knobs
        dim = max(floor_dim, int(dim * 0.85))
        q = max(floor_q, q - 6)

    logger.warning(
        f"Image still over budget after downscaling: {best.byte_size}B > {max_bytes}B "
        f"({best.width}x{best.height}). Continuing anyway (best-effort)."
    )
    return best
