import abc
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .config import Settings
from .errors import (
    ConfigurationError,
    RemoteStatusError,
    RemoteTimeoutError,
    RemoteTransportError,
)
from .models import (
    Candidate,
    Candidates,
    FinishReason,
    ImagePart,
    NoCandidates,
    Part,
    RawRemoteResult,
    TextPart,
    TryOnRequest,
)

logger = logging.getLogger(__name__)

# This module uses direct REST calls to the Gemini API with API key authentication.
# Wire field names stay inside the payload builder and the response parser below.

CONTENT_REJECTION_FINISH_REASONS = {
    "IMAGE_SAFETY",
    "SAFETY",
    "CONTENT_FILTER",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
}

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]


async def _gemini_post_json(
    client: httpx.AsyncClient,
    *,
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
) -> httpx.Response:
    """
    Thin wrapper for Gemini HTTP calls so tests can monkeypatch the network.
    """
    return await client.post(url, headers=headers, json=payload)


def build_generate_content_payload(request: TryOnRequest, *, aspect_ratio: str = "3:4") -> Dict[str, Any]:
    """One text part followed by the person and garment images, in that order."""
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": request.instruction},
                    {
                        "inline_data": {
                            "mime_type": request.person_image.media_type,
                            "data": request.person_image.encoded_payload,
                        }
                    },
                    {
                        "inline_data": {
                            "mime_type": request.garment_image.media_type,
                            "data": request.garment_image.encoded_payload,
                        }
                    },
                ],
            }
        ],
        "generationConfig": {
            "temperature": 0.0,
            "responseModalities": ["TEXT", "IMAGE"],
            "imageConfig": {"aspectRatio": aspect_ratio},
        },
        "safetySettings": SAFETY_SETTINGS,
    }


def parse_finish_reason(value: Any) -> FinishReason:
    fr = str(value or "").strip().upper()
    if not fr or fr == "FINISH_REASON_UNSPECIFIED":
        return FinishReason.UNSPECIFIED
    if fr == "STOP":
        return FinishReason.STOP
    if fr in CONTENT_REJECTION_FINISH_REASONS:
        return FinishReason.SAFETY
    return FinishReason.OTHER


def _parse_part(part: Any) -> Optional[Part]:
    if not isinstance(part, dict):
        return None
    # Accept snake_case (REST/Python) and camelCase (JS SDK) keys
    inline = part.get("inline_data") or part.get("inlineData")
    if isinstance(inline, dict) and inline.get("data"):
        mime_type = inline.get("mime_type") or inline.get("mimeType") or "image/png"
        return ImagePart(data=str(inline["data"]), media_type=str(mime_type))
    text = part.get("text")
    if isinstance(text, str):
        return TextPart(text=text)
    return None


def _parse_candidate(candidate: Dict[str, Any]) -> Candidate:
    finish_reason = parse_finish_reason(candidate.get("finishReason") or candidate.get("finish_reason"))
    content = candidate.get("content")
    raw_parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(raw_parts, list):
        raw_parts = []
    parts = tuple(p for p in (_parse_part(raw) for raw in raw_parts) if p is not None)
    return Candidate(finish_reason=finish_reason, parts=parts)


def parse_generate_content_response(data: Any) -> RawRemoteResult:
    """Convert a generateContent JSON body into the typed result union."""
    if not isinstance(data, dict):
        return NoCandidates()

    raw_candidates = data.get("candidates")
    if not isinstance(raw_candidates, list) or not raw_candidates:
        feedback = data.get("promptFeedback") or data.get("prompt_feedback") or {}
        block_reason = None
        if isinstance(feedback, dict):
            block_reason = feedback.get("blockReason") or feedback.get("block_reason")
        return NoCandidates(block_reason=str(block_reason) if block_reason else None)

    return Candidates(
        candidates=tuple(_parse_candidate(c) for c in raw_candidates if isinstance(c, dict))
    )


def is_safety_refused(result: RawRemoteResult) -> bool:
    if isinstance(result, NoCandidates):
        return bool(result.block_reason)
    return any(c.finish_reason is FinishReason.SAFETY for c in result.candidates)


def extract_image(result: RawRemoteResult) -> Optional[ImagePart]:
    """First inline image across candidates (in order) and their parts (in order)."""
    if isinstance(result, NoCandidates):
        return None
    for candidate in result.candidates:
        for part in candidate.parts:
            if isinstance(part, ImagePart):
                return part
    return None


def _error_details(response: httpx.Response) -> Tuple[str, Optional[str]]:
    """Return (message, status) from a Gemini error body such as {"error": {"status": "RESOURCE_EXHAUSTED"}}."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        return str(err.get("message") or response.text[:300]), err.get("status")
    return response.text[:300], None


class GenerationClient(abc.ABC):
    """Sends one TryOnRequest and returns the raw remote result."""

    @abc.abstractmethod
    async def generate(self, request: TryOnRequest) -> RawRemoteResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class GeminiClient(GenerationClient):
    """
    Calls Gemini generateContent directly.

    Exactly one HTTP round trip per generate() call; retries are left to the caller.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout_s)
        return self._client

    @property
    def endpoint(self) -> str:
        return f"{self.settings.gemini_base_url}/{self.settings.gemini_model}:generateContent"

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def generate(self, request: TryOnRequest) -> RawRemoteResult:
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY or GOOGLE_API_KEY environment variable is required")

        payload = build_generate_content_payload(request, aspect_ratio=self.settings.aspect_ratio)
        logger.info(f"Calling Gemini image model: {self.settings.gemini_model}")
        try:
            response = await asyncio.wait_for(
                _gemini_post_json(
                    self.client,
                    url=self.endpoint,
                    # Header auth keeps the key out of logged request URLs
                    headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
                    payload=payload,
                ),
                timeout=self.settings.request_timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Gemini request timed out after {self.settings.request_timeout_s}s")
            raise RemoteTimeoutError("Gemini request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {type(e).__name__}: {e}")
            raise RemoteTransportError(f"Could not reach the image service: {e}") from e

        if not response.is_success:
            message, status = _error_details(response)
            logger.error(f"Gemini API error: {response.status_code} {status or ''} - {message}")
            raise RemoteStatusError(
                f"Gemini API error {response.status_code}: {message}",
                status_code=response.status_code,
                status=status,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteTransportError("Gemini returned a response that is not JSON") from e

        try:
            result = parse_generate_content_response(data)
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Could not parse Gemini response: {type(e).__name__}: {e}")
            raise RemoteTransportError("Gemini returned a malformed response") from e

        if isinstance(result, Candidates):
            logger.info(
                f"Gemini returned {len(result.candidates)} candidate(s); finish reasons: "
                f"{[c.finish_reason.value for c in result.candidates]}"
            )
        else:
            logger.warning(f"Gemini returned no candidates (block reason: {result.block_reason})")
        return result
