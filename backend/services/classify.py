import asyncio
import logging
from typing import Optional, Union

from .errors import (
    ConfigurationError,
    MissingImageError,
    NormalizationError,
    RemoteStatusError,
    RemoteTimeoutError,
)
from .gemini import extract_image, is_safety_refused
from .models import (
    Candidates,
    ErrorKind,
    Failure,
    NoCandidates,
    RawRemoteResult,
    Success,
    TryOnOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_UNKNOWN_MESSAGE = "Failed to generate try-on image."

USER_MESSAGES = {
    ErrorKind.SAFETY_REFUSED: (
        "The AI blocked this request for safety reasons. Please try a different photo "
        "(avoid revealing clothing or complex poses)."
    ),
    ErrorKind.PERMISSION_DENIED: "Permission denied. API key issue or model access restricted.",
    ErrorKind.RATE_LIMITED: (
        "Too many requests. Image generation is rate limited. "
        "Please wait 30-60 seconds and try again."
    ),
    ErrorKind.SERVICE_UNAVAILABLE: "The AI service is currently overloaded. Please try again in a moment.",
    ErrorKind.EMPTY_GENERATION: "No image generated. The model might be busy or the input was filtered.",
    ErrorKind.INVALID_INPUT: "Images are missing. Please upload both a photo of yourself and a garment.",
    ErrorKind.MISCONFIGURED: "The try-on service is not configured correctly. Please contact support.",
}

UNREADABLE_IMAGE_MESSAGE = (
    "One of the images could not be read. Please upload a JPEG, PNG or WebP photo."
)

PERMISSION_STATUSES = {"PERMISSION_DENIED", "UNAUTHENTICATED"}
RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED"}
UNAVAILABLE_STATUSES = {"UNAVAILABLE", "DEADLINE_EXCEEDED"}

# HTTP status the relay answers with for each kind.
KIND_HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.SAFETY_REFUSED: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.MISCONFIGURED: 500,
    ErrorKind.UNKNOWN: 500,
    ErrorKind.EMPTY_GENERATION: 502,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
}


def status_for_kind(kind: ErrorKind) -> int:
    return KIND_HTTP_STATUS[kind]


def failure(kind: ErrorKind, message: Optional[str] = None) -> Failure:
    return Failure(kind=kind, message=message or USER_MESSAGES.get(kind, DEFAULT_UNKNOWN_MESSAGE))


def _parse_kind(value: Optional[str]) -> Optional[ErrorKind]:
    if not value:
        return None
    try:
        return ErrorKind(value)
    except ValueError:
        return None


def _classify_status(err: RemoteStatusError) -> Failure:
    relay_kind = _parse_kind(err.kind)
    if relay_kind is not None:
        if relay_kind is ErrorKind.UNKNOWN:
            return failure(relay_kind, str(err) or None)
        return failure(relay_kind)

    status = (err.status or "").upper()
    if err.status_code in (401, 403) or status in PERMISSION_STATUSES:
        return failure(ErrorKind.PERMISSION_DENIED)
    if err.status_code == 429 or status in RATE_LIMIT_STATUSES:
        return failure(ErrorKind.RATE_LIMITED)
    if err.status_code in (502, 503, 504) or status in UNAVAILABLE_STATUSES:
        return failure(ErrorKind.SERVICE_UNAVAILABLE)
    return failure(ErrorKind.UNKNOWN, str(err) or None)


def classify(signal: Union[BaseException, RawRemoteResult, None]) -> Failure:
    """
    Map a failure signal to a user-facing Failure.

    `signal` is either an exception raised by normalization or a generation
    client, or a raw result that yielded no usable image. Every input maps to
    exactly one ErrorKind; anything unrecognized is UNKNOWN.
    """
    if isinstance(signal, (NoCandidates, Candidates)):
        if is_safety_refused(signal):
            return failure(ErrorKind.SAFETY_REFUSED)
        return failure(ErrorKind.EMPTY_GENERATION)

    if isinstance(signal, RemoteStatusError):
        return _classify_status(signal)
    if isinstance(signal, (RemoteTimeoutError, asyncio.TimeoutError)):
        return failure(ErrorKind.SERVICE_UNAVAILABLE)
    if isinstance(signal, MissingImageError):
        return failure(ErrorKind.INVALID_INPUT)
    if isinstance(signal, NormalizationError):
        return failure(ErrorKind.INVALID_INPUT, UNREADABLE_IMAGE_MESSAGE)
    if isinstance(signal, ConfigurationError):
        return failure(ErrorKind.MISCONFIGURED)

    message = str(signal) if signal is not None else ""
    return failure(ErrorKind.UNKNOWN, message or None)


def outcome_from_result(result: RawRemoteResult) -> TryOnOutcome:
    """
    Turn a structurally valid remote result into an outcome.
    A safety refusal wins even when the refused candidate carries an image.
    """
    if is_safety_refused(result):
        logger.warning("Generation refused by safety filter")
        return classify(result)

    image = extract_image(result)
    if image is None:
        logger.warning("Generation returned no image part")
        return classify(result)
    return Success(image_reference=image.data_uri)
