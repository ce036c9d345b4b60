"""
Value types shared by the try-on pipeline.

Remote responses are modelled as a tagged union per nesting level
(result -> candidate -> part) so callers branch on types instead of probing
optional dict keys.
"""
import base64
import binascii
import enum
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)


def split_data_uri(value: str) -> Tuple[Optional[str], str]:
    """Return (media_type, payload) for a data URI, or (None, value) for a bare base64 string."""
    match = _DATA_URI_RE.match(value.strip())
    if not match:
        return None, value.strip()
    return match.group("mime"), match.group("data")


def to_data_uri(payload: str, media_type: str) -> str:
    return f"data:{media_type};base64,{payload}"


@dataclass(frozen=True)
class UploadedImage:
    """An image as handed over by the upload widget or the catalog."""

    raw_bytes: bytes = b""
    encoded_payload: Optional[str] = None
    media_type: str = ""

    def __post_init__(self):
        if self.encoded_payload and not self.media_type:
            raise ValueError("media_type is required when encoded_payload is present")

    @classmethod
    def empty(cls) -> "UploadedImage":
        return cls()

    @classmethod
    def from_bytes(cls, raw_bytes: bytes, media_type: str) -> "UploadedImage":
        if not raw_bytes:
            return cls.empty()
        return cls(
            raw_bytes=raw_bytes,
            encoded_payload=base64.b64encode(raw_bytes).decode("utf-8"),
            media_type=media_type or "application/octet-stream",
        )

    @classmethod
    def from_data_uri(cls, data_uri: str) -> "UploadedImage":
        media_type, payload = split_data_uri(data_uri)
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return cls.empty()
        return cls.from_bytes(raw, media_type or "image/jpeg")

    @property
    def is_empty(self) -> bool:
        return not self.encoded_payload

    @property
    def data_uri(self) -> Optional[str]:
        if self.is_empty:
            return None
        return to_data_uri(self.encoded_payload, self.media_type)


@dataclass(frozen=True)
class NormalizedImage:
    width: int
    height: int
    encoded_payload: str
    media_type: str = "image/jpeg"

    @property
    def byte_size(self) -> int:
        # base64 chars are ~4/3 of the decoded bytes
        return len(self.encoded_payload) * 3 // 4


@dataclass(frozen=True)
class TryOnRequest:
    person_image: NormalizedImage
    garment_image: NormalizedImage
    instruction: str


class ErrorKind(str, enum.Enum):
    SAFETY_REFUSED = "safety_refused"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EMPTY_GENERATION = "empty_generation"
    INVALID_INPUT = "invalid_input"
    MISCONFIGURED = "misconfigured"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Success:
    image_reference: str


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str


TryOnOutcome = Union[Success, Failure]


class FinishReason(str, enum.Enum):
    STOP = "STOP"
    SAFETY = "SAFETY"
    OTHER = "OTHER"
    UNSPECIFIED = "UNSPECIFIED"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: str
    media_type: str = "image/png"

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.data, self.media_type)


Part = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class Candidate:
    finish_reason: FinishReason = FinishReason.UNSPECIFIED
    parts: Tuple[Part, ...] = ()


@dataclass(frozen=True)
class NoCandidates:
    # Set when the prompt itself was blocked (promptFeedback.blockReason).
    block_reason: Optional[str] = None


@dataclass(frozen=True)
class Candidates:
    candidates: Tuple[Candidate, ...] = field(default_factory=tuple)


RawRemoteResult = Union[NoCandidates, Candidates]


@dataclass(frozen=True)
class CatalogItem:
    id: str
    title: str
    price_label: str
    image_reference: str


@dataclass
class GenerationState:
    """What the UI renders for the current try-on attempt."""

    image_url: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
