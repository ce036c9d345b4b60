from typing import Optional


class TryOnError(Exception):
    """Base class for every failure raised by the try-on services."""


class NormalizationError(TryOnError):
    """The uploaded image could not be decoded (bad local input, not a remote problem)."""


class MissingImageError(TryOnError):
    """A person or garment image has no encoded payload."""


class ConfigurationError(TryOnError):
    """Service credential or endpoint is not configured."""


class RemoteStatusError(TryOnError):
    """
    Non-2xx response from the generation endpoint or the relay.

    `status` is the structured status string from the error body when the
    remote provides one (e.g. "RESOURCE_EXHAUSTED"); `kind` is the error kind
    reported by the relay.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        status: Optional[str] = None,
        kind: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.status = status
        self.kind = kind


class RemoteTimeoutError(TryOnError):
    """The remote call did not complete within the configured timeout."""


class RemoteTransportError(TryOnError):
    """Network-level failure reaching the remote (DNS, connect, protocol)."""


class GenerationInProgressError(TryOnError):
    """A generation is already in flight for this session."""


class CatalogFetchError(TryOnError):
    """A catalog item's image could not be fetched."""
