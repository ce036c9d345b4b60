"""
Generation client for the relay topology.

The relay (see main.py) holds the Gemini credential server-side, performs the
image extraction itself and answers with {"result": dataURI} or {"error": ...}.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .errors import (
    ConfigurationError,
    RemoteStatusError,
    RemoteTimeoutError,
    RemoteTransportError,
)
from .gemini import GenerationClient
from .models import (
    Candidate,
    Candidates,
    FinishReason,
    ImagePart,
    RawRemoteResult,
    TryOnRequest,
    split_data_uri,
)

logger = logging.getLogger(__name__)


async def _relay_post_json(
    client: httpx.AsyncClient,
    *,
    url: str,
    payload: Dict[str, Any],
) -> httpx.Response:
    return await client.post(url, json=payload)


def _result_from_relay(body: Any) -> RawRemoteResult:
    reference = body.get("result") if isinstance(body, dict) else None
    if not reference:
        return Candidates(candidates=())
    media_type, data = split_data_uri(str(reference))
    image = ImagePart(data=data, media_type=media_type or "image/png")
    return Candidates(candidates=(Candidate(finish_reason=FinishReason.STOP, parts=(image,)),))


class RelayClient(GenerationClient):
    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def generate(self, request: TryOnRequest) -> RawRemoteResult:
        if not self.settings.relay_url:
            raise ConfigurationError("TRYON_RELAY_URL is not configured")

        # The relay owns the prompt; only the two bare base64 payloads travel.
        payload = {
            "personImage": request.person_image.encoded_payload,
            "clothingImage": request.garment_image.encoded_payload,
        }
        try:
            response = await asyncio.wait_for(
                _relay_post_json(self.client, url=self.settings.relay_url, payload=payload),
                timeout=self.settings.request_timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Relay request timed out after {self.settings.request_timeout_s}s")
            raise RemoteTimeoutError("Relay request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Relay request failed: {type(e).__name__}: {e}")
            raise RemoteTransportError(f"Could not reach the try-on relay: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            message = response.text[:300]
            kind = None
            if isinstance(body, dict):
                message = str(body.get("error") or message)
                kind = body.get("kind")
            logger.error(f"Relay error: {response.status_code} ({kind or 'no kind'}) - {message}")
            raise RemoteStatusError(message, status_code=response.status_code, kind=kind)

        if body is None:
            raise RemoteTransportError("Relay returned a response that is not JSON")
        return _result_from_relay(body)
