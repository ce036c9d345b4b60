import httpx
import pytest

from conftest import DummyResponse, image_candidate, make_image_b64


def _request():
    from services.models import NormalizedImage, TryOnRequest

    return TryOnRequest(
        person_image=NormalizedImage(width=600, height=800, encoded_payload="UEVSU09O"),
        garment_image=NormalizedImage(width=800, height=800, encoded_payload="R0FSTUVOVA=="),
        instruction="ignored by the relay",
    )


@pytest.fixture
def relay_settings():
    from services.config import Settings

    return Settings(relay_url="https://relay.example/api/generate-try-on")


@pytest.mark.asyncio
async def test_relay_sends_bare_payloads_and_parses_result(monkeypatch, relay_settings):
    from services import relay_client
    from services.classify import outcome_from_result
    from services.models import Success

    sent = []

    async def fake_post(_client, *, url, payload):
        sent.append((url, payload))
        return DummyResponse(data={"result": "data:image/png;base64,QUJD"})

    monkeypatch.setattr(relay_client, "_relay_post_json", fake_post)
    result = await relay_client.RelayClient(relay_settings).generate(_request())

    assert sent == [
        ("https://relay.example/api/generate-try-on", {"personImage": "UEVSU09O", "clothingImage": "R0FSTUVOVA=="})
    ]
    assert outcome_from_result(result) == Success(image_reference="data:image/png;base64,QUJD")


@pytest.mark.asyncio
async def test_relay_429_is_rate_limited(monkeypatch, relay_settings):
    from services import relay_client
    from services.classify import classify
    from services.errors import RemoteStatusError
    from services.models import ErrorKind

    async def fake_post(*_args, **_kwargs):
        return DummyResponse(ok=False, status_code=429, data={"error": "Traffic is high."})

    monkeypatch.setattr(relay_client, "_relay_post_json", fake_post)
    with pytest.raises(RemoteStatusError) as exc_info:
        await relay_client.RelayClient(relay_settings).generate(_request())

    failure = classify(exc_info.value)
    assert failure.kind is ErrorKind.RATE_LIMITED
    assert "30-60 seconds" in failure.message


@pytest.mark.asyncio
async def test_relay_error_kind_is_carried(monkeypatch, relay_settings):
    from services import relay_client
    from services.errors import RemoteStatusError

    async def fake_post(*_args, **_kwargs):
        return DummyResponse(
            ok=False, status_code=500, data={"error": "Server configuration error", "kind": "misconfigured"}
        )

    monkeypatch.setattr(relay_client, "_relay_post_json", fake_post)
    with pytest.raises(RemoteStatusError) as exc_info:
        await relay_client.RelayClient(relay_settings).generate(_request())

    assert exc_info.value.kind == "misconfigured"
    assert str(exc_info.value) == "Server configuration error"


@pytest.mark.asyncio
async def test_relay_success_without_result_is_empty(monkeypatch, relay_settings):
    from services import relay_client
    from services.classify import outcome_from_result
    from services.models import ErrorKind

    async def fake_post(*_args, **_kwargs):
        return DummyResponse(data={})

    monkeypatch.setattr(relay_client, "_relay_post_json", fake_post)
    result = await relay_client.RelayClient(relay_settings).generate(_request())

    assert outcome_from_result(result).kind is ErrorKind.EMPTY_GENERATION


@pytest.mark.asyncio
async def test_relay_timeout_is_wrapped(monkeypatch, relay_settings):
    from services import relay_client
    from services.errors import RemoteTimeoutError

    async def fake_post(*_args, **_kwargs):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(relay_client, "_relay_post_json", fake_post)
    with pytest.raises(RemoteTimeoutError):
        await relay_client.RelayClient(relay_settings).generate(_request())


@pytest.mark.asyncio
async def test_missing_relay_url_is_configuration_error():
    from services.config import Settings
    from services.errors import ConfigurationError
    from services.relay_client import RelayClient

    with pytest.raises(ConfigurationError):
        await RelayClient(Settings()).generate(_request())


@pytest.mark.asyncio
async def test_relay_client_against_relay_app(settings, monkeypatch):
    """Relay client talking to the FastAPI relay in-process through an ASGI transport."""
    from main import create_app
    from services import gemini, relay_client
    from services.classify import outcome_from_result
    from services.config import Settings
    from services.models import NormalizedImage, TryOnRequest

    async def fake_gemini(*_args, **_kwargs):
        return DummyResponse(data={"candidates": [image_candidate("QUJD")]})

    monkeypatch.setattr(gemini, "_gemini_post_json", fake_gemini)
    app = create_app(settings)
    transport = httpx.ASGITransport(app=app)

    async def asgi_post(_client, *, url, payload):
        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as c:
            return await c.post(url, json=payload)

    monkeypatch.setattr(relay_client, "_relay_post_json", asgi_post)

    request = TryOnRequest(
        person_image=NormalizedImage(width=60, height=80, encoded_payload=make_image_b64(60, 80)),
        garment_image=NormalizedImage(width=80, height=80, encoded_payload=make_image_b64(80, 80)),
        instruction="",
    )
    client = relay_client.RelayClient(Settings(relay_url="/api/generate-try-on"))
    result = await client.generate(request)

    assert outcome_from_result(result).image_reference == "data:image/png;base64,QUJD"
