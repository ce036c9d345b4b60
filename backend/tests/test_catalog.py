import httpx
import pytest

from conftest import DummyResponse, make_image_b64, make_image_bytes


def _item(reference):
    from services.models import CatalogItem

    return CatalogItem(id="sku-1", title="Linen Shirt", price_label="$49", image_reference=reference)


def test_resolve_reference():
    from services.catalog import resolve_reference
    from services.errors import CatalogFetchError

    assert resolve_reference("https://cdn.example/a.png") == "https://cdn.example/a.png"
    assert resolve_reference("/images/a.png", "https://shop.example/") == "https://shop.example/images/a.png"
    assert resolve_reference("images/a.png", "https://shop.example/static") == "https://shop.example/static/images/a.png"
    with pytest.raises(CatalogFetchError):
        resolve_reference("/images/a.png")


@pytest.mark.asyncio
async def test_fetch_catalog_image_from_url(monkeypatch):
    from services import catalog

    raw = make_image_bytes(120, 160, fmt="PNG")
    seen = []

    async def fake_get(_client, url):
        seen.append(url)
        return DummyResponse(content=raw, headers={"content-type": "image/png; charset=binary"})

    monkeypatch.setattr(catalog, "_catalog_get", fake_get)
    async with httpx.AsyncClient() as client:
        image = await catalog.fetch_catalog_image(
            _item("/catalog/shirt.png"), client=client, base_url="https://shop.example"
        )

    assert seen == ["https://shop.example/catalog/shirt.png"]
    assert image.raw_bytes == raw
    assert image.media_type == "image/png"
    assert not image.is_empty


@pytest.mark.asyncio
async def test_media_type_falls_back_to_extension(monkeypatch):
    from services import catalog

    async def fake_get(_client, url):
        return DummyResponse(content=b"\xff\xd8\xff", headers={"content-type": "application/octet-stream"})

    monkeypatch.setattr(catalog, "_catalog_get", fake_get)
    async with httpx.AsyncClient() as client:
        image = await catalog.fetch_catalog_image(_item("https://cdn.example/dress.webp"), client=client)

    assert image.media_type == "image/webp"


@pytest.mark.asyncio
async def test_data_uri_reference_needs_no_network(monkeypatch):
    from services import catalog

    async def fake_get(*_args, **_kwargs):
        raise AssertionError("network must not be called")

    monkeypatch.setattr(catalog, "_catalog_get", fake_get)
    async with httpx.AsyncClient() as client:
        image = await catalog.fetch_catalog_image(
            _item("data:image/png;base64," + make_image_b64(20, 20)), client=client
        )

    assert image.media_type == "image/png"
    assert not image.is_empty


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        DummyResponse(ok=False, status_code=404),
        DummyResponse(content=b"", headers={"content-type": "image/png"}),
    ],
)
async def test_bad_responses_raise(monkeypatch, response):
    from services import catalog
    from services.errors import CatalogFetchError

    async def fake_get(*_args, **_kwargs):
        return response

    monkeypatch.setattr(catalog, "_catalog_get", fake_get)
    async with httpx.AsyncClient() as client:
        with pytest.raises(CatalogFetchError):
            await catalog.fetch_catalog_image(_item("https://cdn.example/a.png"), client=client)


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(monkeypatch):
    from services import catalog
    from services.errors import CatalogFetchError

    async def fake_get(*_args, **_kwargs):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(catalog, "_catalog_get", fake_get)
    async with httpx.AsyncClient() as client:
        with pytest.raises(CatalogFetchError):
            await catalog.fetch_catalog_image(_item("https://cdn.example/a.png"), client=client)
