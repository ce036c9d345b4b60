"""
Turns a catalog/gallery entry into an UploadedImage so it can go through the
same normalization as a user upload.
"""
import logging
import mimetypes
from typing import Optional
from urllib.parse import urljoin

import httpx

from .errors import CatalogFetchError
from .models import CatalogItem, UploadedImage

logger = logging.getLogger(__name__)


async def _catalog_get(client: httpx.AsyncClient, url: str) -> httpx.Response:
    return await client.get(url, follow_redirects=True)


def resolve_reference(reference: str, base_url: Optional[str] = None) -> str:
    if reference.startswith(("http://", "https://", "data:")):
        return reference
    if not base_url:
        raise CatalogFetchError(f"Relative catalog image reference without CATALOG_BASE_URL: {reference}")
    return urljoin(base_url.rstrip("/") + "/", reference.lstrip("/"))


def _media_type(response: httpx.Response, url: str) -> str:
    content_type = (response.headers.get("content-type") or "").split(";")[0].strip().lower()
    if content_type.startswith("image/"):
        return content_type
    guessed, _ = mimetypes.guess_type(url)
    return guessed or "image/jpeg"


async def fetch_catalog_image(
    item: CatalogItem,
    *,
    client: httpx.AsyncClient,
    base_url: Optional[str] = None,
) -> UploadedImage:
    """
    Fetch the image behind `item.image_reference` (URL, path relative to base_url, or data URI).

    Raises CatalogFetchError if the image cannot be retrieved.
    """
    url = resolve_reference(item.image_reference, base_url)
    if url.startswith("data:"):
        image = UploadedImage.from_data_uri(url)
        if image.is_empty:
            raise CatalogFetchError(f"Catalog item {item.id} has an invalid data URI")
        return image

    logger.info(f"Fetching catalog image for {item.id} from {url}")
    try:
        response = await _catalog_get(client, url)
    except httpx.HTTPError as e:
        logger.error(f"Catalog image request failed for {item.id}: {e}")
        raise CatalogFetchError(f"Could not fetch image for {item.title}") from e

    if not response.is_success:
        logger.error(f"Catalog image fetch for {item.id} returned {response.status_code}")
        raise CatalogFetchError(f"Could not fetch image for {item.title} (HTTP {response.status_code})")
    if not response.content:
        raise CatalogFetchError(f"Catalog image for {item.title} is empty")

    return UploadedImage.from_bytes(response.content, _media_type(response, url))
