"""
Pytest configuration and shared fixtures
"""
import base64
import io
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before importing app
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.pop("TRYON_RELAY_URL", None)

from main import app, create_app  # noqa: E402
from services.config import Settings  # noqa: E402


class DummyResponse:
    """Stands in for httpx.Response in monkeypatched network calls."""

    def __init__(self, *, ok: bool = True, status_code: int = 200, text: str = "", data=None, headers=None, content=b""):
        self.is_success = ok
        self.status_code = status_code
        self.text = text
        self._data = data
        self.headers = headers or {}
        self.content = content

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


def make_image_bytes(width: int, height: int, *, fmt: str = "PNG", mode: str = "RGB", color=(200, 120, 80)) -> bytes:
    from PIL import Image as PILImage  # type: ignore

    img = PILImage.new(mode, (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_image_b64(width: int, height: int, **kwargs) -> str:
    return base64.b64encode(make_image_bytes(width, height, **kwargs)).decode("utf-8")


def image_candidate(data: str = "AAAA", finish_reason: str = "STOP", mime_type: str = "image/png"):
    return {
        "finishReason": finish_reason,
        "content": {"parts": [{"inline_data": {"data": data, "mime_type": mime_type}}]},
    }


@pytest.fixture
def settings():
    return Settings(gemini_api_key="test-key", rate_limit_per_minute=0)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app"""
    return TestClient(app)


@pytest.fixture
def make_client():
    """Build a test client around an app with explicit settings."""

    def _make(settings: Settings, generation_client=None) -> TestClient:
        return TestClient(create_app(settings, generation_client))

    return _make


@pytest.fixture
def sample_image_bytes():
    """Create sample image bytes for testing"""
    return make_image_bytes(512, 512, color=(255, 255, 255))


@pytest.fixture
def sample_image_b64(sample_image_bytes):
    return base64.b64encode(sample_image_bytes).decode("utf-8")
