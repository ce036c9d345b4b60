"""
Settings for the try-on services.

Built once at process start by `load_settings()` and passed explicitly to the
clients and the app factory; nothing below reads the environment at call time.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_GEMINI_IMAGE_MODEL = "gemini-2.5-flash-image"

# Normalizer knobs. Remote endpoints bill by image tokens, which scale with resolution.
DEFAULT_MAX_DIMENSION = 800
DEFAULT_JPEG_QUALITY = 70
DEFAULT_REQUEST_TIMEOUT_S = 60.0

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_IMAGE_MODEL
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    relay_url: Optional[str] = None

    max_dimension: int = DEFAULT_MAX_DIMENSION
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    max_image_bytes: int = 0  # 0 disables the byte budget
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    aspect_ratio: str = "3:4"

    catalog_base_url: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    rate_limit_per_minute: int = 10
    log_level: str = "INFO"

    @property
    def uses_relay(self) -> bool:
        return bool(self.relay_url)


def _env_int(key: str, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    value = os.getenv(key)
    if not value:
        return default
    try:
        number = int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {key}={value!r}; using {default}")
        return default
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        logger.warning(f"Ignoring out-of-range {key}={number} (allowed {minimum}..{maximum}); using {default}")
        return default
    return number


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={value!r}; using {default}")
        return default
    if number <= 0:
        logger.warning(f"Ignoring non-positive {key}={number}; using {default}")
        return default
    return number


def _env_list(key: str, default: List[str]) -> List[str]:
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from `.env` (if present) and the process environment."""
    load_dotenv(env_file)

    return Settings(
        # Prefer GEMINI_API_KEY, fall back to GOOGLE_API_KEY
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_IMAGE_MODEL", DEFAULT_GEMINI_IMAGE_MODEL),
        gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).rstrip("/"),
        relay_url=os.getenv("TRYON_RELAY_URL") or None,
        max_dimension=_env_int("TRYON_MAX_DIMENSION", DEFAULT_MAX_DIMENSION, minimum=1),
        jpeg_quality=_env_int("TRYON_JPEG_QUALITY", DEFAULT_JPEG_QUALITY, minimum=1, maximum=95),
        max_image_bytes=_env_int("TRYON_MAX_IMAGE_BYTES", 0, minimum=0),
        request_timeout_s=_env_float("TRYON_REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S),
        aspect_ratio=os.getenv("TRYON_ASPECT_RATIO", "3:4"),
        catalog_base_url=os.getenv("CATALOG_BASE_URL") or None,
        allowed_origins=_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
        rate_limit_per_minute=_env_int("TRYON_RATE_LIMIT_PER_MINUTE", 10),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
