import pytest

ENV_KEYS = [
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_IMAGE_MODEL",
    "GEMINI_BASE_URL",
    "TRYON_RELAY_URL",
    "TRYON_MAX_DIMENSION",
    "TRYON_JPEG_QUALITY",
    "TRYON_MAX_IMAGE_BYTES",
    "TRYON_REQUEST_TIMEOUT_S",
    "TRYON_ASPECT_RATIO",
    "CATALOG_BASE_URL",
    "ALLOWED_ORIGINS",
    "TRYON_RATE_LIMIT_PER_MINUTE",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        # setenv first so teardown also removes anything load_dotenv adds
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    # point load_dotenv at an empty file so a developer's .env doesn't leak in
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return str(env_file)


def test_defaults(clean_env):
    from services.config import DEFAULT_GEMINI_IMAGE_MODEL, load_settings

    s = load_settings(clean_env)

    assert s.gemini_api_key is None
    assert s.gemini_model == DEFAULT_GEMINI_IMAGE_MODEL
    assert s.max_dimension == 800
    assert s.jpeg_quality == 70
    assert s.request_timeout_s == 60.0
    assert s.max_image_bytes == 0
    assert not s.uses_relay


def test_google_api_key_is_fallback(clean_env, monkeypatch):
    from services.config import load_settings

    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
    assert load_settings(clean_env).gemini_api_key == "google-key"

    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    assert load_settings(clean_env).gemini_api_key == "gemini-key"


def test_overrides_and_bad_numbers(clean_env, monkeypatch):
    from services.config import load_settings

    monkeypatch.setenv("TRYON_MAX_DIMENSION", "1024")
    monkeypatch.setenv("TRYON_JPEG_QUALITY", "high")
    monkeypatch.setenv("TRYON_REQUEST_TIMEOUT_S", "12.5")
    monkeypatch.setenv("TRYON_RELAY_URL", "https://relay.example/api/generate-try-on")
    monkeypatch.setenv("GEMINI_BASE_URL", "https://proxy.example/models/")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example,")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = load_settings(clean_env)

    assert s.max_dimension == 1024
    assert s.jpeg_quality == 70
    assert s.request_timeout_s == 12.5
    assert s.uses_relay
    assert s.gemini_base_url == "https://proxy.example/models"
    assert s.allowed_origins == ["https://a.example", "https://b.example"]
    assert s.log_level == "DEBUG"


def test_env_file_is_read(clean_env, tmp_path):
    from services.config import load_settings

    env_file = tmp_path / "custom.env"
    env_file.write_text("TRYON_ASPECT_RATIO=1:1\nCATALOG_BASE_URL=https://shop.example\n")

    s = load_settings(str(env_file))

    assert s.aspect_ratio == "1:1"
    assert s.catalog_base_url == "https://shop.example"


@pytest.mark.parametrize(
    "key,value,attr,default",
    [
        ("TRYON_MAX_DIMENSION", "0", "max_dimension", 800),
        ("TRYON_MAX_DIMENSION", "-10", "max_dimension", 800),
        ("TRYON_JPEG_QUALITY", "0", "jpeg_quality", 70),
        ("TRYON_JPEG_QUALITY", "150", "jpeg_quality", 70),
        ("TRYON_MAX_IMAGE_BYTES", "-1", "max_image_bytes", 0),
        ("TRYON_REQUEST_TIMEOUT_S", "-5", "request_timeout_s", 60.0),
        ("TRYON_REQUEST_TIMEOUT_S", "0", "request_timeout_s", 60.0),
    ],
)
def test_out_of_range_values_fall_back_to_defaults(clean_env, monkeypatch, key, value, attr, default):
    from services.config import load_settings

    monkeypatch.setenv(key, value)
    assert getattr(load_settings(clean_env), attr) == default


def test_in_range_quality_is_kept(clean_env, monkeypatch):
    from services.config import load_settings

    monkeypatch.setenv("TRYON_JPEG_QUALITY", "95")
    assert load_settings(clean_env).jpeg_quality == 95
