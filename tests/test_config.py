import pytest

from mediasync.config import REQUIRED_CREDENTIALS, Settings
from mediasync.errors import AuthError


@pytest.fixture
def clean_env(monkeypatch):
    for name in list(REQUIRED_CREDENTIALS.values()) + [
        "CLOUDINARY_CLOUD_NAME",
        "CLOUDINARY_API_KEY",
        "CLOUDINARY_API_SECRET",
        "STRAPI_URL",
        "STRAPI_API_TOKEN",
        "LEFTOVER_NAME_PREFIXES",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_settings_read_credentials_from_environment(clean_env):
    clean_env.setenv("CLOUDINARY_NAME", "demo")
    clean_env.setenv("CLOUDINARY_API_KEY", "key")
    clean_env.setenv("CLOUDINARY_SECRET", "secret")
    clean_env.setenv("STRAPI_CLOUD_BASE_URL", "https://cms.example.com/api/")
    clean_env.setenv("STRAPI_CLOUD_API_TOKEN", "token")
    clean_env.setenv("LEFTOVER_NAME_PREFIXES", "logo_, agricola_ ,")

    settings = Settings(_env_file=None)

    assert settings.cloudinary_key == "key"
    assert settings.strapi_base_url == "https://cms.example.com"
    assert settings.leftover_name_prefixes == ["logo_", "agricola_"]
    assert settings.missing_credentials() == []
    settings.require_credentials()


def test_require_credentials_names_every_missing_variable(clean_env):
    settings = Settings(_env_file=None, cloudinary_name="demo")

    with pytest.raises(AuthError) as excinfo:
        settings.require_credentials()

    message = str(excinfo.value)
    for name in ("CLOUDINARY_KEY", "CLOUDINARY_SECRET", "STRAPI_CLOUD_BASE_URL", "STRAPI_CLOUD_API_TOKEN"):
        assert name in message
    assert "CLOUDINARY_NAME" not in message


def test_settings_clamp_tunables(clean_env):
    settings = Settings(_env_file=None, cdn_page_size=5000, retry_max_attempts=0, cdn_root_folder="/beckwithbarrow/")

    assert settings.cdn_page_size == 500
    assert settings.retry_max_attempts == 1
    assert settings.cdn_root_folder == "beckwithbarrow"
