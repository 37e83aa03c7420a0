from __future__ import annotations

from typing import Annotated

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import AuthError


REQUIRED_CREDENTIALS: dict[str, str] = {
    "cloudinary_name": "CLOUDINARY_NAME",
    "cloudinary_key": "CLOUDINARY_KEY",
    "cloudinary_secret": "CLOUDINARY_SECRET",
    "strapi_base_url": "STRAPI_CLOUD_BASE_URL",
    "strapi_api_token": "STRAPI_CLOUD_API_TOKEN",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "cloudinary.env", "strapi-cloud.env"),
        extra="ignore",
        populate_by_name=True,
    )

    cloudinary_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLOUDINARY_NAME", "CLOUDINARY_CLOUD_NAME"),
    )
    cloudinary_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLOUDINARY_KEY", "CLOUDINARY_API_KEY"),
    )
    cloudinary_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLOUDINARY_SECRET", "CLOUDINARY_API_SECRET"),
    )
    strapi_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STRAPI_CLOUD_BASE_URL", "STRAPI_URL"),
    )
    strapi_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STRAPI_CLOUD_API_TOKEN", "STRAPI_API_TOKEN"),
    )

    cdn_root_folder: str = "beckwithbarrow"
    cdn_api_base_url: str = "https://api.cloudinary.com/v1_1"
    cdn_delivery_base_url: str = "https://res.cloudinary.com"
    cdn_page_size: int = 500
    cdn_reference_provider: str = "cloudinary"
    reference_provider_names: Annotated[list[str], NoDecode] = [
        "cloudinary",
        "cloudinary-reference",
        "cdn-reference",
    ]

    cms_root_folder_id: int | None = None
    cms_page_size: int = 100
    cms_max_pages: int = 50
    cms_requires_binary_upload: bool = False

    retry_max_attempts: int = 4
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    request_delay_seconds: float = 0.2
    request_timeout_seconds: float = 20.0

    leftover_name_prefixes: Annotated[list[str], NoDecode] = ["logo_", "logos_"]

    sentry_dsn: str | None = Field(
        default=None, validation_alias=AliasChoices("SENTRY_DSN", "MEDIASYNC_SENTRY_DSN")
    )

    @field_validator("reference_provider_names", "leftover_name_prefixes", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _normalize(self):
        self.cdn_root_folder = self.cdn_root_folder.strip().strip("/")
        self.cdn_api_base_url = self.cdn_api_base_url.rstrip("/")
        self.cdn_delivery_base_url = self.cdn_delivery_base_url.rstrip("/")
        if self.strapi_base_url:
            base = self.strapi_base_url.strip().rstrip("/")
            # Older env files point at the REST prefix rather than the host.
            if base.endswith("/api"):
                base = base[: -len("/api")]
            self.strapi_base_url = base
        self.cdn_page_size = max(1, min(int(self.cdn_page_size), 500))
        self.cms_page_size = max(1, int(self.cms_page_size))
        self.cms_max_pages = max(1, int(self.cms_max_pages))
        self.retry_max_attempts = max(1, int(self.retry_max_attempts))
        return self

    def missing_credentials(self) -> list[str]:
        return [
            env_name
            for field_name, env_name in REQUIRED_CREDENTIALS.items()
            if not (getattr(self, field_name) or "").strip()
        ]

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise AuthError(
                "Missing required environment variables: " + ", ".join(missing),
                context={"missing": ",".join(missing)},
            )


def load_settings(**overrides) -> Settings:
    """Build the settings for one invocation; callers thread the result through a RunContext."""
    return Settings(**overrides)
