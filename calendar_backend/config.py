# calendar_backend/config.py
"""Application configuration using Pydantic Settings."""

from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from calendar_backend.exceptions import ConfigurationError

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

GOOGLE_SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class Settings(BaseSettings):
    """Settings loaded once at startup from the environment, or from .env when present."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Required
    db_url: str
    google_client_id: str
    google_client_secret: str
    google_redirect_url: str
    jwt_secret: str
    csrf_secret: str

    # Optional
    port: int = 8080
    env: str = ""
    log_level: str = "INFO"
    client_url: str | None = None
    google_api_timeout_seconds: float = 30.0
    jwks_cache_ttl_seconds: int = 3600

    @property
    def is_production(self) -> bool:
        return self.env == "production"


def load_settings(**overrides) -> Settings:
    """
    Build the process-wide Settings object.

    Raises:
        ConfigurationError: if a required variable is missing or empty
    """
    try:
        settings = Settings(**overrides)
    except PydanticValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]).upper() for err in e.errors()]
        raise ConfigurationError(f"{', '.join(missing)} is missing in environment variables") from e

    empty = [
        name.upper()
        for name in ("db_url", "google_client_id", "google_client_secret", "google_redirect_url", "jwt_secret", "csrf_secret")
        if not getattr(settings, name)
    ]
    if empty:
        raise ConfigurationError(f"{', '.join(empty)} is missing in environment variables")
    return settings
