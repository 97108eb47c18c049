"""Application configuration using pydantic-settings."""

from functools import cached_property, lru_cache
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_SESSION_SECRET = "dev-secret-key-change-in-production"


def _split_csv(value: str) -> list[str]:
    items: list[str] = []
    for item in value.split(","):
        item = item.strip()
        if item and item not in items:
            items.append(item)
    return items


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Session cookie signing key
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    session_secret_key: str = _DEV_SESSION_SECRET
    session_max_age_seconds: int = 14 * 24 * 60 * 60

    # Comma-separated list of external domains a redirect may point at.
    # Subdomains of each entry are accepted too.
    allowed_redirect_domains: str = (
        "imobibase.com,www.imobibase.com,app.imobibase.com,admin.imobibase.com"
    )

    # Comma-separated list of internal path prefixes a redirect may point at.
    allowed_redirect_paths: str = (
        "/dashboard,/properties,/leads,/calendar,/reports,/settings,/profile,"
        "/auth/login,/auth/callback,/auth/verify-email,/auth/reset-password"
    )
    redirect_fallback_path: str = "/dashboard"

    # Inbound webhook shared secrets, one per vendor
    stripe_webhook_secret: str = ""
    whatsapp_app_secret: str = ""
    clicksign_webhook_secret: str = ""
    webhook_max_skew_seconds: int = 300

    csrf_header_name: str = "X-CSRF-Token"
    # Comma-separated path prefixes that skip CSRF validation
    csrf_exempt_paths: str = (
        "/api/auth/login,/api/auth/register,/api/webhooks/,/health"
    )

    # Feature flags, production defaults
    # Set DEBUG=true in .env for local development
    debug: bool = False  # Allows http:// redirects, relaxes secret validation
    require_https: bool = True  # Session cookies require HTTPS
    enable_docs: bool = False  # Swagger UI at /docs

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        # In production (debug=False), require security config
        if not self.debug:
            if self.session_secret_key == _DEV_SESSION_SECRET:
                raise ValueError(
                    "SESSION_SECRET_KEY must be set to a secure random value. "
                    "Set DEBUG=true to skip this check in development."
                )
            missing = [
                name.upper()
                for name in (
                    "stripe_webhook_secret",
                    "whatsapp_app_secret",
                    "clicksign_webhook_secret",
                )
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"{', '.join(missing)} must be set for webhook validation. "
                    "Set DEBUG=true to skip this check in development."
                )
        if not self.redirect_fallback_path.startswith("/"):
            raise ValueError("REDIRECT_FALLBACK_PATH must be an internal path")
        return self

    @cached_property
    def redirect_domains(self) -> list[str]:
        return _split_csv(self.allowed_redirect_domains.lower())

    @cached_property
    def redirect_paths(self) -> list[str]:
        return _split_csv(self.allowed_redirect_paths)

    @cached_property
    def csrf_exempt_prefixes(self) -> list[str]:
        return _split_csv(self.csrf_exempt_paths)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this in tests to reset settings between test cases.
    After clearing, the next get_settings() call will create
    a fresh Settings instance with current environment variables.

    Example:
        def test_something(monkeypatch):
            monkeypatch.setenv("DEBUG", "true")
            clear_settings_cache()
            settings = get_settings()  # Fresh instance
    """
    get_settings.cache_clear()
