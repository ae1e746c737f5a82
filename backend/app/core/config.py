"""Application configuration loaded from environment variables.

Settings for the API gateway location, the browser-facing origin, token
cookies, and the edge routing layer. Uses pydantic-settings for validation
and .env file support.
"""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Token cookies live for 5 days regardless of the token's own expiry
_FIVE_DAYS_SECONDS = 5 * 24 * 60 * 60

# Refresh proactively when the access token expires within 5 minutes
_DEFAULT_REFRESH_THRESHOLD_SECONDS = 5 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API gateway fronting auth, profile, diagnostics and roadmap services
    gateway_url: str = "http://localhost:8000"

    # Browser-facing origin (used to build redirect_to targets)
    frontend_url: str = "http://localhost:3000"

    # CORS (Security)
    # Never set to ["*"]: token cookies are sent with credentials
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Token storage
    auth_cookie_name: str = "auth_token"
    refresh_cookie_name: str = "refresh_token"
    expiry_cookie_name: str = "token_expires_at"
    auth_cookie_max_age: int = _FIVE_DAYS_SECONDS
    token_refresh_threshold_seconds: int = _DEFAULT_REFRESH_THRESHOLD_SECONDS
    # Durable fallback store; in-memory when unset
    token_fallback_path: Path | None = None

    # Diagnostic flow: one-shot guard against /error redirect loops
    error_redirect_guard_seconds: float = 5.0

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_oauth_callback: str = "20/hour"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def is_production(self) -> bool:
        """Whether the app runs in the production environment."""
        return self.environment == "production"

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants.

        Security: Prevents deployment with insecure transport settings.
        Checks:
        - Cookie lifetime and refresh threshold must be positive (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Gateway and frontend URLs must use HTTPS in production
        """
        if self.auth_cookie_max_age <= 0:
            msg = f"AUTH_COOKIE_MAX_AGE must be positive. Got: {self.auth_cookie_max_age}"
            raise ValueError(msg)

        if self.token_refresh_threshold_seconds <= 0:
            msg = (
                "TOKEN_REFRESH_THRESHOLD_SECONDS must be positive. "
                f"Got: {self.token_refresh_threshold_seconds}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.is_production:
            for name in ("gateway_url", "frontend_url"):
                value = getattr(self, name)
                if not value.startswith("https://"):
                    msg = f"{name.upper()} must use https:// in production. Got: {value}"
                    raise ValueError(msg)

        return self


settings = Settings()
