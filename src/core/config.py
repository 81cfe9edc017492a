"""Configuration management for sidequest."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/sidequest.db", description="Path to the SQLite database file")

    # Campus Configuration
    campus_email_domain: str = Field(
        default="uci.edu", description="Institutional email domain allowed to sign in (without the @)"
    )

    # Identity headers set by the upstream identity provider
    trusted_identity_header: str = Field(
        default="X-Auth-Subject", description="Header carrying the verified subject ID"
    )
    trusted_email_header: str = Field(default="X-Auth-Email", description="Header carrying the verified email")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    environment: str = Field(default="development", description="Deployment environment name")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value

    @property
    def is_production(self) -> bool:
        """Whether the app runs in production."""
        return self.environment.lower() == "production"


# Application Constants
class Constants:
    """Application-wide constants."""

    # Price band in minor currency units (500 = $5.00)
    PRICE_MIN_CENTS: int = 500
    PRICE_MAX_CENTS: int = 50000

    # Text bounds
    TITLE_MAX_LENGTH: int = 80
    DESCRIPTION_MAX_LENGTH: int = 1000
    LOCATION_MAX_LENGTH: int = 120
    DISPLAY_NAME_MAX_LENGTH: int = 50
    MESSAGE_MAX_LENGTH: int = 2000
    COMMENT_MAX_LENGTH: int = 500

    # Ratings
    STARS_MIN: int = 1
    STARS_MAX: int = 5

    # Pagination Defaults
    FEED_PAGE_LIMIT: int = 50  # Max tasks returned by the feed
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries

    # HTTP Status Codes
    HTTP_OK: int = 200
    HTTP_UNAUTHORIZED: int = 401


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
