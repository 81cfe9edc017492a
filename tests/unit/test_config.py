"""Tests for configuration validation."""

import pytest

from src.core.config import Constants, Settings


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(logfire_token="lf-token")

    result = settings.require_credential("logfire_token", "Pydantic Logfire")

    assert result == "lf-token"


def test_require_credential_with_none_raises_error() -> None:
    """Test require_credential raises ValueError when credential is None."""
    settings = Settings(logfire_token=None)

    with pytest.raises(ValueError, match="Pydantic Logfire credential not configured"):
        settings.require_credential("logfire_token", "Pydantic Logfire")


def test_require_credential_error_message_includes_field_name() -> None:
    """Test error message includes the environment variable name."""
    settings = Settings(logfire_token="")

    with pytest.raises(ValueError, match="LOGFIRE_TOKEN"):
        settings.require_credential("logfire_token", "Pydantic Logfire")


def test_settings_read_from_environment(monkeypatch) -> None:
    """Test settings pick up environment variables case-insensitively."""
    monkeypatch.setenv("CAMPUS_EMAIL_DOMAIN", "example.edu")
    monkeypatch.setenv("ENVIRONMENT", "Production")

    settings = Settings()

    assert settings.campus_email_domain == "example.edu"
    assert settings.is_production


def test_default_environment_is_not_production(monkeypatch) -> None:
    monkeypatch.delenv("ENVIRONMENT", raising=False)

    assert not Settings(_env_file=None).is_production


def test_business_bounds() -> None:
    """Test the fixed price band and text bounds."""
    assert Constants.PRICE_MIN_CENTS == 500
    assert Constants.PRICE_MAX_CENTS == 50000
    assert Constants.TITLE_MAX_LENGTH == 80
    assert Constants.DESCRIPTION_MAX_LENGTH == 1000
    assert Constants.LOCATION_MAX_LENGTH == 120
    assert Constants.MESSAGE_MAX_LENGTH == 2000
    assert Constants.FEED_PAGE_LIMIT == 50
