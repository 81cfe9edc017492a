"""Update models for database operations."""

from typing import Any

from pydantic import BaseModel, field_validator

from src.core.config import constants
from src.domain.create_models import require_price, require_text


class TaskUpdate(BaseModel):
    """Edit payload for an OPEN task. Only title, description and price are editable."""

    title: str | None = None
    description: str | None = None
    price_cents: int | None = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> str | None:
        """Trim title and enforce its length bound."""
        if v is None:
            return None
        return require_text(v, label="Title", max_length=constants.TITLE_MAX_LENGTH)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> str | None:
        """Trim description and enforce its length bound."""
        if v is None:
            return None
        return require_text(v, label="Description", max_length=constants.DESCRIPTION_MAX_LENGTH)

    @field_validator("price_cents", mode="before")
    @classmethod
    def validate_price(cls, v: Any) -> int | None:
        """Validate price lies within the allowed band."""
        if v is None:
            return None
        return require_price(v)

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were provided."""
        return self.model_dump(exclude_none=True)


class DisplayNameUpdate(BaseModel):
    """Update payload for a profile's display name. Blank clears it."""

    display_name: str | None = None

    @field_validator("display_name", mode="before")
    @classmethod
    def validate_display_name(cls, v: Any) -> str | None:
        """Trim and bound the display name."""
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError("Display name must be text")
        v = v.strip()
        if len(v) > constants.DISPLAY_NAME_MAX_LENGTH:
            raise ValueError(f"Display name must be {constants.DISPLAY_NAME_MAX_LENGTH} characters or less")
        return v or None
