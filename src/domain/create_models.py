"""Pydantic models for creating records in database."""

import math
from datetime import UTC, datetime
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.config import constants
from src.domain.task import TaskCategory, TimeWindow


def require_text(value: Any, *, label: str, max_length: int) -> str:
    """Trim a required text field and enforce its length bound."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValueError(f"{label} must be {max_length} characters or less")
    return value


def require_price(value: Any) -> int:
    """Validate a price in minor currency units against the allowed band."""
    is_number = isinstance(value, int | float) and not isinstance(value, bool)
    if not is_number or not math.isfinite(value) or int(value) != value:
        raise ValueError("Price must be a whole number of cents")
    value = int(value)
    if value < constants.PRICE_MIN_CENTS:
        raise ValueError(f"Minimum price is ${constants.PRICE_MIN_CENTS / 100:.2f}")
    if value > constants.PRICE_MAX_CENTS:
        raise ValueError(f"Maximum price is ${constants.PRICE_MAX_CENTS / 100:.2f}")
    return value


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record."""

    title: str = Field(..., description="Task title")
    description: str = Field(..., description="Detailed task description")
    category: TaskCategory = Field(..., description="Task category")
    location_text: str = Field(..., description="Where the task takes place")
    time_window: TimeWindow = Field(..., description="Urgency window")
    scheduled_at: datetime | None = Field(default=None, description="Required for SCHEDULED, ignored otherwise")
    price_cents: int = Field(..., description="Price in minor currency units")

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> str:
        """Trim title and enforce its length bound."""
        return require_text(v, label="Title", max_length=constants.TITLE_MAX_LENGTH)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> str:
        """Trim description and enforce its length bound."""
        return require_text(v, label="Description", max_length=constants.DESCRIPTION_MAX_LENGTH)

    @field_validator("location_text", mode="before")
    @classmethod
    def validate_location(cls, v: Any) -> str:
        """Trim location and enforce its length bound."""
        return require_text(v, label="Location", max_length=constants.LOCATION_MAX_LENGTH)

    @field_validator("price_cents", mode="before")
    @classmethod
    def validate_price(cls, v: Any) -> int:
        """Validate price lies within the allowed band."""
        return require_price(v)

    @field_validator("scheduled_at")
    @classmethod
    def validate_scheduled_at_timezone(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def validate_schedule(self) -> Self:
        """A SCHEDULED task needs a future timestamp; other windows never keep one."""
        if self.time_window != TimeWindow.SCHEDULED:
            self.scheduled_at = None
            return self

        if self.scheduled_at is None:
            raise ValueError("Scheduled time is required")
        if self.scheduled_at <= datetime.now(UTC):
            raise ValueError("Scheduled time must be in the future")
        return self

    def to_record(self, *, poster_id: str) -> dict[str, Any]:
        """Build the row for a new OPEN task owned by poster_id."""
        return {
            "poster_id": poster_id,
            "accepted_by_user_id": None,
            "status": "OPEN",
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "location_text": self.location_text,
            "time_window": self.time_window.value,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "price_cents": self.price_cents,
            "accepted_at": None,
            "completed_at": None,
            "canceled_at": None,
        }


class MessageCreate(BaseModel):
    """Pydantic model for a participant's text message."""

    body: str

    @field_validator("body", mode="before")
    @classmethod
    def validate_body(cls, v: Any) -> str:
        """Trim body and enforce 1..MESSAGE_MAX_LENGTH characters."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Message cannot be empty")
        v = v.strip()
        if len(v) > constants.MESSAGE_MAX_LENGTH:
            raise ValueError(f"Message is too long (max {constants.MESSAGE_MAX_LENGTH} characters)")
        return v


class RatingCreate(BaseModel):
    """Pydantic model for a rating. The ratee is never client-supplied."""

    stars: int
    comment: str | None = None

    @field_validator("stars", mode="before")
    @classmethod
    def validate_stars(cls, v: Any) -> int:
        """Stars must be an integer from STARS_MIN to STARS_MAX."""
        if isinstance(v, bool) or not isinstance(v, int) or not constants.STARS_MIN <= v <= constants.STARS_MAX:
            raise ValueError(f"Rating must be {constants.STARS_MIN}-{constants.STARS_MAX} stars")
        return v

    @field_validator("comment", mode="before")
    @classmethod
    def validate_comment(cls, v: Any) -> str | None:
        """Trim comment; blank becomes None."""
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError("Comment must be text")
        v = v.strip()
        if len(v) > constants.COMMENT_MAX_LENGTH:
            raise ValueError(f"Comment must be {constants.COMMENT_MAX_LENGTH} characters or less")
        return v or None
