"""Task domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field

from src.domain.profile import ProfileSummary
from src.domain.rating import RatingSummary


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    COMPLETE = "COMPLETE"
    CANCELED = "CANCELED"


class TaskCategory(StrEnum):
    """Closed set of task categories used for filtering."""

    ERRAND = "ERRAND"
    DELIVERY = "DELIVERY"
    MOVING = "MOVING"
    TUTORING = "TUTORING"
    CLEANING = "CLEANING"
    OTHER = "OTHER"


class TimeWindow(StrEnum):
    """When the poster needs the task done."""

    NOW = "NOW"
    TODAY = "TODAY"
    THIS_WEEK = "THIS_WEEK"
    SCHEDULED = "SCHEDULED"  # Requires scheduled_at


class TaskSort(StrEnum):
    """Feed ordering."""

    NEWEST = "newest"
    HIGHEST_PAY = "highest_pay"


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID")
    poster_id: str = Field(..., description="Profile ID of the poster")
    accepted_by_user_id: str | None = Field(default=None, description="Profile ID of the acceptor")
    status: TaskStatus = Field(default=TaskStatus.OPEN, description="Current lifecycle state")
    title: str = Field(..., description="Task title")
    description: str = Field(..., description="Detailed task description")
    category: TaskCategory = Field(..., description="Task category")
    location_text: str = Field(..., description="Where the task takes place")
    time_window: TimeWindow = Field(..., description="Urgency window")
    scheduled_at: str | None = Field(default=None, description="Scheduled time (ISO format), SCHEDULED only")
    price_cents: int = Field(..., description="Price in minor currency units")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")
    accepted_at: str | None = Field(default=None, description="Acceptance timestamp (ISO format)")
    completed_at: str | None = Field(default=None, description="Completion timestamp (ISO format)")
    canceled_at: str | None = Field(default=None, description="Cancellation timestamp (ISO format)")


class TaskWithPoster(Task):
    """Task as shown in the feed."""

    poster: ProfileSummary = Field(..., description="Poster summary")


class TaskDetail(Task):
    """Task with both participants and their rating summaries."""

    poster: ProfileSummary = Field(..., description="Poster summary")
    acceptor: ProfileSummary | None = Field(default=None, description="Acceptor summary, once accepted")
    poster_rating: RatingSummary = Field(..., description="Poster's rating summary")
    acceptor_rating: RatingSummary | None = Field(default=None, description="Acceptor's rating summary")


class TaskFilters(BaseModel):
    """Feed filters."""

    category: TaskCategory | None = None
    time_window: TimeWindow | None = None
    min_price: int | None = Field(default=None, ge=0, description="Minimum price in minor units")
    sort: TaskSort = TaskSort.NEWEST


class MyTasks(BaseModel):
    """Tasks the caller posted and tasks the caller accepted."""

    posted: list[Task] = Field(default_factory=list)
    accepted: list[Task] = Field(default_factory=list)
