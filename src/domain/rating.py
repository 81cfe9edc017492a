"""Rating domain models."""

from pydantic import BaseModel, Field


class Rating(BaseModel):
    """Rating data transfer object."""

    id: str = Field(..., description="Unique rating ID")
    task_id: str = Field(..., description="Rated task")
    rater_id: str = Field(..., description="Profile that left the rating")
    ratee_id: str = Field(..., description="The other participant")
    stars: int = Field(..., description="Score from 1 to 5")
    comment: str | None = Field(default=None, description="Optional comment")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class RatingSummary(BaseModel):
    """Average and count of ratings received by a profile."""

    average: float | None = Field(default=None, description="Average stars rounded to one decimal")
    count: int = 0


class UserRatings(RatingSummary):
    """All ratings received by a profile, newest first."""

    ratings: list[Rating] = Field(default_factory=list)
