"""Block domain models."""

from pydantic import BaseModel, Field

from src.domain.profile import ProfileSummary


class Block(BaseModel):
    """Directed block from blocker to blocked."""

    id: str = Field(..., description="Unique block ID")
    blocker_id: str = Field(..., description="Profile that created the block")
    blocked_id: str = Field(..., description="Profile that was blocked")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class BlockedUser(Block):
    """Block with the blocked profile's summary."""

    blocked: ProfileSummary
