"""Authenticated identity passed explicitly to every operation."""

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Verified subject supplied by the external identity provider."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Verified subject ID")
    email: str = Field(..., description="Verified email address")
