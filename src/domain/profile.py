"""Profile domain models."""

from pydantic import BaseModel, Field


class Profile(BaseModel):
    """Profile data transfer object, keyed by the identity provider's subject ID."""

    id: str = Field(..., description="Subject ID from the identity provider")
    email: str = Field(..., description="Lower-cased institutional email")
    display_name: str | None = Field(default=None, description="Optional display name")
    accepted_rules: bool = Field(default=False, description="Rules gate for posting and accepting")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class ProfileSummary(BaseModel):
    """Public view of a profile attached to tasks, messages and blocks."""

    id: str
    display_name: str


class SignInResult(BaseModel):
    """Result of the first-login flow."""

    profile: Profile
    needs_rules: bool = Field(..., description="True until the rules gate is accepted")


def display_name_for(profile: dict | Profile) -> str:
    """Return the display name, falling back to the local part of the email."""
    if isinstance(profile, Profile):
        profile = profile.model_dump()
    name = profile.get("display_name")
    if name:
        return name
    return profile["email"].split("@", 1)[0]


def summarize(profile: dict) -> ProfileSummary:
    """Build a ProfileSummary from a profile record."""
    return ProfileSummary(id=profile["id"], display_name=display_name_for(profile))
