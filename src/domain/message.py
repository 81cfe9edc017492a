"""Message domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field

from src.domain.profile import ProfileSummary


class MessageType(StrEnum):
    """Message origin."""

    TEXT = "TEXT"  # Written by a participant
    SYSTEM = "SYSTEM"  # Appended by a lifecycle transition


# Bodies appended by lifecycle transitions, keyed by the status reached
ACCEPTED_MESSAGE = "Task accepted! You can now chat to coordinate details."
COMPLETED_MESSAGE = "Task marked as complete! Don't forget to rate each other."
CANCELED_MESSAGE_TEMPLATE = "Task canceled by the {role}."


class Message(BaseModel):
    """Message data transfer object."""

    id: str = Field(..., description="Unique message ID")
    task_id: str = Field(..., description="Task the message belongs to")
    sender_id: str = Field(..., description="Sending profile")
    type: MessageType = Field(default=MessageType.TEXT, description="TEXT or SYSTEM")
    body: str = Field(..., description="Message body")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class MessageWithSender(Message):
    """Message with its sender's summary."""

    sender: ProfileSummary
