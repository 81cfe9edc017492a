"""Domain models and DTOs."""

from src.domain.block import Block, BlockedUser
from src.domain.create_models import MessageCreate, RatingCreate, TaskCreate
from src.domain.identity import Identity
from src.domain.message import Message, MessageType, MessageWithSender
from src.domain.profile import Profile, ProfileSummary, SignInResult
from src.domain.rating import Rating, RatingSummary, UserRatings
from src.domain.task import (
    MyTasks,
    Task,
    TaskCategory,
    TaskDetail,
    TaskFilters,
    TaskSort,
    TaskStatus,
    TaskWithPoster,
    TimeWindow,
)
from src.domain.update_models import DisplayNameUpdate, TaskUpdate


__all__ = [
    "Block",
    "BlockedUser",
    "DisplayNameUpdate",
    "Identity",
    "Message",
    "MessageCreate",
    "MessageType",
    "MessageWithSender",
    "MyTasks",
    "Profile",
    "ProfileSummary",
    "Rating",
    "RatingCreate",
    "RatingSummary",
    "SignInResult",
    "Task",
    "TaskCategory",
    "TaskCreate",
    "TaskDetail",
    "TaskFilters",
    "TaskSort",
    "TaskStatus",
    "TaskUpdate",
    "TaskWithPoster",
    "TimeWindow",
    "UserRatings",
]
