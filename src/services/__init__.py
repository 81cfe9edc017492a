from src.services import (
    block_service,
    message_service,
    profile_service,
    rating_service,
    task_service,
    task_state_machine,
)


__all__ = [
    "block_service",
    "message_service",
    "profile_service",
    "rating_service",
    "task_service",
    "task_state_machine",
]
