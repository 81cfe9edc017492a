"""Access rules for tasks, messages, ratings and blocks.

Each rule is a pure predicate over plain records (dicts as returned by
db_client). Services call them to decide which friendly error to raise, and
the row-security layer calls the same functions at the storage boundary, so a
rule is only ever written once.
"""

from collections.abc import Mapping, Set
from typing import Any

from src.domain.message import ACCEPTED_MESSAGE, CANCELED_MESSAGE_TEMPLATE, COMPLETED_MESSAGE
from src.domain.task import TaskStatus


Record = Mapping[str, Any]

# Lifecycle: OPEN -> ACCEPTED -> COMPLETE, and CANCELED from OPEN or ACCEPTED
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.ACCEPTED, TaskStatus.CANCELED}),
    TaskStatus.ACCEPTED: frozenset({TaskStatus.COMPLETE, TaskStatus.CANCELED}),
    TaskStatus.COMPLETE: frozenset(),
    TaskStatus.CANCELED: frozenset(),
}

# Fields fixed at creation time
IMMUTABLE_TASK_FIELDS = frozenset(
    {"id", "poster_id", "category", "location_text", "time_window", "scheduled_at", "created_at"}
)
EDITABLE_TASK_FIELDS = frozenset({"title", "description", "price_cents"})

POSTER_CANCELABLE_STATUSES = frozenset({TaskStatus.OPEN, TaskStatus.ACCEPTED})
ACCEPTOR_CANCELABLE_STATUSES = frozenset({TaskStatus.ACCEPTED})
MESSAGE_READABLE_STATUSES = frozenset({TaskStatus.ACCEPTED, TaskStatus.COMPLETE, TaskStatus.CANCELED})
MESSAGE_WRITABLE_STATUSES = frozenset({TaskStatus.ACCEPTED, TaskStatus.COMPLETE})


def has_accepted_rules(profile: Record | None) -> bool:
    """Rules gate for posting and accepting."""
    return bool(profile and profile.get("accepted_rules"))


def is_poster(task: Record, user_id: str) -> bool:
    return task["poster_id"] == user_id


def is_acceptor(task: Record, user_id: str) -> bool:
    return task.get("accepted_by_user_id") is not None and task["accepted_by_user_id"] == user_id


def is_participant(task: Record, user_id: str) -> bool:
    """Poster or current acceptor."""
    return is_poster(task, user_id) or is_acceptor(task, user_id)


def counterpart_of(task: Record, user_id: str) -> str | None:
    """The other participant, or None when there is none."""
    if is_poster(task, user_id):
        return task.get("accepted_by_user_id")
    if is_acceptor(task, user_id):
        return task["poster_id"]
    return None


def can_view_task(task: Record, blocked_ids: Set[str]) -> bool:
    """Hide tasks whose poster or acceptor is blocked with the viewer in either direction.

    Args:
        task: Task record
        blocked_ids: IDs blocked by, or blocking, the viewer
    """
    if task["poster_id"] in blocked_ids:
        return False
    acceptor = task.get("accepted_by_user_id")
    return acceptor is None or acceptor not in blocked_ids


def can_create_task(task: Record, profile: Record | None, user_id: str) -> bool:
    """New tasks are OPEN, unassigned, owned by the caller, and require the rules gate."""
    return (
        is_poster(task, user_id)
        and task.get("status", TaskStatus.OPEN) == TaskStatus.OPEN
        and task.get("accepted_by_user_id") is None
        and has_accepted_rules(profile)
    )


def can_edit_task(task: Record, user_id: str) -> bool:
    """Only the poster may edit, and only while OPEN."""
    return is_poster(task, user_id) and task["status"] == TaskStatus.OPEN


def can_accept_task(task: Record, profile: Record | None, user_id: str, *, pair_blocked: bool) -> bool:
    """Anyone but the poster may accept an OPEN task, given the rules gate and no block."""
    return (
        task["status"] == TaskStatus.OPEN
        and not is_poster(task, user_id)
        and has_accepted_rules(profile)
        and not pair_blocked
    )


def can_cancel_task(task: Record, user_id: str) -> bool:
    """Poster cancels from OPEN or ACCEPTED; acceptor only from ACCEPTED."""
    status = task["status"]
    if is_poster(task, user_id):
        return status in POSTER_CANCELABLE_STATUSES
    if is_acceptor(task, user_id):
        return status in ACCEPTOR_CANCELABLE_STATUSES
    return False


def cancel_role(task: Record, user_id: str) -> str | None:
    """Name of the role canceling the task, as shown in the system message."""
    if is_poster(task, user_id):
        return "poster"
    if is_acceptor(task, user_id):
        return "worker"
    return None


def can_complete_task(task: Record, user_id: str) -> bool:
    """Only the poster completes, and only from ACCEPTED."""
    return is_poster(task, user_id) and task["status"] == TaskStatus.ACCEPTED


def can_read_messages(task: Record, user_id: str) -> bool:
    """Participants read the history once the task has been accepted, including after cancellation."""
    return is_participant(task, user_id) and task["status"] in MESSAGE_READABLE_STATUSES


def can_send_message(task: Record, user_id: str, *, pair_blocked: bool) -> bool:
    """Participants write while ACCEPTED or COMPLETE, unless poster and acceptor are blocked."""
    return is_participant(task, user_id) and task["status"] in MESSAGE_WRITABLE_STATUSES and not pair_blocked


def expected_system_message(task: Record, user_id: str) -> str | None:
    """Body of the system message the acting user's transition appends for the task's current status."""
    status = task["status"]
    if status == TaskStatus.ACCEPTED and is_acceptor(task, user_id):
        return ACCEPTED_MESSAGE
    if status == TaskStatus.COMPLETE and is_poster(task, user_id):
        return COMPLETED_MESSAGE
    if status == TaskStatus.CANCELED and (role := cancel_role(task, user_id)):
        return CANCELED_MESSAGE_TEMPLATE.format(role=role)
    return None


def rating_target(task: Record, user_id: str) -> str | None:
    """The participant the caller rates. Never client-supplied."""
    return counterpart_of(task, user_id)


def can_rate_task(task: Record, user_id: str) -> bool:
    """Participants rate the other participant once the task is COMPLETE."""
    target = rating_target(task, user_id)
    return task["status"] == TaskStatus.COMPLETE and target is not None and target != user_id


def can_block(blocker_id: str, blocked_id: str) -> bool:
    """No self-block."""
    return blocker_id != blocked_id
