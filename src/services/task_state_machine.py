"""Guarded state transitions for the task lifecycle.

Each transition is a single conditional write on the status the caller last
observed, committed together with the system message it appends. A transition
that finds the task already moved on returns None instead of writing.
"""

import logging
from typing import Any

from src.core import db_client, row_security
from src.core.logging import span
from src.domain.message import (
    ACCEPTED_MESSAGE,
    CANCELED_MESSAGE_TEMPLATE,
    COMPLETED_MESSAGE,
    MessageType,
)
from src.domain.rules import TRANSITIONS
from src.domain.task import TaskStatus


logger = logging.getLogger(__name__)


def can_transition(from_status: TaskStatus | str, to_status: TaskStatus | str) -> bool:
    """Return True if the lifecycle allows moving from one status to another."""
    return TaskStatus(to_status) in TRANSITIONS[TaskStatus(from_status)]


async def _append_system_message(*, auth_id: str, task_id: str, body: str) -> dict[str, Any]:
    return await row_security.create_record(
        auth_id=auth_id,
        collection="messages",
        data={"task_id": task_id, "sender_id": auth_id, "type": MessageType.SYSTEM, "body": body},
    )


async def _transition(
    *,
    auth_id: str,
    task_id: str,
    from_status: TaskStatus,
    to_status: TaskStatus,
    data: dict[str, Any],
    system_message: str,
) -> dict[str, Any] | None:
    if not can_transition(from_status, to_status):
        msg = f"Cannot move task {task_id} from {from_status} to {to_status}"
        raise ValueError(msg)

    async with db_client.transaction():
        updated_record = await row_security.update_record(
            auth_id=auth_id,
            collection="tasks",
            record_id=task_id,
            data={"status": to_status, **data},
            expected={"status": from_status},
        )
        if updated_record is None:
            logger.info(
                "Transition lost: task %s is no longer %s",
                task_id,
                from_status,
                extra={"task_id": task_id, "user_id": auth_id},
            )
            return None

        await _append_system_message(auth_id=auth_id, task_id=task_id, body=system_message)

    logger.info(f"Transitioned task {task_id} from {from_status} to {to_status}")
    return updated_record


async def transition_to_accepted(*, auth_id: str, task_id: str) -> dict[str, Any] | None:
    """Transition task from OPEN to ACCEPTED with auth_id as acceptor."""
    with span("task_state_machine.transition_to_accepted", task_id=task_id):
        return await _transition(
            auth_id=auth_id,
            task_id=task_id,
            from_status=TaskStatus.OPEN,
            to_status=TaskStatus.ACCEPTED,
            data={"accepted_by_user_id": auth_id, "accepted_at": db_client.utc_now()},
            system_message=ACCEPTED_MESSAGE,
        )


async def transition_to_canceled(
    *,
    auth_id: str,
    task_id: str,
    from_status: TaskStatus,
    role: str,
) -> dict[str, Any] | None:
    """Transition task to CANCELED from the status the caller observed."""
    with span("task_state_machine.transition_to_canceled", task_id=task_id):
        return await _transition(
            auth_id=auth_id,
            task_id=task_id,
            from_status=from_status,
            to_status=TaskStatus.CANCELED,
            data={"canceled_at": db_client.utc_now()},
            system_message=CANCELED_MESSAGE_TEMPLATE.format(role=role),
        )


async def transition_to_complete(*, auth_id: str, task_id: str) -> dict[str, Any] | None:
    """Transition task from ACCEPTED to COMPLETE."""
    with span("task_state_machine.transition_to_complete", task_id=task_id):
        return await _transition(
            auth_id=auth_id,
            task_id=task_id,
            from_status=TaskStatus.ACCEPTED,
            to_status=TaskStatus.COMPLETE,
            data={"completed_at": db_client.utc_now()},
            system_message=COMPLETED_MESSAGE,
        )
