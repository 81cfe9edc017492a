"""Message service: task chat between poster and worker."""

import logging
from typing import Any

from src.core import db_client, row_security
from src.core.errors import ConflictError, NotFoundError, PermissionDeniedError, parse_payload
from src.core.logging import log_with_user_context, span
from src.domain import rules
from src.domain.create_models import MessageCreate
from src.domain.identity import Identity
from src.domain.message import Message, MessageType, MessageWithSender
from src.domain.task import TaskStatus
from src.services import block_service, profile_service


logger = logging.getLogger(__name__)

CHAT_NOT_STARTED = "Chat is only available after a task is accepted"
NOT_PARTICIPANT = "You are not a participant in this task"


async def _get_participant_task(*, task_id: str, user_id: str) -> dict[str, Any]:
    """Fetch a task the caller participates in whose chat has started."""
    try:
        task = await db_client.get_record(collection="tasks", record_id=task_id)
    except db_client.RecordNotFoundError as e:
        msg = "Task not found"
        raise NotFoundError(msg) from e

    if not rules.is_participant(task, user_id):
        raise PermissionDeniedError(NOT_PARTICIPANT)

    if task["status"] == TaskStatus.OPEN:
        raise ConflictError(CHAT_NOT_STARTED)

    return task


async def send_message(*, identity: Identity, task_id: str, body: str) -> Message:
    """Send a text message on a task.

    Args:
        identity: Caller identity
        task_id: Task whose chat to write to
        body: Message text, trimmed, 1..MESSAGE_MAX_LENGTH characters

    Returns:
        The created message

    Raises:
        ValidationError: If the body is empty or too long
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not a participant, or poster and worker are blocked
        ConflictError: If the task is OPEN or CANCELED
    """
    with span("message_service.send_message"):
        user_id = profile_service.require_identity(identity)
        message_in = parse_payload(MessageCreate, {"body": body})

        task = await _get_participant_task(task_id=task_id, user_id=user_id)

        # Guard: No new messages once canceled
        if task["status"] == TaskStatus.CANCELED:
            msg = "Cannot send messages in a canceled task"
            raise ConflictError(msg)

        # Guard: A block between poster and worker silences the chat
        if await block_service.is_blocked(user_a=task["poster_id"], user_b=task["accepted_by_user_id"]):
            msg = "Unable to send message"
            raise PermissionDeniedError(msg)

        record = await row_security.create_record(
            auth_id=user_id,
            collection="messages",
            data={
                "task_id": task_id,
                "sender_id": user_id,
                "type": MessageType.TEXT,
                "body": message_in.body,
            },
        )

        log_with_user_context(logger, "info", "Sent message", user_id=user_id, task_id=task_id)
        return Message(**record)


async def get_messages(*, identity: Identity, task_id: str) -> list[MessageWithSender]:
    """Return a task's full chat history in creation order.

    History stays readable after cancellation.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not a participant
        ConflictError: If the task is still OPEN
    """
    with span("message_service.get_messages"):
        user_id = profile_service.require_identity(identity)
        await _get_participant_task(task_id=task_id, user_id=user_id)

        records = await row_security.list_records(
            auth_id=user_id,
            collection="messages",
            filter_query=f'task_id = "{db_client.sanitize_param(task_id)}"',
            sort="+created_at",
            per_page=-1,
        )

        senders = await profile_service.get_summaries(
            auth_id=user_id, user_ids=(record["sender_id"] for record in records)
        )
        return [
            MessageWithSender(**record, sender=senders[record["sender_id"]])
            for record in records
            if record["sender_id"] in senders
        ]
