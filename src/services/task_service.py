"""Task service: posting, the accept/cancel/complete lifecycle, edits and feeds."""

import logging
from collections.abc import Mapping
from typing import Any

from src.core import db_client, row_security
from src.core.config import constants
from src.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    parse_payload,
)
from src.core.logging import log_with_user_context, span
from src.domain import rules
from src.domain.create_models import TaskCreate
from src.domain.identity import Identity
from src.domain.task import (
    MyTasks,
    Task,
    TaskDetail,
    TaskFilters,
    TaskSort,
    TaskStatus,
    TaskWithPoster,
)
from src.domain.update_models import TaskUpdate
from src.services import block_service, profile_service, rating_service, task_state_machine


logger = logging.getLogger(__name__)

NO_LONGER_AVAILABLE = "This task is no longer available"
TASK_NOT_FOUND = "Task not found"


async def _get_task_or_raise(task_id: str) -> dict[str, Any]:
    """Fetch the task being acted on, raising NotFoundError if it does not exist."""
    try:
        return await db_client.get_record(collection="tasks", record_id=task_id)
    except db_client.RecordNotFoundError as e:
        raise NotFoundError(TASK_NOT_FOUND) from e


async def create_task(*, identity: Identity, data: TaskCreate | Mapping[str, Any]) -> Task:
    """Post a new task as the caller.

    Args:
        identity: Caller identity
        data: Title, description, category, location, time window, optional
            schedule timestamp and price in minor units

    Returns:
        The created OPEN task

    Raises:
        ValidationError: If the rules gate is not passed or any bound is violated
    """
    with span("task_service.create_task"):
        user_id = profile_service.require_identity(identity)

        # Guard: Rules gate
        profile = await profile_service.get_profile(user_id=user_id)
        if not rules.has_accepted_rules(profile):
            msg = "You must accept the rules before posting"
            raise ValidationError(msg)

        task_in = parse_payload(TaskCreate, data)

        record = await row_security.create_record(
            auth_id=user_id,
            collection="tasks",
            data=task_in.to_record(poster_id=user_id),
        )

        log_with_user_context(logger, "info", "Created task", user_id=user_id, task_id=record["id"])
        return Task(**record)


async def accept_task(*, identity: Identity, task_id: str) -> Task:
    """Accept an OPEN task as the worker.

    The status change is a conditional write on status = OPEN, so of several
    concurrent attempts exactly one succeeds and the rest report the task as
    no longer available.

    Args:
        identity: Caller identity
        task_id: Task to accept

    Returns:
        The ACCEPTED task

    Raises:
        ValidationError: If the rules gate is not passed
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is the poster or the two are blocked
        ConflictError: If the task is no longer OPEN
    """
    with span("task_service.accept_task"):
        user_id = profile_service.require_identity(identity)

        async with db_client.transaction():
            # Guard: Rules gate
            profile = await profile_service.get_profile(user_id=user_id)
            if not rules.has_accepted_rules(profile):
                msg = "You must accept the rules before accepting tasks"
                raise ValidationError(msg)

            task = await _get_task_or_raise(task_id)

            # Guard: No self-dealing
            if rules.is_poster(task, user_id):
                msg = "You cannot accept your own task"
                raise PermissionDeniedError(msg)

            # Guard: Still available
            if task["status"] != TaskStatus.OPEN:
                raise ConflictError(NO_LONGER_AVAILABLE)

            # Guard: No block in either direction
            if await block_service.is_blocked(user_a=user_id, user_b=task["poster_id"]):
                msg = "Unable to accept this task"
                raise PermissionDeniedError(msg)

            updated = await task_state_machine.transition_to_accepted(auth_id=user_id, task_id=task_id)
            if updated is None:
                raise ConflictError(NO_LONGER_AVAILABLE)

        log_with_user_context(logger, "info", "Accepted task", user_id=user_id, task_id=task_id)
        return Task(**updated)


async def cancel_task(*, identity: Identity, task_id: str) -> Task:
    """Cancel a task as its poster (from OPEN or ACCEPTED) or its worker (from ACCEPTED).

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not allowed to cancel
        ConflictError: If the task is already COMPLETE or CANCELED
    """
    with span("task_service.cancel_task"):
        user_id = profile_service.require_identity(identity)

        async with db_client.transaction():
            task = await _get_task_or_raise(task_id)

            # Guard: Participants only
            role = rules.cancel_role(task, user_id)
            if role is None:
                msg = "You cannot cancel this task"
                raise PermissionDeniedError(msg)

            # Guard: Terminal states stay terminal
            if task["status"] == TaskStatus.COMPLETE:
                msg = "Cannot cancel a completed task"
                raise ConflictError(msg)
            if task["status"] == TaskStatus.CANCELED:
                msg = "Task is already canceled"
                raise ConflictError(msg)

            if not rules.can_cancel_task(task, user_id):
                msg = "You cannot cancel this task"
                raise PermissionDeniedError(msg)

            updated = await task_state_machine.transition_to_canceled(
                auth_id=user_id,
                task_id=task_id,
                from_status=TaskStatus(task["status"]),
                role=role,
            )
            if updated is None:
                msg = "This task can no longer be canceled"
                raise ConflictError(msg)

        log_with_user_context(logger, "info", "Canceled task", user_id=user_id, task_id=task_id, role=role)
        return Task(**updated)


async def complete_task(*, identity: Identity, task_id: str) -> Task:
    """Mark an ACCEPTED task complete. Poster only.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the poster
        ConflictError: If the task is not ACCEPTED
    """
    with span("task_service.complete_task"):
        user_id = profile_service.require_identity(identity)

        async with db_client.transaction():
            task = await _get_task_or_raise(task_id)

            # Guard: Poster only
            if not rules.is_poster(task, user_id):
                msg = "Only the task poster can mark it complete"
                raise PermissionDeniedError(msg)

            # Guard: Must be accepted
            if task["status"] != TaskStatus.ACCEPTED:
                msg = "Task must be accepted before it can be completed"
                raise ConflictError(msg)

            updated = await task_state_machine.transition_to_complete(auth_id=user_id, task_id=task_id)
            if updated is None:
                msg = "Task must be accepted before it can be completed"
                raise ConflictError(msg)

        log_with_user_context(logger, "info", "Completed task", user_id=user_id, task_id=task_id)
        return Task(**updated)


async def update_task(*, identity: Identity, task_id: str, data: TaskUpdate | Mapping[str, Any]) -> Task:
    """Edit title, description or price of an OPEN task. Poster only.

    Terms are locked once a worker has accepted.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the poster
        ConflictError: If the task is no longer OPEN
        ValidationError: If a bound is violated
    """
    with span("task_service.update_task"):
        user_id = profile_service.require_identity(identity)

        task = await _get_task_or_raise(task_id)

        # Guard: Poster only
        if not rules.is_poster(task, user_id):
            msg = "You can only edit your own tasks"
            raise PermissionDeniedError(msg)

        # Guard: Only while OPEN
        if task["status"] != TaskStatus.OPEN:
            msg = "Can only edit tasks that are still open"
            raise ConflictError(msg)

        changes = parse_payload(TaskUpdate, data).changes()
        if not changes:
            return Task(**task)

        updated = await row_security.update_record(
            auth_id=user_id,
            collection="tasks",
            record_id=task_id,
            data=changes,
            expected={"status": TaskStatus.OPEN},
        )
        if updated is None:
            msg = "Can only edit tasks that are still open"
            raise ConflictError(msg)

        log_with_user_context(
            logger, "info", "Updated task", user_id=user_id, task_id=task_id, fields=sorted(changes)
        )
        return Task(**updated)


def _feed_filter(filters: TaskFilters) -> str:
    parts = [f'(status = "{TaskStatus.OPEN}" || status = "{TaskStatus.ACCEPTED}")']
    if filters.category:
        parts.append(f'category = "{filters.category}"')
    if filters.time_window:
        parts.append(f'time_window = "{filters.time_window}"')
    if filters.min_price is not None:
        parts.append(f'price_cents >= "{filters.min_price}"')
    return " && ".join(parts)


async def get_tasks(
    *,
    identity: Identity,
    filters: TaskFilters | Mapping[str, Any] | None = None,
) -> list[TaskWithPoster]:
    """Return the feed of OPEN and ACCEPTED tasks visible to the caller.

    Tasks whose poster or worker is blocked with the caller, in either
    direction, are left out.

    Args:
        identity: Caller identity
        filters: Optional category, time window, minimum price and sort
            ("newest" or "highest_pay")

    Returns:
        Up to FEED_PAGE_LIMIT tasks with poster summaries
    """
    with span("task_service.get_tasks"):
        user_id = profile_service.require_identity(identity)
        task_filters = parse_payload(TaskFilters, filters or {})

        sort = "-price_cents,-created_at" if task_filters.sort == TaskSort.HIGHEST_PAY else "-created_at"
        records = await row_security.list_records(
            auth_id=user_id,
            collection="tasks",
            filter_query=_feed_filter(task_filters),
            sort=sort,
            per_page=constants.FEED_PAGE_LIMIT,
        )

        posters = await profile_service.get_summaries(
            auth_id=user_id, user_ids=(record["poster_id"] for record in records)
        )
        return [
            TaskWithPoster(**record, poster=posters[record["poster_id"]])
            for record in records
            if record["poster_id"] in posters
        ]


async def get_task(*, identity: Identity, task_id: str) -> TaskDetail:
    """Return one task with both participants and their rating summaries.

    Raises:
        NotFoundError: If the task does not exist or is hidden by a block
    """
    with span("task_service.get_task"):
        user_id = profile_service.require_identity(identity)

        try:
            record = await row_security.get_record(auth_id=user_id, collection="tasks", record_id=task_id)
        except db_client.RecordNotFoundError as e:
            raise NotFoundError(TASK_NOT_FOUND) from e

        acceptor_id = record.get("accepted_by_user_id")
        summaries = await profile_service.get_summaries(
            auth_id=user_id, user_ids=(record["poster_id"], acceptor_id)
        )
        if record["poster_id"] not in summaries:
            raise NotFoundError(TASK_NOT_FOUND)

        poster_rating = await rating_service.get_rating_summary(auth_id=user_id, user_id=record["poster_id"])
        acceptor_rating = None
        if acceptor_id:
            acceptor_rating = await rating_service.get_rating_summary(auth_id=user_id, user_id=acceptor_id)

        return TaskDetail(
            **record,
            poster=summaries[record["poster_id"]],
            acceptor=summaries.get(acceptor_id) if acceptor_id else None,
            poster_rating=poster_rating,
            acceptor_rating=acceptor_rating,
        )


async def get_my_tasks(*, identity: Identity) -> MyTasks:
    """Return tasks the caller posted and tasks the caller accepted, newest first."""
    with span("task_service.get_my_tasks"):
        user_id = profile_service.require_identity(identity)
        uid = db_client.sanitize_param(user_id)

        posted = await row_security.list_records(
            auth_id=user_id,
            collection="tasks",
            filter_query=f'poster_id = "{uid}"',
            sort="-created_at",
            per_page=constants.DEFAULT_PER_PAGE_LIMIT,
        )
        accepted = await row_security.list_records(
            auth_id=user_id,
            collection="tasks",
            filter_query=f'accepted_by_user_id = "{uid}"',
            sort="-created_at",
            per_page=constants.DEFAULT_PER_PAGE_LIMIT,
        )
        return MyTasks(
            posted=[Task(**record) for record in posted],
            accepted=[Task(**record) for record in accepted],
        )
