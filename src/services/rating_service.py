"""Rating service: one rating per participant per completed task."""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.core import db_client, row_security
from src.core.errors import ConflictError, NotFoundError, PermissionDeniedError, parse_payload
from src.core.logging import log_with_user_context, span
from src.domain import rules
from src.domain.create_models import RatingCreate
from src.domain.identity import Identity
from src.domain.rating import Rating, RatingSummary, UserRatings
from src.domain.task import TaskStatus
from src.services import profile_service


logger = logging.getLogger(__name__)

ALREADY_RATED = "You have already rated this task"


def _own_rating_filter(task_id: str, rater_id: str) -> str:
    return (
        f'task_id = "{db_client.sanitize_param(task_id)}" && rater_id = "{db_client.sanitize_param(rater_id)}"'
    )


def _summarize(records: list[dict[str, Any]]) -> RatingSummary:
    """Average rounded half-up to one decimal, or None without ratings."""
    if not records:
        return RatingSummary(average=None, count=0)
    total = Decimal(sum(record["stars"] for record in records))
    average = (total / len(records)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return RatingSummary(average=float(average), count=len(records))


async def submit_rating(*, identity: Identity, task_id: str, stars: Any, comment: str | None = None) -> Rating:
    """Rate the other participant of a completed task.

    The ratee is inferred from the task and never taken from the caller.

    Args:
        identity: Caller identity
        task_id: Completed task to rate
        stars: Integer score from 1 to 5
        comment: Optional comment

    Returns:
        The created rating

    Raises:
        ValidationError: If stars or comment are out of bounds
        NotFoundError: If the task does not exist
        ConflictError: If the task is not COMPLETE or the caller already rated it
        PermissionDeniedError: If the caller is not a participant
    """
    with span("rating_service.submit_rating"):
        user_id = profile_service.require_identity(identity)
        rating_in = parse_payload(RatingCreate, {"stars": stars, "comment": comment})

        async with db_client.transaction():
            try:
                task = await db_client.get_record(collection="tasks", record_id=task_id)
            except db_client.RecordNotFoundError as e:
                msg = "Task not found"
                raise NotFoundError(msg) from e

            # Guard: Only completed tasks
            if task["status"] != TaskStatus.COMPLETE:
                msg = "Can only rate completed tasks"
                raise ConflictError(msg)

            # Guard: Participants only
            if not rules.is_participant(task, user_id):
                msg = "You are not a participant in this task"
                raise PermissionDeniedError(msg)

            ratee_id = rules.rating_target(task, user_id)
            if ratee_id is None:
                msg = "No one to rate"
                raise ConflictError(msg)

            # Guard: One rating per rater per task
            existing = await row_security.get_first_record(
                auth_id=user_id,
                collection="ratings",
                filter_query=_own_rating_filter(task_id, user_id),
            )
            if existing:
                raise ConflictError(ALREADY_RATED)

            try:
                record = await row_security.create_record(
                    auth_id=user_id,
                    collection="ratings",
                    data={
                        "task_id": task_id,
                        "rater_id": user_id,
                        "ratee_id": ratee_id,
                        "stars": rating_in.stars,
                        "comment": rating_in.comment,
                    },
                )
            except db_client.ConstraintViolationError as e:
                raise ConflictError(ALREADY_RATED) from e

        log_with_user_context(
            logger, "info", "Submitted rating", user_id=user_id, task_id=task_id, stars=rating_in.stars
        )
        return Rating(**record)


async def has_rated(*, identity: Identity, task_id: str) -> bool:
    """Return True if the caller already rated the task."""
    with span("rating_service.has_rated"):
        user_id = profile_service.require_identity(identity)
        existing = await row_security.get_first_record(
            auth_id=user_id,
            collection="ratings",
            filter_query=_own_rating_filter(task_id, user_id),
        )
        return existing is not None


async def get_user_ratings(*, identity: Identity, user_id: str) -> UserRatings:
    """Return the ratings a profile received, newest first, with their average and count."""
    with span("rating_service.get_user_ratings"):
        caller_id = profile_service.require_identity(identity)
        records = await row_security.list_records(
            auth_id=caller_id,
            collection="ratings",
            filter_query=f'ratee_id = "{db_client.sanitize_param(user_id)}"',
            sort="-created_at",
            per_page=-1,
        )
        summary = _summarize(records)
        return UserRatings(
            ratings=[Rating(**record) for record in records],
            average=summary.average,
            count=summary.count,
        )


async def get_rating_summary(*, auth_id: str, user_id: str) -> RatingSummary:
    """Return a profile's average rating and count."""
    records = await row_security.list_records(
        auth_id=auth_id,
        collection="ratings",
        filter_query=f'ratee_id = "{db_client.sanitize_param(user_id)}"',
        per_page=-1,
    )
    return _summarize(records)
