"""Row-level access rules enforced at the storage boundary.

Every read and write made on behalf of an authenticated subject goes through
this module instead of calling db_client directly. Rules are declared per
collection in the same five slots a collection's API rules use:

    list / view   -> rows failing the rule are silently filtered out
    create        -> a failing rule raises PolicyViolationError
    update        -> "using" is checked against the stored row (a failing row
                     is skipped, like a conditional update that matched
                     nothing); "check" sees the stored and proposed rows and
                     raises PolicyViolationError when it fails
    delete        -> rows failing the rule are left untouched

A rule of None means no subject may perform the operation.

The rules are built from src.domain.rules, the same predicates the services
use, so the two layers cannot drift apart.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from src.core import db_client
from src.domain import rules
from src.domain.message import MessageType
from src.domain.task import TaskStatus


logger = logging.getLogger(__name__)


class PolicyViolationError(PermissionError):
    """Raised when a write is rejected by a row-level rule."""


class PolicyContext:
    """Per-call view of the subject, with lookups the rules need.

    Lookups read the store directly (unfiltered) and are cached for the
    lifetime of one guarded operation.
    """

    def __init__(self, auth_id: str) -> None:
        self.auth_id = auth_id
        self._profile: dict[str, Any] | None = None
        self._profile_loaded = False
        self._blocked_ids: set[str] | None = None
        self._tasks: dict[str, dict[str, Any] | None] = {}

    async def profile(self) -> dict[str, Any] | None:
        if not self._profile_loaded:
            try:
                self._profile = await db_client.get_record(collection="profiles", record_id=self.auth_id)
            except db_client.RecordNotFoundError:
                self._profile = None
            self._profile_loaded = True
        return self._profile

    async def blocked_ids(self) -> set[str]:
        """IDs the subject blocked or was blocked by."""
        if self._blocked_ids is None:
            self._blocked_ids = await blocked_counterparts(self.auth_id)
        return self._blocked_ids

    async def task(self, task_id: str) -> dict[str, Any] | None:
        if task_id not in self._tasks:
            try:
                self._tasks[task_id] = await db_client.get_record(collection="tasks", record_id=task_id)
            except db_client.RecordNotFoundError:
                self._tasks[task_id] = None
        return self._tasks[task_id]

    async def pair_blocked(self, user_a: str | None, user_b: str | None) -> bool:
        if user_a is None or user_b is None:
            return False
        return await is_pair_blocked(user_a, user_b)


RowRule = Callable[[PolicyContext, dict[str, Any]], Awaitable[bool]]
UpdateCheck = Callable[[PolicyContext, dict[str, Any], dict[str, Any]], Awaitable[bool]]


@dataclass(frozen=True)
class CollectionRules:
    """Row rules for one collection. None denies the operation to every subject."""

    list_rule: RowRule | None
    view_rule: RowRule | None
    create_rule: RowRule | None
    update_rule: RowRule | None
    update_check: UpdateCheck | None
    delete_rule: RowRule | None


async def blocked_counterparts(user_id: str) -> set[str]:
    """Return every profile ID blocked by, or blocking, user_id."""
    uid = db_client.sanitize_param(user_id)
    rows = await db_client.list_records(
        collection="blocks",
        filter_query=f'(blocker_id = "{uid}" || blocked_id = "{uid}")',
        per_page=-1,
    )
    return {row["blocked_id"] if row["blocker_id"] == user_id else row["blocker_id"] for row in rows}


async def is_pair_blocked(user_a: str, user_b: str) -> bool:
    """Return True if either user has blocked the other."""
    a = db_client.sanitize_param(user_a)
    b = db_client.sanitize_param(user_b)
    for blocker, blocked in ((a, b), (b, a)):
        row = await db_client.get_first_record(
            collection="blocks",
            filter_query=f'blocker_id = "{blocker}" && blocked_id = "{blocked}"',
        )
        if row:
            return True
    return False


async def _allow(_ctx: PolicyContext, _row: dict[str, Any]) -> bool:
    return True


# Profiles


async def _profile_is_own(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    return row["id"] == ctx.auth_id


async def _profile_update_check(ctx: PolicyContext, old: dict[str, Any], new: dict[str, Any]) -> bool:
    return new["id"] == ctx.auth_id and new["email"] == old["email"] and new["created_at"] == old["created_at"]


# Tasks


async def _task_visible(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    return rules.can_view_task(row, await ctx.blocked_ids())


async def _task_create(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    return rules.can_create_task(row, await ctx.profile(), ctx.auth_id)


async def _task_update_using(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    # Non-participants can only reach OPEN tasks (to accept them)
    return rules.is_participant(row, ctx.auth_id) or row["status"] == TaskStatus.OPEN


async def _task_update_check(ctx: PolicyContext, old: dict[str, Any], new: dict[str, Any]) -> bool:
    changed = {key for key, value in new.items() if old.get(key) != value}
    if changed & rules.IMMUTABLE_TASK_FIELDS:
        return False

    old_status = TaskStatus(old["status"])
    new_status = TaskStatus(new["status"])

    if old_status == new_status:
        return changed <= rules.EDITABLE_TASK_FIELDS and rules.can_edit_task(old, ctx.auth_id)

    if new_status not in rules.TRANSITIONS[old_status]:
        return False

    if new_status == TaskStatus.ACCEPTED:
        pair_blocked = await ctx.pair_blocked(old["poster_id"], ctx.auth_id)
        return (
            changed <= {"status", "accepted_by_user_id", "accepted_at"}
            and new["accepted_by_user_id"] == ctx.auth_id
            and rules.can_accept_task(old, await ctx.profile(), ctx.auth_id, pair_blocked=pair_blocked)
        )
    if new_status == TaskStatus.CANCELED:
        return changed <= {"status", "canceled_at"} and rules.can_cancel_task(old, ctx.auth_id)
    if new_status == TaskStatus.COMPLETE:
        return changed <= {"status", "completed_at"} and rules.can_complete_task(old, ctx.auth_id)
    return False


# Messages


async def _message_readable(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    task = await ctx.task(row["task_id"])
    return task is not None and rules.can_read_messages(task, ctx.auth_id)


async def _message_create(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    if row.get("sender_id") != ctx.auth_id:
        return False
    task = await ctx.task(row["task_id"])
    if task is None:
        return False

    if row.get("type", MessageType.TEXT) == MessageType.SYSTEM:
        # Only the acting user's own transition message, matching the status it produced
        return row["body"] == rules.expected_system_message(task, ctx.auth_id)

    pair_blocked = await ctx.pair_blocked(task["poster_id"], task.get("accepted_by_user_id"))
    return rules.can_send_message(task, ctx.auth_id, pair_blocked=pair_blocked)


# Ratings


async def _rating_create(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    if row.get("rater_id") != ctx.auth_id:
        return False
    task = await ctx.task(row["task_id"])
    return (
        task is not None
        and rules.can_rate_task(task, ctx.auth_id)
        and row.get("ratee_id") == rules.rating_target(task, ctx.auth_id)
    )


# Blocks


async def _block_is_own(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    return row["blocker_id"] == ctx.auth_id


async def _block_create(ctx: PolicyContext, row: dict[str, Any]) -> bool:
    return row.get("blocker_id") == ctx.auth_id and rules.can_block(ctx.auth_id, row["blocked_id"])


RULES: dict[str, CollectionRules] = {
    # Any subject can read profiles; each subject creates and edits only its own
    "profiles": CollectionRules(
        list_rule=_allow,
        view_rule=_allow,
        create_rule=_profile_is_own,
        update_rule=_profile_is_own,
        update_check=_profile_update_check,
        delete_rule=None,
    ),
    # Tasks are hidden across blocks; updates must be a legal lifecycle step by the right role
    "tasks": CollectionRules(
        list_rule=_task_visible,
        view_rule=_task_visible,
        create_rule=_task_create,
        update_rule=_task_update_using,
        update_check=_task_update_check,
        delete_rule=None,
    ),
    # Messages are append-only and private to participants
    "messages": CollectionRules(
        list_rule=_message_readable,
        view_rule=_message_readable,
        create_rule=_message_create,
        update_rule=None,
        update_check=None,
        delete_rule=None,
    ),
    # Ratings are public; only the other participant of a COMPLETE task can be rated
    "ratings": CollectionRules(
        list_rule=_allow,
        view_rule=_allow,
        create_rule=_rating_create,
        update_rule=None,
        update_check=None,
        delete_rule=None,
    ),
    # Blocks are private to the blocker
    "blocks": CollectionRules(
        list_rule=_block_is_own,
        view_rule=_block_is_own,
        create_rule=_block_create,
        update_rule=None,
        update_check=None,
        delete_rule=_block_is_own,
    ),
}


def _context(auth_id: str) -> PolicyContext:
    if not auth_id:
        msg = "Not authenticated"
        raise PolicyViolationError(msg)
    return PolicyContext(auth_id)


def _deny(operation: str, collection: str, auth_id: str) -> PolicyViolationError:
    logger.warning(
        "Row policy rejected write",
        extra={"operation": operation, "collection": collection, "auth_id": auth_id},
    )
    return PolicyViolationError(f"{operation} on {collection} rejected by row policy")


async def list_records(
    *,
    auth_id: str,
    collection: str,
    filter_query: str = "",
    sort: str = "",
    per_page: int = 50,
) -> list[dict[str, Any]]:
    """List up to per_page records visible to auth_id.

    Invisible rows are skipped and further pages are read until per_page
    visible rows are found or the collection is exhausted. A per_page of -1
    returns every visible record.
    """
    ctx = _context(auth_id)
    rule = RULES[collection].list_rule
    if rule is None:
        return []

    if per_page < 0:
        rows = await db_client.list_records(
            collection=collection, filter_query=filter_query, sort=sort, per_page=-1
        )
        return [row for row in rows if await rule(ctx, row)]

    visible: list[dict[str, Any]] = []
    page = 1
    while len(visible) < per_page:
        batch = await db_client.list_records(
            collection=collection,
            filter_query=filter_query,
            sort=sort,
            page=page,
            per_page=per_page,
        )
        for row in batch:
            if await rule(ctx, row):
                visible.append(row)
                if len(visible) == per_page:
                    break
        if len(batch) < per_page:
            break
        page += 1

    return visible


async def get_record(*, auth_id: str, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a record, raising RecordNotFoundError when it is missing or not visible to auth_id."""
    ctx = _context(auth_id)
    rule = RULES[collection].view_rule
    record = await db_client.get_record(collection=collection, record_id=record_id)
    if rule is None or not await rule(ctx, record):
        msg = f"Record not found in {collection}: {record_id}"
        raise db_client.RecordNotFoundError(msg)
    return record


async def get_first_record(*, auth_id: str, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first visible record matching the filter, or None."""
    records = await list_records(auth_id=auth_id, collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None


async def create_record(*, auth_id: str, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a record if the collection's create rule allows it."""
    ctx = _context(auth_id)
    rule = RULES[collection].create_rule
    if rule is None or not await rule(ctx, data):
        raise _deny("create", collection, auth_id)
    return await db_client.create_record(collection=collection, data=data)


async def update_record(
    *,
    auth_id: str,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Update a record if both update rules allow it.

    Returns None when the stored row is out of reach for auth_id or when the
    ``expected`` guard no longer holds; the caller treats both as "nothing
    matched". Raises PolicyViolationError when the proposed row is rejected.
    """
    ctx = _context(auth_id)
    collection_rules = RULES[collection]
    if collection_rules.update_rule is None or collection_rules.update_check is None:
        raise _deny("update", collection, auth_id)

    current = await db_client.get_record(collection=collection, record_id=record_id)
    if not await collection_rules.update_rule(ctx, current):
        logger.info(
            "Row policy skipped update",
            extra={"collection": collection, "record_id": record_id, "auth_id": auth_id},
        )
        return None

    proposed = {**current, **data}
    if not await collection_rules.update_check(ctx, current, proposed):
        raise _deny("update", collection, auth_id)

    return await db_client.update_record(collection=collection, record_id=record_id, data=data, expected=expected)


async def delete_records(*, auth_id: str, collection: str, filter_query: str) -> int:
    """Delete the matching records auth_id may delete and return how many were removed."""
    ctx = _context(auth_id)
    rule = RULES[collection].delete_rule
    if rule is None:
        return 0

    rows = await db_client.list_records(collection=collection, filter_query=filter_query, per_page=-1)
    deleted = 0
    for row in rows:
        if await rule(ctx, row):
            await db_client.delete_record(collection=collection, record_id=row["id"])
            deleted += 1
    return deleted
