"""Block service: directed blocks with symmetric effect."""

import logging

from src.core import db_client, row_security
from src.core.errors import NotFoundError, ValidationError
from src.core.logging import log_with_user_context, span
from src.domain import rules
from src.domain.block import Block, BlockedUser
from src.domain.identity import Identity
from src.services import profile_service


logger = logging.getLogger(__name__)


def _pair_filter(blocker_id: str, blocked_id: str) -> str:
    return (
        f'blocker_id = "{db_client.sanitize_param(blocker_id)}" '
        f'&& blocked_id = "{db_client.sanitize_param(blocked_id)}"'
    )


async def block_user(*, identity: Identity, blocked_id: str) -> Block:
    """Block another user.

    Blocking is rejected rather than merged when a row for the pair exists.

    Args:
        identity: Caller identity
        blocked_id: Profile to block

    Returns:
        The created block

    Raises:
        ValidationError: On self-block or if the pair is already blocked
        NotFoundError: If the target profile does not exist
    """
    with span("block_service.block_user"):
        user_id = profile_service.require_identity(identity)

        # Guard: No self-block
        if not rules.can_block(user_id, blocked_id):
            msg = "You cannot block yourself"
            raise ValidationError(msg)

        # Guard: Target must exist
        if await profile_service.get_profile(user_id=blocked_id) is None:
            msg = "User not found"
            raise NotFoundError(msg)

        # Guard: One row per ordered pair
        existing = await row_security.get_first_record(
            auth_id=user_id,
            collection="blocks",
            filter_query=_pair_filter(user_id, blocked_id),
        )
        if existing:
            msg = "User is already blocked"
            raise ValidationError(msg)

        try:
            record = await row_security.create_record(
                auth_id=user_id,
                collection="blocks",
                data={"blocker_id": user_id, "blocked_id": blocked_id},
            )
        except db_client.ConstraintViolationError as e:
            msg = "User is already blocked"
            raise ValidationError(msg) from e

        log_with_user_context(logger, "info", "Blocked user", user_id=user_id, blocked_id=blocked_id)
        return Block(**record)


async def unblock_user(*, identity: Identity, blocked_id: str) -> None:
    """Remove the caller's block on a user. A missing block is not an error."""
    with span("block_service.unblock_user"):
        user_id = profile_service.require_identity(identity)

        deleted = await row_security.delete_records(
            auth_id=user_id,
            collection="blocks",
            filter_query=_pair_filter(user_id, blocked_id),
        )
        log_with_user_context(
            logger, "info", "Unblocked user", user_id=user_id, blocked_id=blocked_id, deleted=deleted
        )


async def is_blocked(*, user_a: str, user_b: str) -> bool:
    """Return True if either user has blocked the other."""
    with span("block_service.is_blocked"):
        return await row_security.is_pair_blocked(user_a, user_b)


async def is_user_blocked(*, identity: Identity, user_id: str) -> bool:
    """Return True if the caller has blocked user_id (directed)."""
    with span("block_service.is_user_blocked"):
        caller_id = profile_service.require_identity(identity)
        existing = await row_security.get_first_record(
            auth_id=caller_id,
            collection="blocks",
            filter_query=_pair_filter(caller_id, user_id),
        )
        return existing is not None


async def get_blocked_users(*, identity: Identity) -> list[BlockedUser]:
    """List the caller's blocks, newest first."""
    with span("block_service.get_blocked_users"):
        user_id = profile_service.require_identity(identity)
        records = await row_security.list_records(
            auth_id=user_id,
            collection="blocks",
            filter_query=f'blocker_id = "{db_client.sanitize_param(user_id)}"',
            sort="-created_at",
            per_page=-1,
        )
        summaries = await profile_service.get_summaries(
            auth_id=user_id, user_ids=(record["blocked_id"] for record in records)
        )
        return [
            BlockedUser(**record, blocked=summaries[record["blocked_id"]])
            for record in records
            if record["blocked_id"] in summaries
        ]


async def blocked_counterparts(*, user_id: str) -> set[str]:
    """Return every profile ID blocked by, or blocking, user_id."""
    return await row_security.blocked_counterparts(user_id)
