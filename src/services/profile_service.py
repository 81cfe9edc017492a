"""Profile service for sign-in, the rules gate and display names."""

import logging
from collections.abc import Iterable
from typing import Any

from src.core import db_client, row_security
from src.core.config import settings
from src.core.errors import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
    parse_payload,
)
from src.core.logging import log_with_user_context, span
from src.domain.identity import Identity
from src.domain.profile import Profile, ProfileSummary, SignInResult, summarize
from src.domain.update_models import DisplayNameUpdate


logger = logging.getLogger(__name__)


def require_identity(identity: Identity | None) -> str:
    """Return the verified subject ID, or raise AuthenticationError.

    Args:
        identity: Identity supplied by the caller, possibly missing

    Returns:
        The subject's user ID

    Raises:
        AuthenticationError: If no verified subject is attached
    """
    if identity is None or not identity.user_id.strip():
        msg = "Not authenticated"
        raise AuthenticationError(msg)
    return identity.user_id


def is_campus_email(email: str) -> bool:
    """Check the email belongs to the configured institutional domain."""
    local, sep, domain = email.strip().lower().rpartition("@")
    return bool(sep and local) and domain == settings.campus_email_domain.lower()


async def get_profile(*, user_id: str) -> dict[str, Any] | None:
    """Fetch a profile record by ID, or None if it does not exist."""
    try:
        return await db_client.get_record(collection="profiles", record_id=user_id)
    except db_client.RecordNotFoundError:
        return None


async def sign_in(*, identity: Identity) -> SignInResult:
    """Create the caller's profile on first sign-in.

    The email domain is re-verified here because the login surface is
    untrusted. An existing profile is returned as-is and never overwritten.

    Args:
        identity: Verified subject from the identity provider

    Returns:
        SignInResult with the profile and whether the rules gate is still pending

    Raises:
        AuthenticationError: If no verified subject is attached
        ValidationError: If the email is outside the campus domain
        ConflictError: If another profile already holds the email
    """
    with span("profile_service.sign_in"):
        user_id = require_identity(identity)

        # Guard: Campus email only
        if not is_campus_email(identity.email):
            logger.warning("Non-campus email attempted sign-in", extra={"user_id": user_id})
            msg = f"Only @{settings.campus_email_domain} email addresses are allowed"
            raise ValidationError(msg)

        profile = await get_profile(user_id=user_id)
        if profile is None:
            try:
                profile = await row_security.create_record(
                    auth_id=user_id,
                    collection="profiles",
                    data={
                        "id": user_id,
                        "email": identity.email.strip().lower(),
                        "display_name": None,
                        "accepted_rules": False,
                    },
                )
                log_with_user_context(logger, "info", "Created profile on first sign-in", user_id=user_id)
            except db_client.ConstraintViolationError:
                # Concurrent first sign-in created it already, unless the email belongs to someone else
                profile = await get_profile(user_id=user_id)
                if profile is None:
                    logger.warning("Sign-in email already linked to another profile", extra={"user_id": user_id})
                    msg = "This email is already linked to another account"
                    raise ConflictError(msg) from None

        result = Profile(**profile)
        return SignInResult(profile=result, needs_rules=not result.accepted_rules)


async def accept_rules(*, identity: Identity, user_id: str) -> Profile:
    """Set the rules gate on the caller's own profile.

    Raises:
        AuthenticationError: If no verified subject is attached
        PermissionDeniedError: If user_id is not the caller
    """
    with span("profile_service.accept_rules"):
        caller_id = require_identity(identity)

        # Guard: Only the owner can accept
        if caller_id != user_id:
            logger.warning(
                "User tried to accept rules for a different user",
                extra={"user_id": caller_id, "target_user_id": user_id},
            )
            msg = "Unauthorized"
            raise PermissionDeniedError(msg)

        updated = await row_security.update_record(
            auth_id=caller_id,
            collection="profiles",
            record_id=user_id,
            data={"accepted_rules": True},
        )
        if updated is None:
            msg = "Unauthorized"
            raise PermissionDeniedError(msg)

        log_with_user_context(logger, "info", "Accepted community rules", user_id=caller_id)
        return Profile(**updated)


async def update_display_name(*, identity: Identity, display_name: str | None) -> Profile:
    """Set or clear the caller's display name.

    Raises:
        AuthenticationError: If no verified subject is attached
        ValidationError: If the trimmed name is too long
    """
    with span("profile_service.update_display_name"):
        user_id = require_identity(identity)
        update = parse_payload(DisplayNameUpdate, {"display_name": display_name})

        updated = await row_security.update_record(
            auth_id=user_id,
            collection="profiles",
            record_id=user_id,
            data={"display_name": update.display_name},
        )
        if updated is None:
            msg = "Unauthorized"
            raise PermissionDeniedError(msg)

        log_with_user_context(logger, "info", "Updated display name", user_id=user_id)
        return Profile(**updated)


async def get_current_profile(*, identity: Identity) -> Profile | None:
    """Return the caller's profile, or None before first sign-in."""
    with span("profile_service.get_current_profile"):
        user_id = require_identity(identity)
        try:
            record = await row_security.get_record(auth_id=user_id, collection="profiles", record_id=user_id)
        except db_client.RecordNotFoundError:
            return None
        return Profile(**record)


async def get_summaries(*, auth_id: str, user_ids: Iterable[str | None]) -> dict[str, ProfileSummary]:
    """Return display summaries for the given profile IDs, skipping missing ones."""
    summaries: dict[str, ProfileSummary] = {}
    for user_id in {uid for uid in user_ids if uid}:
        try:
            record = await row_security.get_record(auth_id=auth_id, collection="profiles", record_id=user_id)
        except db_client.RecordNotFoundError:
            continue
        summaries[user_id] = summarize(record)
    return summaries
