"""JSON API router mapping HTTP routes onto actions.

Identity comes from headers set by the trusted upstream identity provider;
session and cookie handling stay outside this service. Every response body
is an ActionResult.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from src.core.config import constants, settings
from src.domain.identity import Identity
from src.interface import actions


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])

JsonBody = dict[str, Any]


def require_identity(request: Request) -> Identity:
    """Read the verified subject from the trusted identity headers."""
    user_id = request.headers.get(settings.trusted_identity_header, "").strip()
    email = request.headers.get(settings.trusted_email_header, "").strip()
    if not user_id or not email:
        logger.warning("Request without identity headers", extra={"path": request.url.path})
        raise HTTPException(status_code=constants.HTTP_UNAUTHORIZED, detail="Not authenticated")
    return Identity(user_id=user_id, email=email)


def _dump(result: actions.ActionResult) -> dict[str, Any]:
    return result.model_dump(mode="json", exclude_none=False)


# Profiles


@router.post("/auth/sign-in")
async def sign_in(identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.sign_in(identity=identity))


@router.get("/profile")
async def get_profile(identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_current_profile(identity=identity))


@router.post("/profile/rules")
async def accept_rules(
    payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    user_id = str(payload.get("user_id", identity.user_id))
    return _dump(await actions.accept_rules(identity=identity, user_id=user_id))


@router.patch("/profile")
async def update_profile(
    payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(await actions.update_display_name(identity=identity, display_name=payload.get("display_name")))


# Tasks


@router.get("/tasks")
async def list_tasks(
    category: str | None = None,
    time_window: str | None = None,
    min_price: int | None = None,
    sort: str | None = None,
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    query = {"category": category, "time_window": time_window, "min_price": min_price, "sort": sort}
    filters = {key: value for key, value in query.items() if value is not None}
    return _dump(await actions.get_tasks(identity=identity, filters=filters))


@router.post("/tasks")
async def create_task(
    payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(await actions.create_task(identity=identity, data=payload))


@router.get("/tasks/mine")
async def my_tasks(identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_my_tasks(identity=identity))


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_task(identity=identity, task_id=task_id))


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str, payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(await actions.update_task(identity=identity, task_id=task_id, data=payload))


@router.post("/tasks/{task_id}/accept")
async def accept_task(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.accept_task(identity=identity, task_id=task_id))


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.cancel_task(identity=identity, task_id=task_id))


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.complete_task(identity=identity, task_id=task_id))


# Messages


@router.get("/tasks/{task_id}/messages")
async def get_messages(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_messages(identity=identity, task_id=task_id))


@router.post("/tasks/{task_id}/messages")
async def send_message(
    task_id: str, payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(await actions.send_message(identity=identity, task_id=task_id, body=payload.get("body")))


# Ratings


@router.post("/tasks/{task_id}/ratings")
async def submit_rating(
    task_id: str, payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(
        await actions.submit_rating(
            identity=identity, task_id=task_id, stars=payload.get("stars"), comment=payload.get("comment")
        )
    )


@router.get("/tasks/{task_id}/ratings/mine")
async def has_rated(task_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.has_rated(identity=identity, task_id=task_id))


@router.get("/users/{user_id}/ratings")
async def user_ratings(user_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_user_ratings(identity=identity, user_id=user_id))


# Blocks


@router.get("/blocks")
async def blocked_users(identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.get_blocked_users(identity=identity))


@router.post("/blocks")
async def block_user(
    payload: JsonBody = Body(default_factory=dict), identity: Identity = Depends(require_identity)
) -> dict[str, Any]:
    return _dump(await actions.block_user(identity=identity, blocked_id=str(payload.get("blocked_id", ""))))


@router.get("/blocks/{user_id}")
async def is_user_blocked(user_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.is_user_blocked(identity=identity, user_id=user_id))


@router.delete("/blocks/{blocked_id}")
async def unblock_user(blocked_id: str, identity: Identity = Depends(require_identity)) -> dict[str, Any]:
    return _dump(await actions.unblock_user(identity=identity, blocked_id=blocked_id))
