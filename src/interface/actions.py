"""Action layer: every operation returns a uniform ActionResult and never raises.

Expected failures (ActionError subclasses) keep their message. Row-policy
rejections and any other exception are logged with details and reported with
a short, non-leaking message from classify_error.
"""

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Generic, ParamSpec, TypeVar

from pydantic import BaseModel

from src.core.errors import ActionError, classify_error
from src.core.logging import log_with_user_context, span
from src.domain.block import Block, BlockedUser
from src.domain.identity import Identity
from src.domain.message import Message, MessageWithSender
from src.domain.profile import Profile, SignInResult
from src.domain.rating import Rating, UserRatings
from src.domain.task import MyTasks, Task, TaskDetail, TaskWithPoster
from src.services import block_service, message_service, profile_service, rating_service, task_service


logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


class ActionResult(BaseModel, Generic[T]):
    """Uniform result shape returned to the presentation layer."""

    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "ActionResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, *, error: str, code: str) -> "ActionResult[T]":
        return cls(success=False, error=error, code=code)


def action(name: str) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[ActionResult[T]]]]:
    """Wrap a service call so it returns an ActionResult instead of raising."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[ActionResult[T]]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> ActionResult[T]:
            identity = kwargs.get("identity")
            user_id = identity.user_id if isinstance(identity, Identity) else None

            with span(f"actions.{name}"):
                try:
                    return ActionResult.ok(await func(*args, **kwargs))
                except ActionError as e:
                    log_with_user_context(
                        logger, "info", f"{name} rejected", user_id=user_id, code=e.code, error=e.message
                    )
                    return ActionResult.fail(error=e.message, code=e.code)
                except Exception as e:
                    response = classify_error(e)
                    logger.exception(
                        f"{name} failed",
                        extra={"user_id": user_id, "error": str(e), "error_type": type(e).__name__},
                    )
                    return ActionResult.fail(error=response.message, code=response.code)

        return wrapper

    return decorator


# Profiles


@action("sign_in")
async def sign_in(*, identity: Identity | None) -> SignInResult:
    return await profile_service.sign_in(identity=identity)


@action("accept_rules")
async def accept_rules(*, identity: Identity | None, user_id: str) -> None:
    await profile_service.accept_rules(identity=identity, user_id=user_id)


@action("update_display_name")
async def update_display_name(*, identity: Identity | None, display_name: str | None) -> None:
    await profile_service.update_display_name(identity=identity, display_name=display_name)


@action("get_current_profile")
async def get_current_profile(*, identity: Identity | None) -> Profile | None:
    return await profile_service.get_current_profile(identity=identity)


# Tasks


@action("create_task")
async def create_task(*, identity: Identity | None, data: Mapping[str, Any]) -> Task:
    return await task_service.create_task(identity=identity, data=data)


@action("accept_task")
async def accept_task(*, identity: Identity | None, task_id: str) -> None:
    await task_service.accept_task(identity=identity, task_id=task_id)


@action("cancel_task")
async def cancel_task(*, identity: Identity | None, task_id: str) -> None:
    await task_service.cancel_task(identity=identity, task_id=task_id)


@action("complete_task")
async def complete_task(*, identity: Identity | None, task_id: str) -> None:
    await task_service.complete_task(identity=identity, task_id=task_id)


@action("update_task")
async def update_task(*, identity: Identity | None, task_id: str, data: Mapping[str, Any]) -> Task:
    return await task_service.update_task(identity=identity, task_id=task_id, data=data)


@action("get_tasks")
async def get_tasks(*, identity: Identity | None, filters: Mapping[str, Any] | None = None) -> list[TaskWithPoster]:
    return await task_service.get_tasks(identity=identity, filters=filters)


@action("get_task")
async def get_task(*, identity: Identity | None, task_id: str) -> TaskDetail:
    return await task_service.get_task(identity=identity, task_id=task_id)


@action("get_my_tasks")
async def get_my_tasks(*, identity: Identity | None) -> MyTasks:
    return await task_service.get_my_tasks(identity=identity)


# Messages


@action("send_message")
async def send_message(*, identity: Identity | None, task_id: str, body: str) -> Message:
    return await message_service.send_message(identity=identity, task_id=task_id, body=body)


@action("get_messages")
async def get_messages(*, identity: Identity | None, task_id: str) -> list[MessageWithSender]:
    return await message_service.get_messages(identity=identity, task_id=task_id)


# Ratings


@action("submit_rating")
async def submit_rating(*, identity: Identity | None, task_id: str, stars: Any, comment: str | None = None) -> Rating:
    return await rating_service.submit_rating(identity=identity, task_id=task_id, stars=stars, comment=comment)


@action("has_rated")
async def has_rated(*, identity: Identity | None, task_id: str) -> bool:
    return await rating_service.has_rated(identity=identity, task_id=task_id)


@action("get_user_ratings")
async def get_user_ratings(*, identity: Identity | None, user_id: str) -> UserRatings:
    return await rating_service.get_user_ratings(identity=identity, user_id=user_id)


# Blocks


@action("block_user")
async def block_user(*, identity: Identity | None, blocked_id: str) -> Block:
    return await block_service.block_user(identity=identity, blocked_id=blocked_id)


@action("unblock_user")
async def unblock_user(*, identity: Identity | None, blocked_id: str) -> None:
    await block_service.unblock_user(identity=identity, blocked_id=blocked_id)


@action("is_user_blocked")
async def is_user_blocked(*, identity: Identity | None, user_id: str) -> bool:
    return await block_service.is_user_blocked(identity=identity, user_id=user_id)


@action("get_blocked_users")
async def get_blocked_users(*, identity: Identity | None) -> list[BlockedUser]:
    return await block_service.get_blocked_users(identity=identity)
