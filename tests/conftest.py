"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest

from src.core import db_client
from src.core.config import settings
from src.domain.identity import Identity
from src.domain.task import Task
from src.services import profile_service, task_service
from tests.factories import task_payload


logger = logging.getLogger(__name__)


@pytest.fixture
def db_path(tmp_path, monkeypatch) -> str:
    """Point the store at a fresh SQLite file for the test."""
    path = str(tmp_path / "sidequest_test.db")
    monkeypatch.setattr(settings, "sqlite_db_path", path)
    return path


@pytest.fixture
async def db(db_path: str) -> AsyncIterator[str]:
    """Initialise the real schema in an isolated database and close it afterwards."""
    await db_client.init_db()
    logger.info("Test database ready at %s", db_path)
    yield db_path
    await db_client.close_connection()


@pytest.fixture
def make_user(db) -> Callable[..., Awaitable[Identity]]:
    """Factory that signs a user in, accepting the rules by default."""

    async def _make_user(name: str, *, accept_rules: bool = True, display_name: str | None = None) -> Identity:
        identity = Identity(user_id=f"user-{name}", email=f"{name}@uci.edu")
        await profile_service.sign_in(identity=identity)
        if accept_rules:
            await profile_service.accept_rules(identity=identity, user_id=identity.user_id)
        if display_name is not None:
            await profile_service.update_display_name(identity=identity, display_name=display_name)
        return identity

    return _make_user


@pytest.fixture
def make_task(db) -> Callable[..., Awaitable[Task]]:
    """Factory that posts an OPEN task as the given user."""

    async def _make_task(poster: Identity, **overrides: Any) -> Task:
        return await task_service.create_task(identity=poster, data=task_payload(**overrides))

    return _make_task


@pytest.fixture
async def poster(make_user) -> Identity:
    return await make_user("poster", display_name="Pat Poster")


@pytest.fixture
async def worker(make_user) -> Identity:
    return await make_user("worker")


@pytest.fixture
async def outsider(make_user) -> Identity:
    return await make_user("outsider")


@pytest.fixture
async def open_task(make_task, poster) -> Task:
    return await make_task(poster)


@pytest.fixture
async def accepted_task(open_task, worker) -> Task:
    return await task_service.accept_task(identity=worker, task_id=open_task.id)


@pytest.fixture
async def completed_task(accepted_task, poster) -> Task:
    return await task_service.complete_task(identity=poster, task_id=accepted_task.id)
