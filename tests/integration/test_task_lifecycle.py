"""Integration tests for the task lifecycle against a real SQLite store."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from src.core import db_client
from src.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from src.domain.message import ACCEPTED_MESSAGE, COMPLETED_MESSAGE
from src.domain.task import TaskStatus
from src.services import block_service, message_service, rating_service, task_service
from tests.factories import task_payload


async def system_messages(task_id: str) -> list[str]:
    rows = await db_client.list_records(
        collection="messages",
        filter_query=f'task_id = "{task_id}" && type = "SYSTEM"',
        sort="+created_at",
    )
    return [row["body"] for row in rows]


@pytest.mark.integration
class TestCreateTask:
    async def test_create_sets_open_and_owner(self, poster):
        task = await task_service.create_task(identity=poster, data=task_payload())

        assert task.status == TaskStatus.OPEN
        assert task.poster_id == poster.user_id
        assert task.accepted_by_user_id is None
        assert task.accepted_at is None
        assert task.completed_at is None
        assert task.canceled_at is None

    async def test_rules_gate(self, make_user):
        newcomer = await make_user("newcomer", accept_rules=False)

        with pytest.raises(ValidationError, match="accept the rules"):
            await task_service.create_task(identity=newcomer, data=task_payload())

    async def test_price_band(self, poster):
        with pytest.raises(ValidationError, match="Minimum price"):
            await task_service.create_task(identity=poster, data=task_payload(price_cents=499))
        with pytest.raises(ValidationError, match="Maximum price"):
            await task_service.create_task(identity=poster, data=task_payload(price_cents=50001))

    async def test_scheduled_requires_future_timestamp(self, poster):
        with pytest.raises(ValidationError, match="Scheduled time is required"):
            await task_service.create_task(identity=poster, data=task_payload(time_window="SCHEDULED"))

        future = (datetime.now(UTC) + timedelta(days=1)).isoformat()
        task = await task_service.create_task(
            identity=poster, data=task_payload(time_window="SCHEDULED", scheduled_at=future)
        )
        assert task.scheduled_at is not None

    async def test_scheduled_at_iff_scheduled(self, poster, make_task):
        future = (datetime.now(UTC) + timedelta(days=1)).isoformat()
        await make_task(poster, time_window="TODAY", scheduled_at=future)
        await make_task(poster, time_window="SCHEDULED", scheduled_at=future)

        rows = await db_client.list_records(collection="tasks")
        for row in rows:
            assert (row["time_window"] == "SCHEDULED") == (row["scheduled_at"] is not None)


@pytest.mark.integration
class TestAcceptTask:
    async def test_accept(self, open_task, worker):
        task = await task_service.accept_task(identity=worker, task_id=open_task.id)

        assert task.status == TaskStatus.ACCEPTED
        assert task.accepted_by_user_id == worker.user_id
        assert task.accepted_at is not None
        assert await system_messages(open_task.id) == [ACCEPTED_MESSAGE]

    async def test_missing_task(self, worker):
        with pytest.raises(NotFoundError, match="Task not found"):
            await task_service.accept_task(identity=worker, task_id="does-not-exist")

    async def test_no_self_dealing(self, open_task, poster):
        with pytest.raises(PermissionDeniedError, match="your own task"):
            await task_service.accept_task(identity=poster, task_id=open_task.id)

    async def test_rules_gate(self, open_task, make_user):
        newcomer = await make_user("newcomer", accept_rules=False)

        with pytest.raises(ValidationError):
            await task_service.accept_task(identity=newcomer, task_id=open_task.id)

    async def test_blocked_pair(self, open_task, poster, worker):
        await block_service.block_user(identity=worker, blocked_id=poster.user_id)

        with pytest.raises(PermissionDeniedError, match="Unable to accept"):
            await task_service.accept_task(identity=worker, task_id=open_task.id)

        stored = await db_client.get_record(collection="tasks", record_id=open_task.id)
        assert stored["status"] == "OPEN"

    async def test_second_accept_is_no_longer_available(self, accepted_task, outsider, worker):
        with pytest.raises(ConflictError, match="no longer available"):
            await task_service.accept_task(identity=outsider, task_id=accepted_task.id)

        stored = await db_client.get_record(collection="tasks", record_id=accepted_task.id)
        assert stored["accepted_by_user_id"] == worker.user_id

    async def test_concurrent_accepts_have_one_winner(self, open_task, make_user):
        workers = [await make_user(f"racer{i}") for i in range(5)]

        results = await asyncio.gather(
            *(task_service.accept_task(identity=racer, task_id=open_task.id) for racer in workers),
            return_exceptions=True,
        )

        winners = [result for result in results if not isinstance(result, BaseException)]
        losers = [result for result in results if isinstance(result, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(loser, ConflictError) for loser in losers)
        assert all(loser.message == task_service.NO_LONGER_AVAILABLE for loser in losers)

        stored = await db_client.get_record(collection="tasks", record_id=open_task.id)
        assert stored["status"] == "ACCEPTED"
        assert stored["accepted_by_user_id"] == winners[0].accepted_by_user_id
        assert await system_messages(open_task.id) == [ACCEPTED_MESSAGE]


@pytest.mark.integration
class TestCancelTask:
    async def test_poster_cancels_open(self, open_task, poster):
        task = await task_service.cancel_task(identity=poster, task_id=open_task.id)

        assert task.status == TaskStatus.CANCELED
        assert task.canceled_at is not None
        assert await system_messages(open_task.id) == ["Task canceled by the poster."]

    async def test_worker_cancels_accepted(self, accepted_task, worker):
        task = await task_service.cancel_task(identity=worker, task_id=accepted_task.id)

        assert task.status == TaskStatus.CANCELED
        assert await system_messages(accepted_task.id) == [ACCEPTED_MESSAGE, "Task canceled by the worker."]

    async def test_poster_cancels_accepted(self, accepted_task, poster):
        task = await task_service.cancel_task(identity=poster, task_id=accepted_task.id)

        assert task.status == TaskStatus.CANCELED

    async def test_outsider_cannot_cancel(self, open_task, worker):
        with pytest.raises(PermissionDeniedError, match="cannot cancel"):
            await task_service.cancel_task(identity=worker, task_id=open_task.id)

    async def test_cannot_cancel_completed(self, completed_task, poster):
        with pytest.raises(ConflictError, match="completed task"):
            await task_service.cancel_task(identity=poster, task_id=completed_task.id)

        stored = await db_client.get_record(collection="tasks", record_id=completed_task.id)
        assert stored["status"] == "COMPLETE"
        assert stored["canceled_at"] is None

    async def test_cannot_cancel_twice(self, open_task, poster):
        await task_service.cancel_task(identity=poster, task_id=open_task.id)

        with pytest.raises(ConflictError, match="already canceled"):
            await task_service.cancel_task(identity=poster, task_id=open_task.id)


@pytest.mark.integration
class TestCompleteTask:
    async def test_poster_completes(self, accepted_task, poster):
        task = await task_service.complete_task(identity=poster, task_id=accepted_task.id)

        assert task.status == TaskStatus.COMPLETE
        assert task.completed_at is not None
        assert await system_messages(accepted_task.id) == [ACCEPTED_MESSAGE, COMPLETED_MESSAGE]

    async def test_worker_cannot_complete(self, accepted_task, worker):
        with pytest.raises(PermissionDeniedError, match="Only the task poster"):
            await task_service.complete_task(identity=worker, task_id=accepted_task.id)

    async def test_cannot_complete_open(self, open_task, poster):
        with pytest.raises(ConflictError, match="must be accepted"):
            await task_service.complete_task(identity=poster, task_id=open_task.id)

    async def test_cannot_complete_canceled(self, accepted_task, poster):
        await task_service.cancel_task(identity=poster, task_id=accepted_task.id)

        with pytest.raises(ConflictError):
            await task_service.complete_task(identity=poster, task_id=accepted_task.id)


@pytest.mark.integration
class TestUpdateTask:
    async def test_edit_while_open(self, open_task, poster):
        task = await task_service.update_task(
            identity=poster, task_id=open_task.id, data={"title": "Pickup two boxes", "price_cents": 1500}
        )

        assert task.title == "Pickup two boxes"
        assert task.price_cents == 1500
        assert task.description == open_task.description

    async def test_edit_after_accept_is_conflict(self, accepted_task, poster):
        with pytest.raises(ConflictError, match="still open"):
            await task_service.update_task(identity=poster, task_id=accepted_task.id, data={"price_cents": 500})

        stored = await db_client.get_record(collection="tasks", record_id=accepted_task.id)
        assert stored["price_cents"] == accepted_task.price_cents

    async def test_only_poster_edits(self, open_task, worker):
        with pytest.raises(PermissionDeniedError, match="your own tasks"):
            await task_service.update_task(identity=worker, task_id=open_task.id, data={"title": "Mine now"})

    async def test_price_band_on_edit(self, open_task, poster):
        with pytest.raises(ValidationError, match="Maximum price"):
            await task_service.update_task(identity=poster, task_id=open_task.id, data={"price_cents": 60000})

    async def test_empty_edit_returns_task(self, open_task, poster):
        task = await task_service.update_task(identity=poster, task_id=open_task.id, data={})

        assert task.id == open_task.id
        assert task.title == open_task.title


@pytest.mark.integration
class TestReads:
    async def test_feed_filters_and_sort(self, make_task, poster, worker):
        cheap = await make_task(poster, price_cents=600, category="DELIVERY")
        pricey = await make_task(poster, price_cents=4000, category="TUTORING", time_window="TODAY")
        newest = await make_task(poster, price_cents=1200, category="DELIVERY")

        by_date = await task_service.get_tasks(identity=worker)
        assert [task.id for task in by_date] == [newest.id, pricey.id, cheap.id]
        assert by_date[0].poster.display_name == "Pat Poster"

        by_pay = await task_service.get_tasks(identity=worker, filters={"sort": "highest_pay"})
        assert [task.id for task in by_pay] == [pricey.id, newest.id, cheap.id]

        deliveries = await task_service.get_tasks(identity=worker, filters={"category": "DELIVERY"})
        assert {task.id for task in deliveries} == {cheap.id, newest.id}

        today = await task_service.get_tasks(identity=worker, filters={"time_window": "TODAY"})
        assert [task.id for task in today] == [pricey.id]

        above = await task_service.get_tasks(identity=worker, filters={"min_price": 1000})
        assert {task.id for task in above} == {pricey.id, newest.id}

    async def test_feed_excludes_terminal_tasks(self, make_task, poster, worker, completed_task):
        canceled = await make_task(poster)
        await task_service.cancel_task(identity=poster, task_id=canceled.id)
        open_task = await make_task(poster)

        feed = await task_service.get_tasks(identity=worker)

        assert [task.id for task in feed] == [open_task.id]

    async def test_feed_limit(self, make_task, poster, worker):
        for _ in range(52):
            await make_task(poster)

        feed = await task_service.get_tasks(identity=worker)

        assert len(feed) == 50

    async def test_block_hides_tasks_both_ways(self, make_task, poster, worker, outsider):
        poster_task = await make_task(poster)
        worker_task = await make_task(worker)
        await block_service.block_user(identity=poster, blocked_id=worker.user_id)

        worker_feed = {task.id for task in await task_service.get_tasks(identity=worker)}
        poster_feed = {task.id for task in await task_service.get_tasks(identity=poster)}
        outsider_feed = {task.id for task in await task_service.get_tasks(identity=outsider)}

        assert poster_task.id not in worker_feed
        assert worker_task.id not in poster_feed
        assert outsider_feed == {poster_task.id, worker_task.id}

    async def test_block_hides_accepted_task_of_blocked_worker(self, accepted_task, worker, outsider):
        await block_service.block_user(identity=outsider, blocked_id=worker.user_id)

        feed = await task_service.get_tasks(identity=outsider)

        assert accepted_task.id not in {task.id for task in feed}

    async def test_task_detail(self, completed_task, poster, worker, outsider):
        await rating_service.submit_rating(identity=worker, task_id=completed_task.id, stars=4)

        detail = await task_service.get_task(identity=outsider, task_id=completed_task.id)

        assert detail.poster.display_name == "Pat Poster"
        assert detail.acceptor is not None
        assert detail.acceptor.display_name == "worker"
        assert detail.poster_rating.average == 4.0
        assert detail.poster_rating.count == 1
        assert detail.acceptor_rating is not None
        assert detail.acceptor_rating.count == 0
        assert detail.acceptor_rating.average is None

    async def test_task_detail_hidden_by_block(self, open_task, poster, worker):
        await block_service.block_user(identity=worker, blocked_id=poster.user_id)

        with pytest.raises(NotFoundError):
            await task_service.get_task(identity=worker, task_id=open_task.id)

    async def test_my_tasks(self, make_task, accepted_task, poster, worker):
        other = await make_task(poster)

        mine = await task_service.get_my_tasks(identity=poster)
        theirs = await task_service.get_my_tasks(identity=worker)

        assert [task.id for task in mine.posted] == [other.id, accepted_task.id]
        assert mine.accepted == []
        assert theirs.posted == []
        assert [task.id for task in theirs.accepted] == [accepted_task.id]


@pytest.mark.integration
async def test_end_to_end_scenario(poster, worker, outsider):
    """Create, accept, lose a second accept, complete and rate once each."""
    task = await task_service.create_task(
        identity=poster, data={**task_payload(title="Pickup", price_cents=1000), "time_window": "NOW"}
    )
    assert task.status == TaskStatus.OPEN

    accepted = await task_service.accept_task(identity=worker, task_id=task.id)
    assert accepted.status == TaskStatus.ACCEPTED
    history = await message_service.get_messages(identity=poster, task_id=task.id)
    assert [message.body for message in history] == [ACCEPTED_MESSAGE]

    with pytest.raises(ConflictError, match="no longer available"):
        await task_service.accept_task(identity=outsider, task_id=task.id)

    completed = await task_service.complete_task(identity=poster, task_id=task.id)
    assert completed.status == TaskStatus.COMPLETE
    assert completed.completed_at is not None

    await rating_service.submit_rating(identity=poster, task_id=task.id, stars=5)
    await rating_service.submit_rating(identity=worker, task_id=task.id, stars=4)
    with pytest.raises(ConflictError, match="already rated"):
        await rating_service.submit_rating(identity=worker, task_id=task.id, stars=1)

    with pytest.raises(ConflictError):
        await task_service.cancel_task(identity=poster, task_id=task.id)
    stored = await db_client.get_record(collection="tasks", record_id=task.id)
    assert stored["status"] == "COMPLETE"
