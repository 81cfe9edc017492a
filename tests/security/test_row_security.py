"""Row-level rules reject the same writes the services reject, even when the services are bypassed."""

import pytest

from src.core import db_client, row_security
from src.core.row_security import PolicyViolationError
from src.domain.message import ACCEPTED_MESSAGE, COMPLETED_MESSAGE
from src.services import block_service, task_service
from tests.factories import task_record


async def direct_update(auth_id: str, task_id: str, **data):
    return await row_security.update_record(auth_id=auth_id, collection="tasks", record_id=task_id, data=data)


@pytest.mark.security
class TestTaskWrites:
    async def test_cannot_post_as_someone_else(self, poster, worker):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=worker.user_id, collection="tasks", data=task_record(poster.user_id)
            )

    async def test_cannot_post_without_rules(self, make_user):
        newcomer = await make_user("newcomer", accept_rules=False)

        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=newcomer.user_id, collection="tasks", data=task_record(newcomer.user_id)
            )

    async def test_cannot_post_pre_accepted(self, poster, worker):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="tasks",
                data=task_record(poster.user_id, status="ACCEPTED", accepted_by_user_id=worker.user_id),
            )

    async def test_non_poster_cannot_edit(self, open_task, worker):
        with pytest.raises(PolicyViolationError):
            await direct_update(worker.user_id, open_task.id, title="Hijacked")

    async def test_poster_cannot_edit_after_accept(self, accepted_task, poster):
        with pytest.raises(PolicyViolationError):
            await direct_update(poster.user_id, accepted_task.id, price_cents=500)

        stored = await db_client.get_record(collection="tasks", record_id=accepted_task.id)
        assert stored["price_cents"] == accepted_task.price_cents

    async def test_immutable_fields(self, open_task, poster):
        with pytest.raises(PolicyViolationError):
            await direct_update(poster.user_id, open_task.id, category="MOVING")

    async def test_poster_cannot_accept_own_task(self, open_task, poster):
        with pytest.raises(PolicyViolationError):
            await direct_update(
                poster.user_id,
                open_task.id,
                status="ACCEPTED",
                accepted_by_user_id=poster.user_id,
                accepted_at=db_client.utc_now(),
            )

    async def test_cannot_accept_on_behalf_of_someone_else(self, open_task, worker, outsider):
        with pytest.raises(PolicyViolationError):
            await direct_update(
                worker.user_id,
                open_task.id,
                status="ACCEPTED",
                accepted_by_user_id=outsider.user_id,
                accepted_at=db_client.utc_now(),
            )

    async def test_blocked_user_cannot_accept(self, open_task, poster, worker):
        await block_service.block_user(identity=poster, blocked_id=worker.user_id)

        with pytest.raises(PolicyViolationError):
            await direct_update(
                worker.user_id,
                open_task.id,
                status="ACCEPTED",
                accepted_by_user_id=worker.user_id,
                accepted_at=db_client.utc_now(),
            )

    async def test_worker_cannot_complete(self, accepted_task, worker):
        with pytest.raises(PolicyViolationError):
            await direct_update(worker.user_id, accepted_task.id, status="COMPLETE", completed_at=db_client.utc_now())

    async def test_cannot_skip_acceptance(self, open_task, poster):
        with pytest.raises(PolicyViolationError):
            await direct_update(poster.user_id, open_task.id, status="COMPLETE", completed_at=db_client.utc_now())

    async def test_worker_cannot_cancel_open_task(self, open_task, worker):
        with pytest.raises(PolicyViolationError):
            await direct_update(worker.user_id, open_task.id, status="CANCELED", canceled_at=db_client.utc_now())

    async def test_terminal_state_cannot_be_reopened(self, completed_task, poster):
        with pytest.raises(PolicyViolationError):
            await direct_update(poster.user_id, completed_task.id, status="OPEN")

    async def test_outsider_update_of_accepted_task_is_skipped(self, accepted_task, outsider):
        result = await direct_update(
            outsider.user_id, accepted_task.id, status="CANCELED", canceled_at=db_client.utc_now()
        )

        assert result is None
        stored = await db_client.get_record(collection="tasks", record_id=accepted_task.id)
        assert stored["status"] == "ACCEPTED"

    async def test_anonymous_subject_rejected(self, open_task):
        with pytest.raises(PolicyViolationError):
            await row_security.list_records(auth_id="", collection="tasks")


@pytest.mark.security
class TestMessagePolicies:
    async def test_outsider_cannot_post(self, accepted_task, outsider):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=outsider.user_id,
                collection="messages",
                data={"task_id": accepted_task.id, "sender_id": outsider.user_id, "type": "TEXT", "body": "hi"},
            )

    async def test_cannot_spoof_sender(self, accepted_task, poster, worker):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=worker.user_id,
                collection="messages",
                data={"task_id": accepted_task.id, "sender_id": poster.user_id, "type": "TEXT", "body": "hi"},
            )

    async def test_cannot_post_while_open(self, open_task, poster):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="messages",
                data={"task_id": open_task.id, "sender_id": poster.user_id, "type": "TEXT", "body": "hi"},
            )

    async def test_cannot_forge_system_message(self, accepted_task, poster):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="messages",
                data={
                    "task_id": accepted_task.id,
                    "sender_id": poster.user_id,
                    "type": "SYSTEM",
                    "body": COMPLETED_MESSAGE,
                },
            )

    async def test_cannot_post_after_block(self, accepted_task, poster, worker):
        await block_service.block_user(identity=worker, blocked_id=poster.user_id)

        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="messages",
                data={"task_id": accepted_task.id, "sender_id": poster.user_id, "type": "TEXT", "body": "hi"},
            )

    async def test_messages_are_append_only(self, accepted_task, worker):
        messages = await row_security.list_records(
            auth_id=worker.user_id,
            collection="messages",
            filter_query=f'task_id = "{accepted_task.id}"',
        )
        assert [message["body"] for message in messages] == [ACCEPTED_MESSAGE]

        with pytest.raises(PolicyViolationError):
            await row_security.update_record(
                auth_id=worker.user_id,
                collection="messages",
                record_id=messages[0]["id"],
                data={"body": "edited"},
            )
        assert (
            await row_security.delete_records(
                auth_id=worker.user_id, collection="messages", filter_query=f'task_id = "{accepted_task.id}"'
            )
            == 0
        )

    async def test_outsider_reads_nothing(self, accepted_task, outsider):
        messages = await row_security.list_records(
            auth_id=outsider.user_id,
            collection="messages",
            filter_query=f'task_id = "{accepted_task.id}"',
        )

        assert messages == []


@pytest.mark.security
class TestRatingPolicies:
    async def test_cannot_direct_rating_at_someone_else(self, completed_task, poster, outsider):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="ratings",
                data={
                    "task_id": completed_task.id,
                    "rater_id": poster.user_id,
                    "ratee_id": outsider.user_id,
                    "stars": 1,
                },
            )

    async def test_cannot_rate_before_completion(self, accepted_task, poster, worker):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=poster.user_id,
                collection="ratings",
                data={
                    "task_id": accepted_task.id,
                    "rater_id": poster.user_id,
                    "ratee_id": worker.user_id,
                    "stars": 5,
                },
            )

    async def test_outsider_cannot_rate(self, completed_task, poster, outsider):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=outsider.user_id,
                collection="ratings",
                data={
                    "task_id": completed_task.id,
                    "rater_id": outsider.user_id,
                    "ratee_id": poster.user_id,
                    "stars": 1,
                },
            )


@pytest.mark.security
class TestBlockAndProfilePolicies:
    async def test_blocks_are_private_to_blocker(self, poster, worker, outsider):
        await block_service.block_user(identity=poster, blocked_id=worker.user_id)

        assert await row_security.list_records(auth_id=outsider.user_id, collection="blocks") == []
        assert await row_security.list_records(auth_id=worker.user_id, collection="blocks") == []
        assert len(await row_security.list_records(auth_id=poster.user_id, collection="blocks")) == 1

    async def test_cannot_remove_someone_elses_block(self, poster, worker):
        await block_service.block_user(identity=poster, blocked_id=worker.user_id)

        deleted = await row_security.delete_records(
            auth_id=worker.user_id,
            collection="blocks",
            filter_query=f'blocker_id = "{poster.user_id}"',
        )

        assert deleted == 0
        assert await block_service.is_blocked(user_a=worker.user_id, user_b=poster.user_id)

    async def test_cannot_block_on_behalf_of_someone_else(self, poster, worker, outsider):
        with pytest.raises(PolicyViolationError):
            await row_security.create_record(
                auth_id=outsider.user_id,
                collection="blocks",
                data={"blocker_id": poster.user_id, "blocked_id": worker.user_id},
            )

    async def test_cannot_edit_someone_elses_profile(self, poster, worker):
        result = await row_security.update_record(
            auth_id=worker.user_id,
            collection="profiles",
            record_id=poster.user_id,
            data={"display_name": "Impostor"},
        )

        assert result is None

    async def test_cannot_change_own_email(self, poster):
        with pytest.raises(PolicyViolationError):
            await row_security.update_record(
                auth_id=poster.user_id,
                collection="profiles",
                record_id=poster.user_id,
                data={"email": "someone-else@uci.edu"},
            )


@pytest.mark.security
class TestReadVisibility:
    async def test_blocked_tasks_filtered_both_ways(self, make_task, poster, worker, outsider):
        task = await make_task(poster)
        await block_service.block_user(identity=poster, blocked_id=worker.user_id)

        worker_view = await row_security.list_records(auth_id=worker.user_id, collection="tasks")
        outsider_view = await row_security.list_records(auth_id=outsider.user_id, collection="tasks")

        assert task.id not in {row["id"] for row in worker_view}
        assert task.id in {row["id"] for row in outsider_view}
        with pytest.raises(db_client.RecordNotFoundError):
            await row_security.get_record(auth_id=worker.user_id, collection="tasks", record_id=task.id)

    async def test_pagination_fills_page_past_hidden_rows(self, make_task, make_user, poster, worker):
        blocked_poster = await make_user("blocked")
        for _ in range(3):
            await make_task(blocked_poster)
        visible = [await make_task(poster) for _ in range(2)]
        await block_service.block_user(identity=worker, blocked_id=blocked_poster.user_id)

        rows = await row_security.list_records(
            auth_id=worker.user_id, collection="tasks", sort="+created_at", per_page=2
        )

        assert [row["id"] for row in rows] == [task.id for task in visible]

    async def test_service_and_policy_agree_on_feed(self, make_task, poster, worker):
        await make_task(poster)
        await block_service.block_user(identity=worker, blocked_id=poster.user_id)

        feed = await task_service.get_tasks(identity=worker)
        rows = await row_security.list_records(auth_id=worker.user_id, collection="tasks")

        assert feed == []
        assert rows == []
