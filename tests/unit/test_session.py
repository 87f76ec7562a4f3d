"""Unit tests for the per-client progress session."""

import asyncio
from uuid import uuid4

import pytest

from family_stars.core.enums import CelebrationKind, RealtimeTable
from family_stars.domain.events import TaskCompletion
from family_stars.events.realtime import RealtimeHub
from family_stars.events.schemas import RealtimeChange
from family_stars.services.celebrations import CelebrationQueue
from family_stars.services.session import ProgressSession


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def session(memory_repos, bus, hub, instant_queue, user_id, group_id):
    return ProgressSession(user_id, group_id, memory_repos, bus=bus, realtime=hub, queue=instant_queue)


def _completion(user_id, group_id, was, now, stars=5, category_id=None):
    return TaskCompletion(
        task_id=uuid4(),
        group_id=group_id,
        category_id=category_id,
        star_value=stars,
        assignee_id=user_id,
        was_completed=was,
        is_completed=now,
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestProgressSession:

    async def test_start_joins_group(self, session, memory_repos, user_id, group_id):
        await session.start(run_queue=False)

        assert await memory_repos.membership.get(user_id, group_id) is not None
        assert session.total_stars == 0
        assert session.current_stage == 1
        await session.close()

    async def test_start_replays_unseen_badges(self, memory_repos, bus, instant_queue, user_id, group_id):
        await memory_repos.membership.create(user_id, group_id)
        await memory_repos.membership.increment_stars(user_id, group_id, 25)
        await memory_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_20")

        session = ProgressSession(user_id, group_id, memory_repos, bus=bus, queue=instant_queue)
        await session.start(run_queue=False)

        assert [e.payload["badge_id"] for e in instant_queue.pending] == ["baby_20"]
        await session.close()

    async def test_task_completion_feeds_ledger_and_goal(self, session, user_id, group_id, instant_queue):
        await session.start(run_queue=False)
        await session.create_goal(10)

        outcome = await session.handle_task_completion(_completion(user_id, group_id, False, True, stars=12))

        assert outcome.new_total == 12
        assert session.active_goal is None
        kinds = [e.kind for e in instant_queue.pending]
        assert CelebrationKind.GOAL in kinds
        assert CelebrationKind.BADGE in kinds
        await session.close()

    async def test_uncompletion_subtracts_without_goal_change(self, session, memory_repos, user_id, group_id):
        await session.start(run_queue=False)
        goal = await session.create_goal(50)
        await session.handle_task_completion(_completion(user_id, group_id, False, True, stars=5))

        outcome = await session.handle_task_completion(_completion(user_id, group_id, True, False, stars=5))

        assert outcome.new_total == 0
        stored = await memory_repos.goal.get_by_id(goal.id)
        assert stored.current_stars == 5
        await session.close()

    async def test_failed_delta_skips_goal(self, session, memory_repos, user_id, group_id):
        await session.start(run_queue=False)
        goal = await session.create_goal(10)

        async def offline(*args, **kwargs):
            raise ConnectionError("offline")

        memory_repos.membership.increment_stars = offline

        outcome = await session.handle_task_completion(_completion(user_id, group_id, False, True, stars=5))

        assert not outcome
        assert (await memory_repos.goal.get_by_id(goal.id)).current_stars == 0
        await session.close()

    async def test_other_members_tasks_ignored(self, session, group_id):
        await session.start(run_queue=False)
        assert await session.handle_task_completion(_completion(uuid4(), group_id, False, True)) is None
        await session.close()

    async def test_realtime_change_triggers_refetch(self, session, memory_repos, hub, user_id, group_id):
        await session.start(run_queue=False)

        # Another device writes directly
        await memory_repos.membership.increment_stars(user_id, group_id, 40)
        assert session.total_stars == 0

        await hub.publish(
            RealtimeChange(table=RealtimeTable.MEMBERSHIPS, group_id=group_id, user_id=user_id,
                           payload={"total_stars": 12345})
        )

        assert session.total_stars == 40
        await session.close()

    async def test_focus_regained_refetches(self, session, memory_repos, user_id, group_id):
        await session.start(run_queue=False)
        await memory_repos.goal.create(user_id, group_id, 30)

        await session.on_focus_regained()

        assert session.active_goal is not None
        assert session.active_goal.target_stars == 30
        await session.close()

    async def test_close_unsubscribes(self, session, bus, hub):
        await session.start(run_queue=False)
        assert hub.subscription_count == 1

        await session.close()

        assert hub.subscription_count == 0

    async def test_context_manager_runs_queue(self, memory_repos, bus, user_id, group_id, instant_queue):
        async with ProgressSession(user_id, group_id, memory_repos, bus=bus, queue=instant_queue) as session:
            await session.apply_delta(10)
            await session.drain_celebrations()
            assert session.current_celebration is None
            assert [b.id for b in session.unlocked_badges] == ["baby_10"]

    async def test_close_mid_milestone_celebration_still_resets(self, memory_repos, bus, user_id, group_id):
        never = asyncio.Event()

        async def visible_forever(seconds):
            await never.wait()

        await memory_repos.membership.create(user_id, group_id)
        await memory_repos.membership.increment_stars(user_id, group_id, 990)
        session = ProgressSession(
            user_id, group_id, memory_repos, bus=bus, queue=CelebrationQueue(sleep=visible_forever)
        )
        await session.start(run_queue=False)

        outcome = await session.apply_delta(15)
        assert outcome.milestone_crossed
        session.queue.tick()
        await asyncio.sleep(0)
        assert session.current_celebration.kind == CelebrationKind.MILESTONE

        await session.close()

        assert (await memory_repos.membership.get(user_id, group_id)).total_stars == 0

        reopened = ProgressSession(user_id, group_id, memory_repos, bus=bus, queue=CelebrationQueue(sleep=visible_forever))
        await reopened.start(run_queue=False)
        await reopened.apply_delta(5)
        assert reopened.total_stars == 5
        await reopened.close()

    async def test_start_resumes_unfinished_milestone(self, memory_repos, bus, instant_queue, user_id, group_id):
        await memory_repos.membership.create(user_id, group_id)
        await memory_repos.membership.increment_stars(user_id, group_id, 1005)
        await memory_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_10")

        session = ProgressSession(user_id, group_id, memory_repos, bus=bus, queue=instant_queue)
        await session.start(run_queue=False)

        # No badge replay while the reset is due
        assert [e.kind for e in instant_queue.pending] == [CelebrationKind.MILESTONE]

        await session.drain_celebrations()

        assert session.total_stars == 0
        assert (await memory_repos.membership.get(user_id, group_id)).total_stars == 0
        await session.close()

    async def test_shown_celebrations_recorded_on_membership(self, session, memory_repos, user_id, group_id, instant_queue):
        await session.start(run_queue=False)
        await session.apply_delta(10)

        await session.drain_celebrations()

        stored = await memory_repos.membership.get(user_id, group_id)
        assert stored.seen_celebrations == [str(event_id) for event_id in instant_queue.shown_event_ids]
        assert stored.last_read_at is not None
        await session.close()

    async def test_group_members_cached_until_change(self, session, memory_repos, hub, group_id):
        await session.start(run_queue=False)
        other = uuid4()

        assert len(await session.group_members()) == 1
        await memory_repos.membership.create(other, group_id)
        assert len(await session.group_members()) == 1

        await hub.publish(
            RealtimeChange(table=RealtimeTable.MEMBERSHIPS, operation="insert", group_id=group_id, user_id=other)
        )

        assert {m.user_id for m in await session.group_members()} == {session.user_id, other}
        await session.close()

    async def test_own_delta_refreshes_group_members(self, session, group_id):
        await session.start(run_queue=False)
        assert (await session.group_members())[0].total_stars == 0

        await session.apply_delta(7)

        assert (await session.group_members())[0].total_stars == 7
        await session.close()
