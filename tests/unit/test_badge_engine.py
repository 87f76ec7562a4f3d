"""Unit tests for badge awarding."""

from unittest.mock import AsyncMock

import pytest

from family_stars.core.enums import ChangeTopic
from family_stars.services.badges import BadgeEngine


@pytest.fixture
def engine(memory_repos, instant_queue, bus):
    return BadgeEngine(memory_repos.unlocked_badge, instant_queue, bus)


def _queued_badges(queue):
    return [event.payload["badge_id"] for event in queue.pending]


@pytest.mark.unit
@pytest.mark.asyncio
class TestBadgeEngine:

    async def test_awards_crossed_badges(self, engine, memory_repos, instant_queue, user_id, group_id):
        awarded = await engine.check_and_award(user_id, group_id, 0, 25)

        assert [b.id for b in awarded] == ["baby_10", "baby_20"]
        assert _queued_badges(instant_queue) == ["baby_10", "baby_20"]
        rows = await memory_repos.unlocked_badge.list_for_member(user_id, group_id)
        assert all(row.seen for row in rows)

    async def test_repeat_check_does_not_requeue(self, engine, instant_queue, user_id, group_id):
        await engine.check_and_award(user_id, group_id, 0, 15)
        again = await engine.check_and_award(user_id, group_id, 0, 15)

        assert again == []
        assert _queued_badges(instant_queue) == ["baby_10"]

    async def test_recrossing_after_drop_does_not_celebrate(self, engine, instant_queue, user_id, group_id):
        await engine.check_and_award(user_id, group_id, 0, 12)
        await instant_queue.wait_idle()

        # Dropped to 8 and climbed back to 12
        assert await engine.check_and_award(user_id, group_id, 8, 12) == []
        assert instant_queue.pending == []

    async def test_publishes_badges_changed(self, engine, bus, user_id, group_id):
        received = []
        bus.subscribe(ChangeTopic.BADGES, received.append)

        await engine.check_and_award(user_id, group_id, 0, 10)

        assert len(received) == 1

    async def test_no_crossing_publishes_nothing(self, engine, bus, user_id, group_id):
        received = []
        bus.subscribe(ChangeTopic.BADGES, received.append)

        assert await engine.check_and_award(user_id, group_id, 11, 19) == []
        assert received == []

    async def test_lost_seen_race_withdraws_celebration(
        self, engine, memory_repos, instant_queue, user_id, group_id
    ):
        # Another device inserted the row and is about to flip it
        await memory_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_10")
        real_mark_seen = memory_repos.unlocked_badge.mark_seen

        async def other_device_wins(uid, gid, badge_ids):
            await real_mark_seen(uid, gid, ["baby_10"])
            return await real_mark_seen(uid, gid, badge_ids)

        memory_repos.unlocked_badge.mark_seen = other_device_wins

        awarded = await engine.check_and_award(user_id, group_id, 0, 20)

        assert [b.id for b in awarded] == ["baby_20"]
        assert _queued_badges(instant_queue) == ["baby_20"]

    async def test_insert_failure_skips_badge(self, engine, memory_repos, instant_queue, user_id, group_id):
        real_insert = memory_repos.unlocked_badge.insert_or_get

        async def flaky_insert(uid, gid, badge_id):
            if badge_id == "baby_10":
                raise ConnectionError("offline")
            return await real_insert(uid, gid, badge_id)

        memory_repos.unlocked_badge.insert_or_get = flaky_insert

        awarded = await engine.check_and_award(user_id, group_id, 0, 20)

        assert [b.id for b in awarded] == ["baby_20"]
        assert await memory_repos.unlocked_badge.get(user_id, group_id, "baby_10") is None

    async def test_mark_seen_failure_keeps_celebrations(
        self, engine, memory_repos, instant_queue, user_id, group_id
    ):
        memory_repos.unlocked_badge.mark_seen = AsyncMock(side_effect=ConnectionError("offline"))

        awarded = await engine.check_and_award(user_id, group_id, 0, 10)

        assert [b.id for b in awarded] == ["baby_10"]
        assert _queued_badges(instant_queue) == ["baby_10"]
        row = await memory_repos.unlocked_badge.get(user_id, group_id, "baby_10")
        assert row.seen is False

    async def test_replay_unseen_respects_total(self, engine, memory_repos, instant_queue, user_id, group_id):
        for badge_id in ("baby_10", "baby_20", "child_60"):
            await memory_repos.unlocked_badge.insert_or_get(user_id, group_id, badge_id)

        replayed = await engine.replay_unseen(user_id, group_id, total_stars=25)

        assert [b.id for b in replayed] == ["baby_10", "baby_20"]
        assert _queued_badges(instant_queue) == ["baby_10", "baby_20"]
        child = await memory_repos.unlocked_badge.get(user_id, group_id, "child_60")
        assert child.seen is False

    async def test_replay_skips_in_flight(self, engine, memory_repos, instant_queue, user_id, group_id):
        memory_repos.unlocked_badge.mark_seen = AsyncMock(side_effect=ConnectionError("offline"))
        await engine.check_and_award(user_id, group_id, 0, 10)

        assert await engine.replay_unseen(user_id, group_id) == []
        assert len(instant_queue.pending) == 1

    async def test_display_helpers(self, engine):
        assert [b.id for b in engine.unlocked_badges(45)] == ["baby_10", "baby_20", "baby_30", "baby_40"]
        assert engine.shows_badges(45)
        assert not engine.shows_badges(610)
