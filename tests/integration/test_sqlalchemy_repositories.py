"""Integration tests for the SQLAlchemy repositories against SQLite."""

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from family_stars.db.models import Membership
from family_stars.repositories.interfaces import ActiveGoalExistsError


@pytest.mark.integration
@pytest.mark.asyncio
class TestMembershipRepository:

    async def test_create_is_idempotent(self, sql_repos, user_id, group_id):
        first, created = await sql_repos.membership.create(user_id, group_id)
        second, created_again = await sql_repos.membership.create(user_id, group_id)

        assert created and not created_again
        assert first.id == second.id
        assert first.total_stars == 0
        assert first.current_stage == 1

    async def test_increment_recomputes_stage(self, sql_repos, user_id, group_id):
        await sql_repos.membership.create(user_id, group_id)

        update = await sql_repos.membership.increment_stars(user_id, group_id, 210)

        assert update.previous_total == 0
        assert update.total_stars == 210
        assert update.current_stage == 3
        assert update.membership.total_stars == 210

    async def test_increment_clamps_at_zero(self, sql_repos, user_id, group_id):
        await sql_repos.membership.create(user_id, group_id)
        await sql_repos.membership.increment_stars(user_id, group_id, 5)

        update = await sql_repos.membership.increment_stars(user_id, group_id, -12)

        assert update.total_stars == 0
        assert update.current_stage == 1

    async def test_increment_missing_membership(self, sql_repos, user_id, group_id):
        assert await sql_repos.membership.increment_stars(user_id, group_id, 5) is None

    async def test_increments_are_additive_across_sessions(self, test_db, user_id, group_id):
        from family_stars.repositories.dependencies import build_sqlalchemy_container

        device_a = build_sqlalchemy_container(test_db())
        device_b = build_sqlalchemy_container(test_db())
        await device_a.membership.create(user_id, group_id)

        # Device B's cached row is stale when device A writes
        stale = await device_b.membership.get(user_id, group_id)
        await device_a.membership.increment_stars(user_id, group_id, 10)
        update = await device_b.membership.increment_stars(user_id, group_id, 7)

        assert stale is not None
        assert update.total_stars == 17

    async def test_reset_and_remove(self, sql_repos, user_id, group_id):
        await sql_repos.membership.create(user_id, group_id)
        await sql_repos.membership.increment_stars(user_id, group_id, 620)
        await sql_repos.membership.mark_celebration_seen(user_id, group_id, "intro")

        membership = await sql_repos.membership.reset(user_id, group_id)

        assert membership.total_stars == 0
        assert membership.current_stage == 1
        assert membership.seen_celebrations == []
        assert membership.last_read_at is not None
        assert await sql_repos.membership.remove(user_id, group_id)
        assert await sql_repos.membership.remove(user_id, group_id) is False

    async def test_list_by_group_orders_by_stars(self, sql_repos, group_id):
        low, high = uuid4(), uuid4()
        await sql_repos.membership.create(low, group_id)
        await sql_repos.membership.create(high, group_id)
        await sql_repos.membership.increment_stars(high, group_id, 30)

        members = await sql_repos.membership.list_by_group(group_id)

        assert [m.user_id for m in members] == [high, low]

    async def test_negative_total_rejected_by_constraint(self, db_session, user_id, group_id):
        db_session.add(Membership(user_id=user_id, group_id=group_id, total_stars=-1, seen_celebrations=[]))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()


@pytest.mark.integration
@pytest.mark.asyncio
class TestUnlockedBadgeRepository:

    async def test_insert_or_get(self, sql_repos, user_id, group_id):
        row, created = await sql_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_10")
        again, created_again = await sql_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_10")

        assert created and not created_again
        assert row.id == again.id
        assert row.seen is False

    async def test_insert_race_returns_existing(self, test_db, user_id, group_id):
        from family_stars.repositories.dependencies import build_sqlalchemy_container

        winner = build_sqlalchemy_container(test_db())
        loser_session = test_db()
        loser = build_sqlalchemy_container(loser_session)

        await winner.unlocked_badge.insert_or_get(user_id, group_id, "baby_20")
        # Skip the pre-check so the insert hits the unique constraint
        loser.unlocked_badge.get = _none_then_real(loser.unlocked_badge.get)

        row, created = await loser.unlocked_badge.insert_or_get(user_id, group_id, "baby_20")

        assert created is False
        assert row is not None and row.badge_id == "baby_20"

    async def test_mark_seen_flips_once(self, sql_repos, user_id, group_id):
        for badge_id in ("baby_10", "baby_20"):
            await sql_repos.unlocked_badge.insert_or_get(user_id, group_id, badge_id)

        assert await sql_repos.unlocked_badge.mark_seen(user_id, group_id, ["baby_10", "baby_20"]) == {"baby_10", "baby_20"}
        assert await sql_repos.unlocked_badge.mark_seen(user_id, group_id, ["baby_10"]) == set()
        assert await sql_repos.unlocked_badge.list_unseen(user_id, group_id) == []

    async def test_membership_reset_marks_badges_unseen(self, sql_repos, user_id, group_id):
        await sql_repos.membership.create(user_id, group_id)
        await sql_repos.membership.increment_stars(user_id, group_id, 25)
        for badge_id in ("baby_10", "baby_20"):
            await sql_repos.unlocked_badge.insert_or_get(user_id, group_id, badge_id)
        await sql_repos.unlocked_badge.mark_seen(user_id, group_id, ["baby_10", "baby_20"])

        await sql_repos.membership.reset(user_id, group_id)

        unseen = await sql_repos.unlocked_badge.list_unseen(user_id, group_id)
        assert sorted(row.badge_id for row in unseen) == ["baby_10", "baby_20"]
        # Unlocked rows survive the reset
        assert len(await sql_repos.unlocked_badge.list_for_member(user_id, group_id)) == 2

    async def test_membership_reset_commits_as_one_transaction(
        self, sql_repos, db_session, monkeypatch, user_id, group_id
    ):
        await sql_repos.membership.create(user_id, group_id)
        await sql_repos.membership.increment_stars(user_id, group_id, 1005)
        await sql_repos.unlocked_badge.insert_or_get(user_id, group_id, "baby_10")
        await sql_repos.unlocked_badge.mark_seen(user_id, group_id, ["baby_10"])

        def lost_connection():
            raise ConnectionError("connection lost during commit")

        monkeypatch.setattr(db_session, "commit", lost_connection)
        with pytest.raises(ConnectionError):
            await sql_repos.membership.reset(user_id, group_id)
        monkeypatch.undo()

        membership = await sql_repos.membership.get(user_id, group_id)
        assert membership.total_stars == 1005
        assert await sql_repos.unlocked_badge.list_unseen(user_id, group_id) == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestGoalRepository:

    async def test_single_active_goal_enforced(self, sql_repos, user_id, group_id):
        await sql_repos.goal.create(user_id, group_id, 10)

        with pytest.raises(ActiveGoalExistsError):
            await sql_repos.goal.create(user_id, group_id, 20)

        # Session is still usable after the conflict
        assert (await sql_repos.goal.get_active(user_id, group_id)).target_stars == 10

    async def test_partial_index_allows_new_goal_after_completion(self, sql_repos, user_id, group_id):
        goal = await sql_repos.goal.create(user_id, group_id, 10, [uuid4()], reward="Park")
        update = await sql_repos.goal.add_progress(goal.id, 10)

        assert update.just_completed
        assert update.goal.completed_at is not None

        second = await sql_repos.goal.create(user_id, group_id, 15)
        history = await sql_repos.goal.list_for_member(user_id, group_id)
        assert {g.id for g in history} == {goal.id, second.id}

    async def test_add_progress(self, sql_repos, user_id, group_id):
        goal = await sql_repos.goal.create(user_id, group_id, 10)

        first = await sql_repos.goal.add_progress(goal.id, 4)
        second = await sql_repos.goal.add_progress(goal.id, 7)
        third = await sql_repos.goal.add_progress(goal.id, 1)

        assert (first.goal.current_stars, first.just_completed) == (4, False)
        assert (second.goal.current_stars, second.just_completed) == (11, True)
        assert third is None

    async def test_add_progress_unknown_goal(self, sql_repos):
        assert await sql_repos.goal.add_progress(uuid4(), 3) is None

    async def test_category_ids_round_trip(self, sql_repos, user_id, group_id):
        category = uuid4()
        goal = await sql_repos.goal.create(user_id, group_id, 10, [category])

        stored = await sql_repos.goal.get_by_id(goal.id)

        assert stored.counts_category(category)
        assert not stored.counts_category(uuid4())
        assert not stored.counts_category(None)


def _none_then_real(real_get):
    calls = {"n": 0}

    async def get(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_get(*args, **kwargs)

    return get
