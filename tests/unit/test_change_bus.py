"""Unit tests for the change bus, realtime hub and group directory."""

from uuid import uuid4

import pytest

from family_stars.core.enums import ChangeTopic, RealtimeTable
from family_stars.events.bus import ChangeNotificationBus
from family_stars.events.realtime import RealtimeFilter, RealtimeHub
from family_stars.events.schemas import GoalsChanged, MembershipChanged, ProgressChanged, RealtimeChange
from family_stars.services.directory import GroupDirectory


@pytest.mark.unit
@pytest.mark.asyncio
class TestChangeNotificationBus:

    async def test_delivers_by_topic(self, bus):
        received = []
        bus.subscribe(ChangeTopic.PROGRESS, received.append)

        group = uuid4()
        assert await bus.publish(ProgressChanged(group_id=group)) == 1
        assert await bus.publish(GoalsChanged(group_id=group)) == 0
        assert [m.topic for m in received] == [ChangeTopic.PROGRESS]

    async def test_async_handlers_awaited(self, bus):
        received = []

        async def handler(message):
            received.append(message.group_id)

        bus.subscribe(ChangeTopic.GOALS, handler)
        group = uuid4()
        await bus.publish(GoalsChanged(group_id=group))
        assert received == [group]

    async def test_failing_handler_does_not_stop_others(self, bus):
        received = []

        def broken(message):
            raise RuntimeError("subscriber bug")

        bus.subscribe(ChangeTopic.MEMBERSHIP, broken)
        bus.subscribe(ChangeTopic.MEMBERSHIP, received.append)

        assert await bus.publish(MembershipChanged(group_id=uuid4())) == 1
        assert len(received) == 1

    async def test_unsubscribe(self, bus):
        received = []
        unsubscribe = bus.subscribe(ChangeTopic.PROGRESS, received.append)
        assert bus.subscriber_count(ChangeTopic.PROGRESS) == 1

        unsubscribe()
        unsubscribe()

        await bus.publish(ProgressChanged(group_id=uuid4()))
        assert received == []
        assert bus.subscriber_count(ChangeTopic.PROGRESS) == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestRealtimeHub:

    async def test_filters_by_group_and_table(self):
        hub = RealtimeHub()
        group, other = uuid4(), uuid4()
        goal_changes, group_changes = [], []
        hub.subscribe(RealtimeFilter(table=RealtimeTable.GOALS), goal_changes.append)
        hub.subscribe(RealtimeFilter(group_id=group), group_changes.append)

        await hub.publish(RealtimeChange(table=RealtimeTable.GOALS, group_id=other))
        await hub.publish(RealtimeChange(table=RealtimeTable.MEMBERSHIPS, group_id=group))

        assert len(goal_changes) == 1
        assert len(group_changes) == 1
        assert group_changes[0].table == RealtimeTable.MEMBERSHIPS

    async def test_user_filter(self):
        hub = RealtimeHub()
        user = uuid4()
        received = []
        hub.subscribe(RealtimeFilter(user_id=user), received.append)

        await hub.publish(RealtimeChange(table=RealtimeTable.GOALS, group_id=uuid4(), user_id=uuid4()))
        await hub.publish(RealtimeChange(table=RealtimeTable.GOALS, group_id=uuid4(), user_id=user))

        assert len(received) == 1

    async def test_unsubscribe(self):
        hub = RealtimeHub()
        unsubscribe = hub.subscribe(RealtimeFilter(), lambda change: None)
        assert hub.subscription_count == 1
        unsubscribe()
        assert hub.subscription_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestGroupDirectory:

    async def test_read_through_then_cached(self, memory_repos, bus, group_id):
        await memory_repos.membership.create(uuid4(), group_id)
        directory = GroupDirectory(memory_repos.membership, bus)
        directory.attach()

        first = await directory.members(group_id)
        second = await directory.members(group_id)

        assert len(first) == 1
        assert first is second
        assert directory.loads == 1

    async def test_progress_signal_invalidates(self, memory_repos, bus, group_id):
        user = uuid4()
        await memory_repos.membership.create(user, group_id)
        directory = GroupDirectory(memory_repos.membership, bus)
        directory.attach()
        await directory.members(group_id)

        await memory_repos.membership.increment_stars(user, group_id, 40)
        await bus.publish(ProgressChanged(group_id=group_id, user_id=user))

        assert not directory.is_cached(group_id)
        snapshot = await directory.member(group_id, user)
        assert snapshot.total_stars == 40
        assert directory.loads == 2

    async def test_other_group_signal_keeps_cache(self, memory_repos, bus, group_id):
        directory = GroupDirectory(memory_repos.membership, bus)
        directory.attach()
        await directory.members(group_id)

        await bus.publish(MembershipChanged(group_id=uuid4()))

        assert directory.is_cached(group_id)

    async def test_detached_directory_ignores_signals(self, memory_repos, bus, group_id):
        directory = GroupDirectory(memory_repos.membership, bus)
        directory.attach()
        await directory.members(group_id)
        directory.detach()

        await bus.publish(MembershipChanged(group_id=group_id))

        assert directory.is_cached(group_id)
