from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from ballotbox._api.collections import CollectionClient
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.models.notification import NotificationPriority, NotificationType
from ballotbox.monitor import ChangeMonitor
from ballotbox.notifications import LocalNotificationBackend, NotificationStore

if TYPE_CHECKING:
    from conftest import EventRecorder, FakeClock, FakeCollectionService


@pytest.fixture
def store() -> NotificationStore:
    return NotificationStore(LocalNotificationBackend())


@pytest.fixture
def monitor(
    collections: CollectionClient,
    store: NotificationStore,
    events: EventBus,
    clock: FakeClock,
) -> ChangeMonitor:
    return ChangeMonitor(collections, store, events, vote_interval=60, status_interval=60, clock=clock)


def _seed_votes(service: FakeCollectionService, n: int) -> None:
    for i in range(n):
        service.seed("votes", {"candidate": f"c{i % 2}"})


# ---------------------------------------------------------------------------
# Vote count
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_tick_sets_baseline_silently(
    service: FakeCollectionService, monitor: ChangeMonitor, store: NotificationStore
) -> None:
    _seed_votes(service, 3)

    assert await monitor.check_votes() is None
    assert monitor.baseline.last_vote_count == 3
    assert store.notifications == []


@pytest.mark.asyncio
async def test_new_votes_emit_one_notification(
    service: FakeCollectionService,
    monitor: ChangeMonitor,
    store: NotificationStore,
    recorder: EventRecorder,
) -> None:
    _seed_votes(service, 3)
    await monitor.check_votes()

    _seed_votes(service, 2)
    emitted = await monitor.check_votes()
    again = await monitor.check_votes()

    assert emitted is not None
    assert emitted.message == "2 new votes submitted"
    assert emitted.type == NotificationType.VOTE
    assert emitted.priority == NotificationPriority.HIGH
    assert emitted.action == "view_votes"
    assert again is None
    assert len(store.notifications) == 1
    assert monitor.baseline.last_vote_count == 5
    assert recorder.count(BroadcastEvent.VOTES_UPDATED) == 1


@pytest.mark.asyncio
async def test_single_new_vote_uses_singular(service: FakeCollectionService, monitor: ChangeMonitor) -> None:
    await monitor.check_votes()
    _seed_votes(service, 1)

    emitted = await monitor.check_votes()

    assert emitted is not None
    assert emitted.message == "1 new vote submitted"


@pytest.mark.asyncio
async def test_lower_count_lowers_baseline_silently(
    service: FakeCollectionService, monitor: ChangeMonitor, store: NotificationStore
) -> None:
    _seed_votes(service, 4)
    await monitor.check_votes()
    service.data["votes"] = service.data["votes"][:1]

    assert await monitor.check_votes() is None
    assert monitor.baseline.last_vote_count == 1

    _seed_votes(service, 1)
    emitted = await monitor.check_votes()
    assert emitted is not None and emitted.message == "1 new vote submitted"
    assert len(store.notifications) == 1


@pytest.mark.asyncio
async def test_overlapping_ticks_do_not_double_count(
    service: FakeCollectionService, monitor: ChangeMonitor, store: NotificationStore
) -> None:
    await monitor.check_votes()
    _seed_votes(service, 2)

    service.gate = asyncio.Event()
    first = asyncio.create_task(monitor.check_votes())
    await asyncio.sleep(0.01)
    second = await monitor.check_votes()
    service.gate.set()
    emitted = await first

    assert second is None
    assert emitted is not None and emitted.message == "2 new votes submitted"
    assert len(store.notifications) == 1
    assert service.count_calls("GET", "/collections/votes") == 2


@pytest.mark.asyncio
async def test_failed_tick_keeps_baseline(service: FakeCollectionService, monitor: ChangeMonitor) -> None:
    _seed_votes(service, 2)
    await monitor.check_votes()
    service.failing.add("votes")

    assert await monitor.check_votes() is None
    assert monitor.baseline.last_vote_count == 2


# ---------------------------------------------------------------------------
# Status and deadline
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_status_transition_notifies_once(
    service: FakeCollectionService,
    monitor: ChangeMonitor,
    recorder: EventRecorder,
) -> None:
    (record,) = service.seed("vote_control", {"status": "active"})
    assert await monitor.check_voting_status() == []

    record["status"] = "stopped"
    emitted = await monitor.check_voting_status()
    again = await monitor.check_voting_status()

    assert [n.title for n in emitted] == ["Voting Ended"]
    assert again == []
    assert recorder.count(BroadcastEvent.VOTING_STATUS_CHANGED) == 1

    record["status"] = "active"
    assert [n.title for n in await monitor.check_voting_status()] == ["Voting Started"]


@pytest.mark.asyncio
async def test_deadline_thresholds_fire_once_each(
    service: FakeCollectionService,
    monitor: ChangeMonitor,
    store: NotificationStore,
    clock: FakeClock,
) -> None:
    deadline = clock.now.replace(microsecond=0)
    clock.advance(-4000)
    service.seed("vote_control", {"status": "active", "auto_stop_date": deadline.isoformat()})

    titles: list[str] = []

    async def tick() -> None:
        titles.extend(n.title for n in await monitor.check_voting_status())

    await tick()  # 4000s left: nothing armed
    clock.advance(450)  # 3550s left
    await tick()
    clock.advance(10)
    await tick()
    clock.advance(2690)  # 850s left
    await tick()
    await tick()
    clock.advance(845)  # 5s left: outside every window
    await tick()
    clock.advance(10)  # deadline passed by 5s
    await tick()
    clock.advance(10)
    await tick()

    assert titles == [
        "Voting Deadline Reminder",
        "Voting Deadline Warning",
        "Voting Deadline Reached",
    ]
    assert all(n.type == NotificationType.DEADLINE for n in store.notifications)


@pytest.mark.asyncio
async def test_new_deadline_rearms_thresholds(
    service: FakeCollectionService,
    monitor: ChangeMonitor,
    clock: FakeClock,
) -> None:
    first = clock.now.replace(microsecond=0)
    clock.advance(-3500)
    (record,) = service.seed("vote_control", {"status": "active", "auto_stop_date": first.isoformat()})

    assert len(await monitor.check_voting_status()) == 1
    assert await monitor.check_voting_status() == []

    record["auto_stop_date"] = (clock() + timedelta(seconds=3550)).isoformat()
    emitted = await monitor.check_voting_status()

    assert [n.title for n in emitted] == ["Voting Deadline Reminder"]
    assert await monitor.check_voting_status() == []


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pollers_pick_up_new_votes(
    service: FakeCollectionService,
    collections: CollectionClient,
    store: NotificationStore,
    events: EventBus,
    clock: FakeClock,
) -> None:
    _seed_votes(service, 1)
    service.seed("vote_control", {"status": "active"})
    monitor = ChangeMonitor(collections, store, events, vote_interval=0.01, status_interval=0.01, clock=clock)

    await monitor.initialize()
    try:
        assert monitor.is_running
        assert monitor.baseline.last_vote_count == 1
        _seed_votes(service, 2)
        for _ in range(200):
            if store.notifications:
                break
            await asyncio.sleep(0.01)
    finally:
        await monitor.aclose()

    assert [n.message for n in store.notifications] == ["2 new votes submitted"]
    assert monitor.is_running is False
