"""Polling change detection: new votes, voting status transitions, deadline reminders.

Two independent asyncio tasks poll the collection service. Each tick
compares the fresh value against a remembered baseline and emits
notifications for what changed. A failed tick is logged and skipped;
the next tick retries naturally.

Overlap policy: a tick never starts while the previous tick of the same
kind is in flight, and the baseline is replaced synchronously as soon
as the response is known, so the same delta is never counted twice.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import ValidationError

from ballotbox._api.collections import CollectionClient
from ballotbox._constants import (
    DEADLINE_THRESHOLDS_S,
    DEADLINE_WINDOW_S,
    STATUS_POLL_INTERVAL_S,
    VOTE_CONTROL_COLLECTION,
    VOTE_POLL_INTERVAL_S,
    VOTES_COLLECTION,
)
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import BallotError
from ballotbox.models._base import utcnow
from ballotbox.models.notification import Notification, NotificationPriority, NotificationType
from ballotbox.models.vote_control import VoteControlState, VoteStatus
from ballotbox.notifications import NotificationStore

_logger = logging.getLogger(__name__)

_THRESHOLD_COPY: dict[int, tuple[str, str, str]] = {
    3600: (
        "Voting Deadline Reminder",
        "Voting will end in 1 hour. Make sure to cast your vote!",
        "view_candidates",
    ),
    900: (
        "Voting Deadline Warning",
        "Voting will end in 15 minutes. Last chance to vote!",
        "view_candidates",
    ),
    0: (
        "Voting Deadline Reached",
        "The voting deadline has been reached and voting has ended",
        "view_dashboard",
    ),
}


@dataclass
class MonitorBaseline:
    """Last observed values. Mutated only by :class:`ChangeMonitor`."""

    last_vote_count: int | None = None
    last_snapshot: VoteControlState | None = None
    fired_thresholds: set[tuple[str, int]] = field(default_factory=set)


def _vote_notification(delta: int) -> Notification:
    return Notification(
        title="New Vote Submitted",
        message=f"{delta} new vote{'s' if delta > 1 else ''} submitted",
        type=NotificationType.VOTE,
        priority=NotificationPriority.HIGH,
        action="view_votes",
    )


def _status_notification(status: VoteStatus) -> Notification:
    if status == VoteStatus.ACTIVE:
        title, message = "Voting Started", "Voting is now active and accepting votes"
    else:
        title, message = "Voting Ended", "Voting has been stopped and is no longer accepting votes"
    return Notification(
        title=title,
        message=message,
        type=NotificationType.VOTING,
        priority=NotificationPriority.HIGH,
        action="view_dashboard",
    )


def _deadline_notification(threshold: int) -> Notification:
    copy_ = _THRESHOLD_COPY.get(threshold)
    if copy_ is None:
        minutes = max(1, threshold // 60)
        copy_ = (
            "Voting Deadline Reminder",
            f"Voting will end in {minutes} minute{'s' if minutes > 1 else ''}.",
            "view_candidates",
        )
    title, message, action = copy_
    return Notification(
        title=title,
        message=message,
        type=NotificationType.DEADLINE,
        priority=NotificationPriority.HIGH,
        action=action,
    )


class ChangeMonitor:
    def __init__(
        self,
        collections: CollectionClient,
        notifications: NotificationStore,
        events: EventBus,
        *,
        vote_interval: float = VOTE_POLL_INTERVAL_S,
        status_interval: float = STATUS_POLL_INTERVAL_S,
        deadline_window: float = DEADLINE_WINDOW_S,
        thresholds: tuple[int, ...] = DEADLINE_THRESHOLDS_S,
        clock: Callable[[], datetime] = utcnow,
        votes_collection: str = VOTES_COLLECTION,
        control_collection: str = VOTE_CONTROL_COLLECTION,
    ) -> None:
        self._collections = collections
        self._notifications = notifications
        self._events = events
        self._vote_interval = vote_interval
        self._status_interval = status_interval
        self._deadline_window = deadline_window
        self._thresholds = tuple(sorted(thresholds, reverse=True))
        self._clock = clock
        self._votes_collection = votes_collection
        self._control_collection = control_collection

        self._baseline = MonitorBaseline()
        self._vote_task: asyncio.Task[None] | None = None
        self._status_task: asyncio.Task[None] | None = None
        self._vote_tick_in_flight = False
        self._status_tick_in_flight = False

    @property
    def baseline(self) -> MonitorBaseline:
        """A copy of the current baseline."""
        return copy.deepcopy(self._baseline)

    @property
    def is_running(self) -> bool:
        return any(t is not None and not t.done() for t in (self._vote_task, self._status_task))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Record the starting baseline, then start both pollers.

        A baseline that cannot be read is left unknown; the first
        successful tick sets it without emitting anything.
        """
        try:
            self._baseline.last_vote_count = await self._collections.count(self._votes_collection)
        except BallotError as exc:
            _logger.warning("Could not read initial vote count: %s", exc)
        try:
            self._baseline.last_snapshot = await self._fetch_snapshot()
        except BallotError as exc:
            _logger.warning("Could not read initial voting status: %s", exc)

        self.start_vote_monitoring()
        self.start_voting_status_monitoring()
        _logger.info("Change monitor initialized (votes=%s)", self._baseline.last_vote_count)

    def start_vote_monitoring(self) -> None:
        """(Re)start the vote-count poller."""
        if self._vote_task is not None:
            self._vote_task.cancel()
        self._vote_task = asyncio.get_running_loop().create_task(
            self._poll(self.check_votes, self._vote_interval),
            name="ballotbox-vote-monitor",
        )

    def start_voting_status_monitoring(self) -> None:
        """(Re)start the status/deadline poller."""
        if self._status_task is not None:
            self._status_task.cancel()
        self._status_task = asyncio.get_running_loop().create_task(
            self._poll(self.check_voting_status, self._status_interval),
            name="ballotbox-status-monitor",
        )

    def stop_monitoring(self) -> None:
        for task in (self._vote_task, self._status_task):
            if task is not None:
                task.cancel()
        self._vote_task = None
        self._status_task = None

    async def aclose(self) -> None:
        """Stop both pollers and wait for them to finish."""
        tasks = [t for t in (self._vote_task, self._status_task) if t is not None]
        self.stop_monitoring()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _poll(self, tick: Callable[[], Awaitable[object]], interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Monitor tick failed")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def check_votes(self) -> Notification | None:
        """One vote-count poll. Returns the emitted notification, if any."""
        if self._vote_tick_in_flight:
            _logger.debug("Vote tick still in flight; skipping")
            return None
        self._vote_tick_in_flight = True
        try:
            try:
                current = await self._collections.count(self._votes_collection)
            except BallotError as exc:
                _logger.debug("Vote monitoring tick failed: %s", exc)
                return None
            previous = self._baseline.last_vote_count
            self._baseline.last_vote_count = current
        finally:
            self._vote_tick_in_flight = False

        if previous is None or current <= previous:
            return None
        delta = current - previous
        _logger.debug("Vote count %d -> %d", previous, current)
        self._events.publish(BroadcastEvent.VOTES_UPDATED)
        return await self._notifications.add(_vote_notification(delta))

    async def _fetch_snapshot(self) -> VoteControlState | None:
        records = await self._collections.find(self._control_collection, limit=1)
        if not records:
            return None
        try:
            return VoteControlState.model_validate(records[0])
        except ValidationError:
            _logger.warning("Ignoring malformed vote control record %r", records[0].get("id"))
            return None

    async def check_voting_status(self) -> list[Notification]:
        """One status/deadline poll. Returns the emitted notifications."""
        if self._status_tick_in_flight:
            _logger.debug("Status tick still in flight; skipping")
            return []
        self._status_tick_in_flight = True
        try:
            try:
                current = await self._fetch_snapshot()
            except BallotError as exc:
                _logger.debug("Status monitoring tick failed: %s", exc)
                return []
            if current is None:
                return []
            previous = self._baseline.last_snapshot
            self._baseline.last_snapshot = current
            pending: list[Notification] = []
            status_changed = previous is not None and previous.status != current.status
            if status_changed:
                pending.append(_status_notification(current.status))
            pending.extend(self._evaluate_deadline(current))
        finally:
            self._status_tick_in_flight = False

        if status_changed:
            self._events.publish(BroadcastEvent.VOTING_STATUS_CHANGED)
        return [await self._notifications.add(n) for n in pending]

    def _evaluate_deadline(self, state: VoteControlState) -> list[Notification]:
        """Thresholds armed for ``state.auto_stop_date`` and not fired yet.

        Threshold *T* is armed while ``T - window < remaining <= T``.
        """
        deadline = state.auto_stop_date
        if deadline is None:
            return []
        deadline_key = deadline.isoformat()
        fired = {key for key in self._baseline.fired_thresholds if key[0] == deadline_key}
        remaining = (deadline - self._clock()).total_seconds()

        emitted: list[Notification] = []
        for threshold in self._thresholds:
            key = (deadline_key, threshold)
            if key in fired:
                continue
            if threshold - self._deadline_window < remaining <= threshold:
                fired.add(key)
                emitted.append(_deadline_notification(threshold))
        self._baseline.fired_thresholds = fired
        return emitted
