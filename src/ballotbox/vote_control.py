"""Election-wide voting control.

State machine::

    ACTIVE --(manual stop | deadline passed)--> STOPPED --(manual start)--> ACTIVE

``results_visibility`` (HIDDEN/PUBLIC) is an orthogonal flag changed
only by :meth:`VoteControl.set_results_visibility`.

Every write is a read-modify-write against the latest fetched record
with no version check: concurrent admin edits are last-writer-wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from ballotbox._api.collections import CollectionClient
from ballotbox._constants import AUTO_STOP_REASON, MANUAL_STOP_REASON, VOTE_CONTROL_COLLECTION
from ballotbox.audit import AuditLogger
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import BallotError, BallotTransportError
from ballotbox.models._base import utcnow
from ballotbox.models.vote_control import ResultsVisibility, VoteControlState, VoteStatus, VotingStatusInfo
from ballotbox.notifications import NotificationStore

_logger = logging.getLogger(__name__)

_WRITABLE_FIELDS = frozenset(VoteControlState.model_fields) - {"id", "raw", "created_at", "updated_at"}


def format_time_remaining(remaining: timedelta | None) -> str | None:
    """Human-readable countdown (``"2 days, 3 hours"``); ``None`` when nothing remains."""
    if remaining is None or remaining.total_seconds() <= 0:
        return None

    def _plural(n: int, unit: str) -> str:
        return f"{n} {unit}{'s' if n > 1 else ''}"

    total_minutes = int(remaining.total_seconds() // 60)
    days, rem = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem, 60)
    if days > 0:
        return f"{_plural(days, 'day')}, {_plural(hours, 'hour')}"
    if hours > 0:
        return f"{_plural(hours, 'hour')}, {_plural(minutes, 'minute')}"
    return _plural(minutes, "minute")


class VoteControl:
    def __init__(
        self,
        collections: CollectionClient,
        events: EventBus,
        *,
        notifications: NotificationStore | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
        collection: str = VOTE_CONTROL_COLLECTION,
    ) -> None:
        self._collections = collections
        self._events = events
        self._notifications = notifications
        self._audit = audit
        self._clock = clock
        self._collection = collection

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self) -> VoteControlState | None:
        """Latest control record, or ``None`` if none exists yet. Never creates.

        A record that fails validation raises :class:`BallotTransportError`.
        """
        records = await self._collections.find(self._collection, limit=1)
        if not records:
            return None
        try:
            return VoteControlState.model_validate(records[0])
        except ValidationError as exc:
            raise BallotTransportError(
                f"Malformed vote control record {records[0].get('id')!r}: {exc.error_count()} errors",
                path=f"/collections/{self._collection}",
            ) from exc

    async def get(self) -> VoteControlState:
        """Latest control record, creating the default ACTIVE/HIDDEN one if absent."""
        current = await self.fetch()
        if current is not None:
            return current
        now = self._clock()
        default = VoteControlState(created_at=now, updated_at=now)
        created = await self._collections.create(self._collection, default.to_record())
        _logger.info("Created default vote control record")
        return VoteControlState.model_validate({**default.to_record(), **created})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _write(self, changes: dict[str, Any]) -> VoteControlState:
        unknown = set(changes) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown vote control fields: {sorted(unknown)}")
        current = await self.get()
        if current.id is None:
            raise BallotTransportError("vote_control record has no id", path=f"/collections/{self._collection}")
        merged = VoteControlState.model_validate(
            {**current.model_dump(), **changes, "updated_at": self._clock()},
        )
        await self._collections.update(self._collection, current.id, merged.to_record())
        return merged

    async def set(self, **changes: Any) -> bool:
        """Apply *changes* to the latest record and broadcast ``votingStatusChanged``.

        Returns ``False`` (after logging) if the remote write failed.
        """
        try:
            await self._write(changes)
        except BallotError as exc:
            _logger.warning("Failed to update vote control: %s", exc)
            return False
        self._events.publish(BroadcastEvent.VOTING_STATUS_CHANGED)
        return True

    async def start(self) -> bool:
        ok = await self.set(status=VoteStatus.ACTIVE, stopped_at=None, stopped_by=None, reason=None)
        if ok and self._audit is not None:
            await self._audit.log_voting_action("voting_started")
        return ok

    async def stop(
        self,
        by: str = "admin",
        reason: str = MANUAL_STOP_REASON,
        *,
        clear_auto_stop: bool = False,
    ) -> bool:
        changes: dict[str, Any] = {
            "status": VoteStatus.STOPPED,
            "stopped_at": self._clock(),
            "stopped_by": by,
            "reason": reason,
        }
        if clear_auto_stop:
            changes["auto_stop_date"] = None
        ok = await self.set(**changes)
        if ok and self._audit is not None:
            await self._audit.log_voting_action("voting_stopped", {"stopped_by": by, "reason": reason})
        return ok

    async def set_auto_stop_date(self, date: datetime | None) -> bool:
        """Set or clear (``None``) the automatic stop deadline."""
        ok = await self.set(auto_stop_date=date)
        if not ok:
            return False
        if self._notifications is not None:
            if date is None:
                await self._notifications.notify_deadline_cleared()
            else:
                await self._notifications.notify_deadline_set(date)
        if self._audit is not None:
            await self._audit.log_voting_action(
                "auto_stop_date_set" if date is not None else "auto_stop_date_cleared",
                {"auto_stop_date": date.isoformat() if date is not None else None},
            )
        return True

    async def set_results_visibility(self, visibility: ResultsVisibility | str) -> bool:
        """Publish or hide results; broadcasts ``resultsVisibilityChanged`` once on success."""
        visibility = ResultsVisibility(visibility)
        try:
            await self._write({"results_visibility": visibility})
        except BallotError as exc:
            _logger.warning("Failed to update results visibility: %s", exc)
            return False
        self._events.publish(BroadcastEvent.RESULTS_VISIBILITY_CHANGED)
        if self._audit is not None:
            await self._audit.log_voting_action("results_visibility_changed", {"visibility": str(visibility)})
        return True

    async def show_results(self) -> bool:
        return await self.set_results_visibility(ResultsVisibility.PUBLIC)

    async def hide_results(self) -> bool:
        return await self.set_results_visibility(ResultsVisibility.HIDDEN)

    # ------------------------------------------------------------------
    # Derived reads
    # ------------------------------------------------------------------

    async def get_results_visibility(self) -> ResultsVisibility:
        """Current visibility; falls back to HIDDEN when the record cannot be read."""
        try:
            return (await self.get()).results_visibility
        except BallotError as exc:
            _logger.warning("Could not read results visibility, assuming hidden: %s", exc)
            return ResultsVisibility.HIDDEN

    async def is_results_public(self) -> bool:
        return await self.get_results_visibility() == ResultsVisibility.PUBLIC

    async def is_voting_active(self) -> bool:
        """Whether votes are accepted right now.

        An ACTIVE record whose auto-stop date has passed is stopped here,
        as a side effect of the evaluation.
        """
        state = await self.get()
        if state.is_stopped:
            return False
        now = self._clock()
        if state.deadline_passed(now):
            _logger.info("Auto-stop date %s reached; stopping voting", state.auto_stop_date)
            await self.set(
                status=VoteStatus.STOPPED,
                stopped_at=now,
                stopped_by="system",
                reason=AUTO_STOP_REASON,
            )
            return False
        return True

    async def status_info(self) -> VotingStatusInfo:
        is_active = await self.is_voting_active()
        state = await self.get()
        remaining: timedelta | None = None
        if state.auto_stop_date is not None:
            remaining = max(timedelta(0), state.auto_stop_date - self._clock())
        return VotingStatusInfo(
            is_active=is_active,
            status=state.status,
            auto_stop_date=state.auto_stop_date,
            stopped_at=state.stopped_at,
            stopped_by=state.stopped_by,
            reason=state.reason,
            time_until_stop=remaining,
        )
