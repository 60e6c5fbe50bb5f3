"""Notification log with remote-first, local-fallback persistence.

Delivery is best-effort: a notification that cannot be stored remotely
is kept in the local backend instead, and nothing here ever raises to
the caller because of a storage failure.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ballotbox._api.collections import CollectionClient
from ballotbox._constants import NOTIFICATION_RETENTION, NOTIFICATIONS_COLLECTION
from ballotbox.exceptions import BallotError
from ballotbox.models.notification import Notification, NotificationPriority, NotificationType

_logger = logging.getLogger(__name__)

Listener = Callable[[list[Notification]], None]
ToastSink = Callable[[Notification], None]


def _newest_first(items: list[Notification], retention: int) -> list[Notification]:
    return sorted(items, key=lambda n: n.timestamp, reverse=True)[:retention]


def _keep_read(known: Notification | None, incoming: Notification) -> Notification:
    """*incoming*, but read if either copy is read."""
    if known is not None and not known.unread and incoming.unread:
        return incoming.as_read()
    return incoming


class NotificationBackend(Protocol):
    """Storage interface shared by the remote and local backends."""

    async def append(self, notification: Notification) -> None: ...

    async def update(self, notification: Notification) -> None: ...

    async def load(self) -> list[Notification]: ...


class RemoteNotificationBackend:
    """Stores notifications as records of the ``notifications`` collection."""

    def __init__(
        self,
        collections: CollectionClient,
        *,
        collection: str = NOTIFICATIONS_COLLECTION,
        retention: int = NOTIFICATION_RETENTION,
    ) -> None:
        self._collections = collections
        self._collection = collection
        self._retention = retention

    async def append(self, notification: Notification) -> None:
        await self._collections.create(self._collection, notification.to_record())
        try:
            await self._trim()
        except BallotError as exc:
            _logger.debug("Could not trim remote notifications: %s", exc)

    async def _trim(self) -> None:
        """Delete records older than the newest ``retention``."""
        stale = await self._collections.find(
            self._collection,
            skip=self._retention,
            sort={"timestamp": -1},
        )
        for record in stale:
            record_id = record.get("id")
            if record_id is not None:
                await self._collections.delete(self._collection, str(record_id))

    async def update(self, notification: Notification) -> None:
        matches = await self._collections.find(
            self._collection,
            {"notification_id": notification.id},
            limit=1,
        )
        record_id = matches[0].get("id") if matches else None
        if record_id is None:
            await self.append(notification)
            return
        await self._collections.update(self._collection, str(record_id), {"unread": notification.unread})

    async def load(self) -> list[Notification]:
        records = await self._collections.find(
            self._collection,
            limit=self._retention,
            sort={"timestamp": -1},
        )
        loaded: list[Notification] = []
        for record in records:
            try:
                loaded.append(Notification.model_validate(record))
            except ValidationError:
                _logger.debug("Skipping malformed notification record %r", record.get("id"))
        return loaded


class LocalNotificationBackend:
    """Local-only fallback: a JSON file, or process memory when no path is given."""

    def __init__(
        self,
        path: str | os.PathLike[str] | None = None,
        *,
        retention: int = NOTIFICATION_RETENTION,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._retention = retention
        self._memory: list[Notification] = []

    def _read(self) -> list[Notification]:
        if self._path is None:
            return list(self._memory)
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError):
            _logger.warning("Notification file %s is unreadable; starting empty", self._path)
            return []
        items: list[Notification] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                items.append(Notification.model_validate(entry))
            except ValidationError:
                continue
        return items

    def _write(self, items: list[Notification]) -> None:
        items = _newest_first(items, self._retention)
        if self._path is None:
            self._memory = items
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [n.model_dump(mode="json") for n in items]
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".notifications-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def append(self, notification: Notification) -> None:
        items = [n for n in self._read() if n.id != notification.id]
        items.append(notification)
        self._write(items)

    async def update(self, notification: Notification) -> None:
        await self.append(notification)

    async def load(self) -> list[Notification]:
        return _newest_first(self._read(), self._retention)


class NotificationStore:
    """Append-only notification log with read/unread state.

    Holds the newest ``retention`` notifications in memory, newest first.
    """

    def __init__(
        self,
        local: NotificationBackend,
        remote: NotificationBackend | None = None,
        *,
        retention: int = NOTIFICATION_RETENTION,
        on_toast: ToastSink | None = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._retention = retention
        self._on_toast = on_toast
        self._items: list[Notification] = []
        self._listeners: list[Listener] = []

    @property
    def notifications(self) -> list[Notification]:
        """In-memory snapshot, newest first."""
        return list(self._items)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify_listeners(self) -> None:
        snapshot = self.notifications
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.debug("Notification listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Persistence policy
    # ------------------------------------------------------------------

    async def _persist(self, notification: Notification, *, is_update: bool) -> str | None:
        """Write remote first, local on failure. Returns the backend used."""
        if self._remote is not None:
            try:
                if is_update:
                    await self._remote.update(notification)
                else:
                    await self._remote.append(notification)
                return "remote"
            except BallotError as exc:
                _logger.debug("Remote notification store unavailable (%s); using local", exc)
        try:
            if is_update:
                await self._local.update(notification)
            else:
                await self._local.append(notification)
            return "local"
        except OSError:
            _logger.warning("Local notification store failed; %s kept in memory only", notification.id, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def add(self, notification: Notification) -> Notification:
        """Store *notification* and return it.

        High-priority notifications are also handed to the toast sink.
        """
        self._items = [notification, *(n for n in self._items if n.id != notification.id)][: self._retention]
        await self._persist(notification, is_update=False)
        self._notify_listeners()
        if notification.is_high_priority and self._on_toast is not None:
            try:
                self._on_toast(notification)
            except Exception:
                _logger.debug("Toast sink failed", exc_info=True)
        return notification

    async def notify(
        self,
        title: str,
        message: str = "",
        *,
        type: NotificationType = NotificationType.GENERAL,  # noqa: A002
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        action: str | None = None,
    ) -> Notification:
        """Build and :meth:`add` a notification."""
        return await self.add(
            Notification(title=title, message=message, type=type, priority=priority, action=action)
        )

    async def mark_read(self, notification_id: str) -> bool:
        """Flip one notification to read. Returns ``False`` if it is unknown."""
        for index, item in enumerate(self._items):
            if item.id != notification_id:
                continue
            if item.unread:
                updated = item.as_read()
                self._items[index] = updated
                await self._persist(updated, is_update=True)
                self._notify_listeners()
            return True
        return False

    async def mark_all_read(self) -> int:
        """Flip every unread notification. Returns how many changed."""
        changed = 0
        for index, item in enumerate(list(self._items)):
            if not item.unread:
                continue
            updated = item.as_read()
            self._items[index] = updated
            await self._persist(updated, is_update=True)
            changed += 1
        if changed:
            self._notify_listeners()
        return changed

    def unread_count(self) -> int:
        return sum(1 for n in self._items if n.unread)

    async def list(self) -> list[Notification]:
        """Reload from both backends and merge.

        Precedence for the same id: remote over local over memory, except
        that a read flag is never undone. Read flags that only reached the
        local backend are pushed to the remote one.
        """
        merged: dict[str, Notification] = {n.id: n for n in self._items}
        try:
            for item in await self._local.load():
                merged[item.id] = _keep_read(merged.get(item.id), item)
        except OSError:
            _logger.warning("Could not read local notifications", exc_info=True)
        if self._remote is not None:
            try:
                remote_items = await self._remote.load()
            except BallotError as exc:
                _logger.debug("Remote notification store unavailable (%s); using local only", exc)
                remote_items = []
            behind: list[Notification] = []
            for item in remote_items:
                merged[item.id] = _keep_read(merged.get(item.id), item)
                if item.unread and not merged[item.id].unread:
                    behind.append(merged[item.id])
            for item in behind:
                try:
                    await self._remote.update(item)
                except BallotError as exc:
                    _logger.debug("Could not sync read state of %s: %s", item.id, exc)
                    break
        self._items = _newest_first(list(merged.values()), self._retention)
        self._notify_listeners()
        return self.notifications

    # ------------------------------------------------------------------
    # Domain events
    # ------------------------------------------------------------------

    async def notify_deadline_set(self, deadline: datetime) -> Notification:
        formatted = deadline.strftime("%Y-%m-%d %H:%M %Z").strip()
        return await self.notify(
            "Voting Deadline Set",
            f"Voting will automatically end on {formatted}",
            type=NotificationType.DEADLINE,
            priority=NotificationPriority.HIGH,
            action="view_dashboard",
        )

    async def notify_deadline_cleared(self) -> Notification:
        return await self.notify(
            "Voting Deadline Cleared",
            "The automatic voting deadline has been removed",
            type=NotificationType.DEADLINE,
            priority=NotificationPriority.MEDIUM,
            action="view_dashboard",
        )
