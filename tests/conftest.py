from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from ballotbox._api.collections import CollectionClient
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import BallotClientError, BallotRequestAbortedError, BallotServerError

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a controllable aware UTC datetime."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# In-memory collection service
# ---------------------------------------------------------------------------


def _sort_key(field_name: str):
    def key(record: Mapping[str, Any]) -> tuple[bool, str]:
        value = record.get(field_name)
        return value is None, "" if value is None else str(value)

    return key


@dataclass
class FakeCollectionService:
    """Implements the transport protocol on top of in-memory collections.

    ``failing`` holds collection names (or top-level path segments such
    as ``"signout"``) that answer with HTTP 503. ``gate``, when set to an
    unset event, holds every request until the event is set.
    """

    data: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    calls: list[tuple[str, str, dict[str, str]]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)
    gate: asyncio.Event | None = None
    me: dict[str, Any] | None = None
    _next_id: int = 0

    def _new_id(self) -> str:
        self._next_id += 1
        return f"obj{self._next_id}"

    def seed(self, collection: str, *records: Mapping[str, Any]) -> list[dict[str, Any]]:
        stored = []
        for record in records:
            item = dict(record)
            item.setdefault("id", self._new_id())
            self.data.setdefault(collection, []).append(item)
            stored.append(item)
        return stored

    def records(self, collection: str) -> list[dict[str, Any]]:
        return self.data.get(collection, [])

    def count_calls(self, method: str, prefix: str) -> int:
        return sum(1 for m, path, _ in self.calls if m == method and path.startswith(prefix))

    async def _wait_gate(self, abort: asyncio.Event | None, path: str) -> None:
        while self.gate is not None and not self.gate.is_set():
            if abort is not None and abort.is_set():
                raise BallotRequestAbortedError(f"Request to {path} aborted")
            await asyncio.sleep(0.001)

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = None,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
    ) -> Any:
        self.calls.append((method, path, dict(headers or {})))
        await self._wait_gate(abort, path)
        if abort is not None and abort.is_set():
            raise BallotRequestAbortedError(f"Request to {path} aborted")

        parsed = urlsplit(path)
        parts = [unquote(p) for p in parsed.path.split("/") if p]
        target = parts[1] if parts[0] == "collections" and len(parts) > 1 else parts[0]
        if target in self.failing:
            raise BallotServerError("Service Unavailable", status_code=503, path=path)

        if parts == ["signout"]:
            return None
        if parts == ["me"]:
            if self.me is None:
                raise BallotClientError("Unauthorized", status_code=401, path=path)
            return dict(self.me)
        if parts[0] != "collections" or len(parts) not in (2, 3):
            raise BallotClientError("Not Found", status_code=404, path=path)

        name = parts[1]
        object_id = parts[2] if len(parts) == 3 else None
        records = self.data.setdefault(name, [])

        if method == "POST" and object_id is None:
            item = dict(body or {})
            item["id"] = self._new_id()
            records.append(item)
            return copy.deepcopy(item)

        if object_id is not None:
            matches = [r for r in records if r.get("id") == object_id]
            if not matches:
                raise BallotClientError("Object not found", status_code=404, path=path)
            record = matches[0]
            if method == "GET":
                return copy.deepcopy(record)
            if method == "PUT":
                record.update(body or {})
                return copy.deepcopy(record)
            if method == "DELETE":
                records.remove(record)
                return None
            raise BallotClientError("Method Not Allowed", status_code=405, path=path)

        query = parse_qs(parsed.query)
        where = json.loads(query["where"][0]) if "where" in query else {}
        found = [r for r in records if all(r.get(k) == v for k, v in where.items())]
        if "count" in query:
            return {"count": len(found)}
        if "sort" in query:
            for field_name, direction in reversed(list(json.loads(query["sort"][0]).items())):
                found.sort(key=_sort_key(field_name), reverse=direction < 0)
        skip = int(query["skip"][0]) if "skip" in query else 0
        found = found[skip:]
        if "limit" in query:
            found = found[: int(query["limit"][0])]
        return copy.deepcopy(found)


@pytest.fixture
def service() -> FakeCollectionService:
    return FakeCollectionService()


@pytest.fixture
def collections(service: FakeCollectionService) -> CollectionClient:
    return CollectionClient(service)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.seen: list[BroadcastEvent] = []
        for topic in BroadcastEvent:
            bus.subscribe(topic, lambda topic=topic: self.seen.append(topic))

    def count(self, topic: BroadcastEvent) -> int:
        return self.seen.count(topic)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    return EventRecorder(events)
