"""TTL read cache for ``find`` results."""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ballotbox._constants import CACHE_TTL_S


@dataclass(frozen=True)
class QuerySignature:
    """Normalized cache key of one ``find`` call.

    ``where`` is canonicalized with sorted keys because predicate order
    is irrelevant; ``sort`` keeps caller order because it is not.
    """

    collection: str
    where: str = "{}"
    limit: int | None = None
    skip: int | None = None
    sort: str = "{}"

    @classmethod
    def of(
        cls,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        skip: int | None = None,
        sort: Mapping[str, Any] | None = None,
    ) -> QuerySignature:
        return cls(
            collection=collection,
            where=json.dumps(dict(where or {}), sort_keys=True, separators=(",", ":")),
            limit=limit or None,
            skip=skip or None,
            sort=json.dumps(dict(sort or {}), separators=(",", ":")),
        )


@dataclass
class CacheEntry:
    data: list[dict[str, Any]]
    timestamp: float


class ReadCache:
    """Best-effort memoization of ``find`` results.

    Non-authoritative: a disabled cache misses on every read and drops
    every write, and callers must behave the same either way.
    """

    def __init__(
        self,
        ttl: float = CACHE_TTL_S,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._enabled = enabled
        self._clock = clock
        self._entries: dict[QuerySignature, CacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp > self._ttl

    def read(self, signature: QuerySignature) -> list[dict[str, Any]] | None:
        """Return a copy of the cached data, or ``None`` on a miss."""
        if not self._enabled:
            return None
        entry = self._entries.get(signature)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[signature]
            return None
        return copy.deepcopy(entry.data)

    def write(self, signature: QuerySignature, data: list[dict[str, Any]]) -> None:
        if not self._enabled:
            return
        self._entries[signature] = CacheEntry(data=copy.deepcopy(data), timestamp=self._clock())

    def invalidate(self, signature: QuerySignature) -> None:
        self._entries.pop(signature, None)

    def invalidate_collection(self, collection: str) -> None:
        """Drop every entry for *collection* (used after mutations)."""
        for signature in [sig for sig in self._entries if sig.collection == collection]:
            del self._entries[signature]

    def invalidate_all(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "entries": [
                {
                    "signature": sig,
                    "timestamp": entry.timestamp,
                    "is_expired": self._is_expired(entry),
                }
                for sig, entry in self._entries.items()
            ],
        }
