from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ballotbox._cache import QuerySignature, ReadCache
from ballotbox.client import BallotClient
from ballotbox.config import BallotConfig
from ballotbox.events import BroadcastEvent

if TYPE_CHECKING:
    from conftest import FakeCollectionService


class MonotonicClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_signature_ignores_where_key_order_but_not_sort_order() -> None:
    a = QuerySignature.of("votes", {"a": 1, "b": 2}, sort={"x": 1, "y": -1})
    b = QuerySignature.of("votes", {"b": 2, "a": 1}, sort={"x": 1, "y": -1})
    c = QuerySignature.of("votes", {"a": 1, "b": 2}, sort={"y": -1, "x": 1})

    assert a == b
    assert a != c


def test_read_returns_copy_until_ttl() -> None:
    clock = MonotonicClock()
    cache = ReadCache(300, clock=clock)
    sig = QuerySignature.of("candidates")
    cache.write(sig, [{"id": "c1"}])

    clock.now += 299
    hit = cache.read(sig)
    assert hit == [{"id": "c1"}]
    hit[0]["id"] = "mutated"
    assert cache.read(sig) == [{"id": "c1"}]

    clock.now += 2
    assert cache.read(sig) is None
    assert cache.stats()["size"] == 0


def test_disabled_cache_always_misses() -> None:
    cache = ReadCache(enabled=False)
    sig = QuerySignature.of("candidates")
    cache.write(sig, [{"id": "c1"}])

    assert cache.read(sig) is None
    assert cache.stats()["size"] == 0


def test_invalidate_collection_keeps_other_collections() -> None:
    cache = ReadCache()
    votes = QuerySignature.of("votes")
    votes_filtered = QuerySignature.of("votes", {"category": "president"})
    candidates = QuerySignature.of("candidates")
    for sig in (votes, votes_filtered, candidates):
        cache.write(sig, [])

    cache.invalidate_collection("votes")

    assert cache.read(votes) is None
    assert cache.read(votes_filtered) is None
    assert cache.read(candidates) == []

    cache.invalidate_all()
    assert cache.read(candidates) is None


def _client(service: FakeCollectionService, clock: MonotonicClock) -> BallotClient:
    client = BallotClient(BallotConfig(), transport=service)
    client._cache = ReadCache(300, clock=clock)
    return client


@pytest.mark.asyncio
async def test_find_cached_skips_the_network_within_ttl(service: FakeCollectionService) -> None:
    clock = MonotonicClock()
    service.seed("candidates", {"name": "Ada"})
    client = _client(service, clock)

    first = await client.find_cached("candidates")
    clock.now += 10
    second = await client.find_cached("candidates")

    assert first == second
    assert service.count_calls("GET", "/collections/candidates") == 1

    clock.now += 300
    await client.find_cached("candidates")
    assert service.count_calls("GET", "/collections/candidates") == 2


@pytest.mark.asyncio
async def test_find_cached_refresh_bypasses_and_rewrites(service: FakeCollectionService) -> None:
    clock = MonotonicClock()
    service.seed("candidates", {"name": "Ada"})
    client = _client(service, clock)

    await client.find_cached("candidates")
    service.seed("candidates", {"name": "Grace"})
    refreshed = await client.find_cached("candidates", refresh=True)
    cached = await client.find_cached("candidates")

    assert [r["name"] for r in refreshed] == ["Ada", "Grace"]
    assert cached == refreshed
    assert service.count_calls("GET", "/collections/candidates") == 2


@pytest.mark.asyncio
async def test_mutation_invalidates_collection(service: FakeCollectionService) -> None:
    clock = MonotonicClock()
    client = _client(service, clock)
    seen: list[str] = []
    client.events.subscribe(BroadcastEvent.CANDIDATES_UPDATED, lambda: seen.append("candidates"))

    assert await client.find_cached("candidates") == []
    await client.create("candidates", {"name": "Ada"})
    after = await client.find_cached("candidates")

    assert [r["name"] for r in after] == ["Ada"]
    assert seen == ["candidates"]


@pytest.mark.asyncio
async def test_prefetch_warms_and_swallows_errors(service: FakeCollectionService) -> None:
    clock = MonotonicClock()
    client = _client(service, clock)

    await client.prefetch("candidates")
    assert client.cache.stats()["size"] == 1

    service.failing.add("faqs")
    await client.prefetch("faqs")
    assert client.cache.stats()["size"] == 1


@pytest.mark.asyncio
async def test_internal_writes_invalidate_cached_reads(service: FakeCollectionService) -> None:
    clock = MonotonicClock()
    service.seed("vote_control", {"status": "active", "results_visibility": "hidden"})
    client = _client(service, clock)

    (cached,) = await client.find_cached("vote_control")
    assert cached["status"] == "active"

    assert await client.vote_control.stop(by="alice") is True
    (after,) = await client.find_cached("vote_control")

    assert after["status"] == "stopped"
