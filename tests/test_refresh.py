from __future__ import annotations

import asyncio

import pytest

from ballotbox.refresh import RefreshRegistry


@pytest.mark.asyncio
async def test_two_registrations_share_one_timer() -> None:
    registry = RefreshRegistry(rate=60)

    registry.register("candidates", lambda: None)
    task = registry._task
    registry.register("votes", lambda: None)

    assert registry._task is task
    assert registry.status().active is True
    assert registry.status().registered_keys == ("candidates", "votes")

    registry.unregister("candidates")
    assert registry.is_active is True
    registry.unregister("votes")
    assert registry.is_active is False
    assert task is not None
    await asyncio.gather(task, return_exceptions=True)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_others() -> None:
    registry = RefreshRegistry(rate=60)
    ran: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    async def healthy() -> None:
        ran.append("healthy")

    registry.register("broken", broken)
    registry.register("healthy", healthy)
    try:
        await registry.refresh_all()
    finally:
        await registry.close()

    assert ran == ["healthy"]


@pytest.mark.asyncio
async def test_timer_ticks_invoke_callbacks() -> None:
    registry = RefreshRegistry(rate=0.01)
    ticked = asyncio.Event()

    registry.register("votes", ticked.set)
    try:
        await asyncio.wait_for(ticked.wait(), timeout=1.0)
    finally:
        await registry.close()

    assert registry.is_active is False


@pytest.mark.asyncio
async def test_reregistering_a_key_replaces_its_callback() -> None:
    registry = RefreshRegistry(rate=60)
    calls: list[str] = []

    registry.register("votes", lambda: calls.append("old"))
    registry.register("votes", lambda: calls.append("new"))
    try:
        assert await registry.refresh("votes") is True
        assert await registry.refresh("unknown") is False
    finally:
        await registry.close()

    assert calls == ["new"]
    assert registry.status().registered_keys == ()


def test_register_requires_a_key() -> None:
    registry = RefreshRegistry()

    with pytest.raises(ValueError):
        registry.register("", lambda: None)
