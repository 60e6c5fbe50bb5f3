"""Shared refresh timer with fan-out to registered callbacks.

However many consumers want periodically fresh data, at most one timer
runs: it starts with the first registration and stops with the last
unregistration.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ballotbox._constants import REFRESH_RATE_S

_logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[None] | None]


@dataclass(frozen=True)
class RefreshStatus:
    active: bool
    rate: float
    registered_keys: tuple[str, ...]


class RefreshRegistry:
    """Keyed callback registry driven by a single asyncio task.

    Registering under an existing key replaces that key's callback and
    leaves the running timer untouched.
    """

    def __init__(self, rate: float = REFRESH_RATE_S) -> None:
        self._rate = rate
        self._callbacks: dict[str, RefreshCallback] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def register(self, key: str, callback: RefreshCallback) -> None:
        """Add or replace the callback for *key*; starts the timer on first registrant.

        Must be called from within a running event loop.
        """
        if not key:
            raise ValueError("Refresh key is required")
        self._callbacks[key] = callback
        if not self.is_active:
            self._start()

    def unregister(self, key: str) -> None:
        """Remove *key*; stops the timer when nothing is left."""
        self._callbacks.pop(key, None)
        if not self._callbacks:
            self._stop()

    def _start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(), name="ballotbox-refresh")
        _logger.debug("Refresh timer started rate=%.2fs", self._rate)

    def _stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            _logger.debug("Refresh timer stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._rate)
            await self.refresh_all()

    async def _invoke(self, key: str, callback: RefreshCallback) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Refresh callback %r failed", key, exc_info=True)

    async def refresh_all(self) -> None:
        """Invoke every registered callback; one failure does not stop the others."""
        if not self._callbacks:
            return
        await asyncio.gather(*(self._invoke(key, cb) for key, cb in list(self._callbacks.items())))

    async def refresh(self, key: str) -> bool:
        """Invoke the callback for *key* now, outside the timer.

        Returns ``False`` when nothing is registered under *key*.
        """
        callback = self._callbacks.get(key)
        if callback is None:
            return False
        await self._invoke(key, callback)
        return True

    def status(self) -> RefreshStatus:
        return RefreshStatus(
            active=self.is_active,
            rate=self._rate,
            registered_keys=tuple(self._callbacks),
        )

    async def close(self) -> None:
        """Drop all registrations and wait for the timer task to finish."""
        self._callbacks.clear()
        task = self._task
        self._stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
