"""Keep only the latest of a series of overlapping requests.

Typical use is a search box: every keystroke starts a new query and
the previous one is no longer interesting::

    latest = LatestRequest()
    records = await latest.run(lambda abort: client.collections.find("candidates", where, abort=abort))
    if records is None:
        return  # superseded
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from ballotbox.exceptions import BallotRequestAbortedError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class LatestRequest(Generic[T]):
    def __init__(self) -> None:
        self._current: asyncio.Event | None = None

    @property
    def in_flight(self) -> bool:
        return self._current is not None

    def abort(self) -> None:
        """Abort the in-flight call, if any."""
        current = self._current
        self._current = None
        if current is not None:
            current.set()

    async def run(self, fn: Callable[[asyncio.Event], Awaitable[T]]) -> T | None:
        """Abort the previous call, then await ``fn(abort_event)``.

        Returns ``None`` when this call is itself aborted before it
        completes. Any other error propagates.
        """
        self.abort()
        event = asyncio.Event()
        self._current = event
        try:
            result = await fn(event)
        except BallotRequestAbortedError:
            _logger.debug("Superseded request aborted")
            return None
        finally:
            if self._current is event:
                self._current = None
        if event.is_set():
            return None
        return result
