"""In-process broadcast events.

Events carry no payload: a subscriber that hears ``votesUpdated`` is
expected to re-query whatever it displays.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

_logger = logging.getLogger(__name__)

Handler = Callable[[], None]


class BroadcastEvent(StrEnum):
    VOTES_UPDATED = "votesUpdated"
    VOTING_STATUS_CHANGED = "votingStatusChanged"
    RESULTS_VISIBILITY_CHANGED = "resultsVisibilityChanged"
    CANDIDATES_UPDATED = "candidatesUpdated"
    AUDIT_LOGS_UPDATED = "auditLogsUpdated"


class EventBus:
    """Topic → handlers registry.

    Handlers run synchronously in subscription order. A failing handler
    is logged and skipped; it never breaks the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[BroadcastEvent, list[Handler]] = {}

    def subscribe(self, topic: BroadcastEvent, handler: Handler) -> Callable[[], None]:
        """Register *handler* and return a callable that removes it."""
        self._handlers.setdefault(topic, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: BroadcastEvent) -> None:
        _logger.debug("publish %s", topic)
        for handler in list(self._handlers.get(topic, [])):
            try:
                handler()
            except Exception:
                _logger.debug("%s handler failed", topic, exc_info=True)

    def subscriber_count(self, topic: BroadcastEvent) -> int:
        return len(self._handlers.get(topic, []))
