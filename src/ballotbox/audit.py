"""Audit trail written to the ``audit_logs`` collection.

Auditing must never break the action being audited, so :meth:`AuditLogger.log`
swallows storage errors after logging them.
"""

from __future__ import annotations

import logging
from typing import Any

from ballotbox._api.collections import CollectionClient
from ballotbox._constants import AUDIT_LOGS_COLLECTION, USER_AGENT
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import BallotError
from ballotbox.models.user import User

_logger = logging.getLogger(__name__)


class AuditLogger:
    def __init__(
        self,
        collections: CollectionClient,
        events: EventBus | None = None,
        *,
        enabled: bool = True,
        collection: str = AUDIT_LOGS_COLLECTION,
    ) -> None:
        self._collections = collections
        self._events = events
        self._collection = collection
        self._user: User | None = None
        self.enabled = enabled

    def set_user(self, user: User | None) -> None:
        """Attribute subsequent entries to *user* (``None`` after sign-out)."""
        self._user = user

    async def log(
        self,
        action: str,
        entity_type: str,
        *,
        entity_id: str | None = None,
        entity_name: str | None = None,
        details: dict[str, Any] | None = None,
        severity: str = "info",
        category: str | None = None,
    ) -> bool:
        """Create one audit record. Returns ``False`` when disabled or on failure."""
        if not self.enabled:
            return False
        user = self._user
        record: dict[str, Any] = {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "entity_name": entity_name,
            "user_id": user.id if user else None,
            "user_email": user.email if user else None,
            "user_name": user.display_name if user else None,
            "details": details or {},
            "severity": severity,
            "category": category,
            "user_agent": USER_AGENT,
        }
        try:
            await self._collections.create(self._collection, record)
        except BallotError as exc:
            _logger.warning("Failed to log audit event %s: %s", action, exc)
            return False
        if self._events is not None:
            self._events.publish(BroadcastEvent.AUDIT_LOGS_UPDATED)
        return True

    async def log_voting_action(self, action: str, details: dict[str, Any] | None = None) -> bool:
        return await self.log(action, "system", details=details, category="voting")

    async def log_authentication_action(self, action: str, details: dict[str, Any] | None = None) -> bool:
        return await self.log(action, "user", details=details, category="authentication")

    async def log_user_action(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        entity_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return await self.log(
            action,
            entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            details=details,
            category="user_management",
        )

    async def log_data_action(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        entity_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return await self.log(
            action,
            entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            details=details,
            category="data_management",
        )

    async def log_system_action(self, action: str, details: dict[str, Any] | None = None) -> bool:
        return await self.log(action, "system", details=details, category="system")
