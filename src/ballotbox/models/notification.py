"""Notification model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ballotbox.models._base import parse_timestamp, utcnow


class NotificationType(StrEnum):
    VOTE = "vote"
    DEADLINE = "deadline"
    VOTING = "voting"
    SYSTEM = "system"
    GENERAL = "general"


class NotificationPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(BaseModel):
    """An entry in the notification log.

    Immutable; marking as read produces a copy with ``unread=False``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        validation_alias=AliasChoices("notification_id", "id"),
    )
    title: str
    message: str = ""
    type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.MEDIUM
    action: str | None = None
    """Free-form hint for the UI (e.g. ``"view_votes"``)."""
    timestamp: datetime = Field(default_factory=utcnow)
    unread: bool = True

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        return parse_timestamp(value) or utcnow()

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        try:
            return NotificationType(value)
        except ValueError:
            return NotificationType.GENERAL

    @property
    def is_high_priority(self) -> bool:
        return self.priority == NotificationPriority.HIGH

    def as_read(self) -> Notification:
        return self.model_copy(update={"unread": False})

    def to_record(self) -> dict[str, Any]:
        """Serialize for the ``notifications`` collection.

        The id travels as ``notification_id`` so the server stays free to
        assign its own record id.
        """
        record = self.model_dump(mode="json", exclude={"id"})
        record["notification_id"] = self.id
        return record
