"""Base model and timestamp coercion for collection records.

Every record model inherits from :class:`BallotBaseModel` which
provides:

* ``populate_by_name`` so both the wire keys and the Python field
  names are accepted.
* A ``model_validator(mode="before")`` that drops ``None`` and blank
  strings so the field default is used.
* A ``raw`` dict that captures the original record.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce ISO strings and epoch numbers (seconds **or** ms) to an aware UTC datetime.

    Naive datetimes are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


BallotTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings or epoch numbers to UTC datetimes."""


def utcnow() -> datetime:
    return datetime.now(UTC)


class BallotBaseModel(BaseModel):
    """Base for records read from the collection service."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original record dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty values and stash the raw record."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        # Keep the caller's raw when constructing with kwargs.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
