"""Vote-control record and derived status view."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ballotbox.models._base import BallotBaseModel, BallotTimestamp


class _CaseInsensitiveEnum(StrEnum):
    @classmethod
    def _missing_(cls, value: object) -> Any:
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper())
        return None


class VoteStatus(_CaseInsensitiveEnum):
    ACTIVE = "active"
    STOPPED = "stopped"


class ResultsVisibility(_CaseInsensitiveEnum):
    HIDDEN = "hidden"
    PUBLIC = "public"


class VoteControlState(BallotBaseModel):
    """The single election-wide control record (``vote_control`` collection).

    ``status`` and ``results_visibility`` are orthogonal: stopping
    voting never publishes results and vice versa.
    """

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "objectId", "_id"))
    status: VoteStatus = VoteStatus.ACTIVE
    auto_stop_date: BallotTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("auto_stop_date", "autoStopDate"),
    )
    results_visibility: ResultsVisibility = Field(
        default=ResultsVisibility.HIDDEN,
        validation_alias=AliasChoices("results_visibility", "resultsVisibility"),
    )
    stopped_at: BallotTimestamp = Field(default=None, validation_alias=AliasChoices("stopped_at", "stoppedAt"))
    stopped_by: str | None = Field(default=None, validation_alias=AliasChoices("stopped_by", "stoppedBy"))
    reason: str | None = None
    created_at: BallotTimestamp = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: BallotTimestamp = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))

    @property
    def is_stopped(self) -> bool:
        return self.status == VoteStatus.STOPPED

    def deadline_passed(self, now: datetime) -> bool:
        """Whether an auto-stop date is set and *now* is at or past it."""
        return self.auto_stop_date is not None and now >= self.auto_stop_date

    def to_record(self) -> dict[str, Any]:
        """Serialize to the snake_case wire shape, without ``id``."""
        return self.model_dump(mode="json", exclude={"id", "raw"})


class VotingStatusInfo(BaseModel):
    """Display-oriented snapshot of the voting status."""

    model_config = ConfigDict(frozen=True)

    is_active: bool
    status: VoteStatus
    auto_stop_date: datetime | None = None
    stopped_at: datetime | None = None
    stopped_by: str | None = None
    reason: str | None = None
    time_until_stop: timedelta | None = None
