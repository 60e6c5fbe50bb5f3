"""Data models for collection records and library state."""

from ballotbox.models._base import BallotBaseModel, BallotTimestamp, parse_timestamp
from ballotbox.models.notification import Notification, NotificationPriority, NotificationType
from ballotbox.models.token import StoredToken
from ballotbox.models.user import SignInResult, User
from ballotbox.models.vote_control import (
    ResultsVisibility,
    VoteControlState,
    VoteStatus,
    VotingStatusInfo,
)

__all__ = [
    "BallotBaseModel",
    "BallotTimestamp",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "ResultsVisibility",
    "SignInResult",
    "StoredToken",
    "User",
    "VoteControlState",
    "VoteStatus",
    "VotingStatusInfo",
    "parse_timestamp",
]
