"""ballotbox - Async Python client for a two-category election backend."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ballotbox")
except PackageNotFoundError:
    __version__ = "0+local"
from ballotbox.client import BallotClient
from ballotbox.config import BallotConfig
from ballotbox.credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import (
    BallotApiError,
    BallotAuthenticationError,
    BallotClientError,
    BallotConfigError,
    BallotError,
    BallotRequestAbortedError,
    BallotServerError,
    BallotSessionExpiredError,
    BallotTransportError,
)
from ballotbox.models import (
    Notification,
    NotificationPriority,
    NotificationType,
    ResultsVisibility,
    SignInResult,
    User,
    VoteControlState,
    VoteStatus,
    VotingStatusInfo,
)
from ballotbox.requests import LatestRequest

__all__ = [
    "__version__",
    "BallotApiError",
    "BallotAuthenticationError",
    "BallotClient",
    "BallotClientError",
    "BallotConfig",
    "BallotConfigError",
    "BallotError",
    "BallotRequestAbortedError",
    "BallotServerError",
    "BallotSessionExpiredError",
    "BallotTransportError",
    "BroadcastEvent",
    "CredentialStore",
    "EventBus",
    "FileCredentialStore",
    "LatestRequest",
    "MemoryCredentialStore",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "ResultsVisibility",
    "SignInResult",
    "User",
    "VoteControlState",
    "VoteStatus",
    "VotingStatusInfo",
]
