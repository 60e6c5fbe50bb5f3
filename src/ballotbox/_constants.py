"""Internal constants shared across the library."""

BASE_URL = "https://api.innque.com/v1"
USER_AGENT = "ballotbox/1"

DEFAULT_RETRIES = 3
DEFAULT_TIMEOUT_S = 30.0
BACKOFF_BASE_S = 0.2
BACKOFF_JITTER_S = 0.1

# Paths that must never carry a bearer token.
ANONYMOUS_PATH_MARKERS: tuple[str, ...] = ("/signin", "/signup")

INVALID_SESSION_MESSAGE = "Invalid session token"

TOKEN_TTL_DAYS = 365
SIGNED_TOKEN_TTL_S = 24 * 3600

# ------------------------------------------------------------------
# Collection names
# ------------------------------------------------------------------

CANDIDATES_COLLECTION = "candidates"
VOTES_COLLECTION = "votes"
VOTE_CONTROL_COLLECTION = "vote_control"
NOTIFICATIONS_COLLECTION = "notifications"
AUDIT_LOGS_COLLECTION = "audit_logs"
USERS_COLLECTION = "users"
ROLES_COLLECTION = "roles"

# ------------------------------------------------------------------
# Monitor cadence and deadline thresholds (seconds)
# ------------------------------------------------------------------

VOTE_POLL_INTERVAL_S = 5.0
STATUS_POLL_INTERVAL_S = 10.0
DEADLINE_WINDOW_S = 300.0
DEADLINE_THRESHOLDS_S: tuple[int, ...] = (3600, 900, 0)

CACHE_TTL_S = 5 * 60.0
REFRESH_RATE_S = 1.0
NOTIFICATION_RETENTION = 50

AUTO_STOP_REASON = "Automatic stop date reached"
MANUAL_STOP_REASON = "Manually stopped by administrator"
