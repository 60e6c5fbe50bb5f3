"""Client configuration for ballotbox."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from urllib.parse import urlsplit

from ballotbox._constants import (
    BACKOFF_BASE_S,
    BACKOFF_JITTER_S,
    BASE_URL,
    CACHE_TTL_S,
    DEADLINE_WINDOW_S,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_S,
    NOTIFICATION_RETENTION,
    REFRESH_RATE_S,
    STATUS_POLL_INTERVAL_S,
    TOKEN_TTL_DAYS,
    VOTE_POLL_INTERVAL_S,
)
from ballotbox.exceptions import BallotConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class BallotConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Root of the collection service (no trailing slash).
    application_id : str
        Sent as ``X-Application-Id`` on anonymous requests.
    master_key : str or None
        Optional privileged key, sent as ``X-Master-Key`` on every request.
    retries : int
        Extra attempts after the first one for 5xx and network failures.
    request_timeout : float
        Seconds before a single attempt is abandoned.
    backoff_base : float
        Base delay in seconds; attempt *n* waits ``base * 2**n`` plus jitter.
    backoff_jitter : float
        Upper bound in seconds of the uniform random jitter.
    cache_ttl : float
        Seconds a cached ``find`` result stays valid.
    cache_enabled : bool
        Disable to make every cached read a miss.
    refresh_rate : float
        Tick rate in seconds of the shared refresh timer.
    vote_poll_interval : float
        Seconds between vote-count polls.
    status_poll_interval : float
        Seconds between vote-control status polls.
    deadline_window : float
        Width in seconds of the window in which a deadline reminder is armed.
    notification_retention : int
        Maximum number of notifications kept; oldest are dropped.
    token_ttl_days : int
        Lifetime of a stored session token.
    credentials_path : str or None
        File backing the credential store. ``None`` keeps tokens in memory.
    notifications_path : str or None
        File backing the local notification fallback. ``None`` keeps it in memory.
    allow_insecure_transport : bool
        Attach stored tokens even when ``base_url`` is plain ``http``.
    """

    base_url: str = BASE_URL
    application_id: str = "your-application-id"
    master_key: str | None = None
    retries: int = DEFAULT_RETRIES
    request_timeout: float = DEFAULT_TIMEOUT_S
    backoff_base: float = BACKOFF_BASE_S
    backoff_jitter: float = BACKOFF_JITTER_S
    cache_ttl: float = CACHE_TTL_S
    cache_enabled: bool = True
    refresh_rate: float = REFRESH_RATE_S
    vote_poll_interval: float = VOTE_POLL_INTERVAL_S
    status_poll_interval: float = STATUS_POLL_INTERVAL_S
    deadline_window: float = DEADLINE_WINDOW_S
    notification_retention: int = NOTIFICATION_RETENTION
    token_ttl_days: int = TOKEN_TTL_DAYS
    credentials_path: str | None = None
    notifications_path: str | None = None
    allow_insecure_transport: bool = False

    def __post_init__(self) -> None:
        if not self.base_url:
            raise BallotConfigError("base_url must be non-empty")
        if self.base_url.endswith("/"):
            object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.retries < 0:
            raise BallotConfigError(f"retries must be >= 0, got {self.retries}")
        if self.request_timeout <= 0:
            raise BallotConfigError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.notification_retention < 1:
            raise BallotConfigError(f"notification_retention must be >= 1, got {self.notification_retention}")
        for name in ("refresh_rate", "vote_poll_interval", "status_poll_interval"):
            if getattr(self, name) <= 0:
                raise BallotConfigError(f"{name} must be > 0")

    @property
    def origin(self) -> str:
        """Scheme and host of ``base_url``; credentials are scoped to it."""
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def is_secure_transport(self) -> bool:
        """Whether stored tokens may be transmitted to ``base_url``."""
        return self.base_url.startswith("https://") or self.allow_insecure_transport

    @classmethod
    def from_env(cls, **overrides: Any) -> BallotConfig:
        """Create configuration from environment variables.

        Reads optional ``BALLOT_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BallotConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "BALLOT_BASE_URL": "base_url",
            "BALLOT_APP_ID": "application_id",
            "BALLOT_MASTER_KEY": "master_key",
            "BALLOT_CREDENTIALS_PATH": "credentials_path",
            "BALLOT_NOTIFICATIONS_PATH": "notifications_path",
        }
        _ENV_INT_MAP = {
            "BALLOT_RETRIES": "retries",
            "BALLOT_NOTIFICATION_RETENTION": "notification_retention",
            "BALLOT_TOKEN_TTL_DAYS": "token_ttl_days",
        }
        _ENV_FLOAT_MAP = {
            "BALLOT_REQUEST_TIMEOUT": "request_timeout",
            "BALLOT_BACKOFF_BASE": "backoff_base",
            "BALLOT_BACKOFF_JITTER": "backoff_jitter",
            "BALLOT_CACHE_TTL": "cache_ttl",
            "BALLOT_REFRESH_RATE": "refresh_rate",
            "BALLOT_VOTE_POLL_INTERVAL": "vote_poll_interval",
            "BALLOT_STATUS_POLL_INTERVAL": "status_poll_interval",
            "BALLOT_DEADLINE_WINDOW": "deadline_window",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for mapping, caster in ((_ENV_INT_MAP, int), (_ENV_FLOAT_MAP, float)):
            for env_key, field_name in mapping.items():
                val = env.get(env_key)
                if val is None or field_name in overrides:
                    continue
                try:
                    config_kwargs[field_name] = caster(val)
                except ValueError as exc:
                    raise BallotConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        if "cache_enabled" not in overrides:
            config_kwargs["cache_enabled"] = _env_bool(env.get("BALLOT_CACHE_ENABLED"), True)

        if "allow_insecure_transport" not in overrides:
            config_kwargs["allow_insecure_transport"] = _env_bool(
                env.get("BALLOT_ALLOW_INSECURE_TRANSPORT"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
