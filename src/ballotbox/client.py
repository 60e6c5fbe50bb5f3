"""High-level async client for the election collection service."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from ballotbox._api import auth as _auth_api
from ballotbox._api.collections import CollectionClient, Record
from ballotbox._cache import QuerySignature, ReadCache
from ballotbox._constants import CANDIDATES_COLLECTION
from ballotbox._transport import Dispatcher, Transport
from ballotbox.audit import AuditLogger
from ballotbox.config import BallotConfig
from ballotbox.credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from ballotbox.events import BroadcastEvent, EventBus
from ballotbox.exceptions import BallotError
from ballotbox.models._base import utcnow
from ballotbox.models.notification import Notification
from ballotbox.models.user import SignInResult, User
from ballotbox.monitor import ChangeMonitor
from ballotbox.notifications import LocalNotificationBackend, NotificationStore, RemoteNotificationBackend
from ballotbox.refresh import RefreshRegistry
from ballotbox.vote_control import VoteControl

_logger = logging.getLogger(__name__)


class BallotClient:
    """Async client for the election backend.

    Owns exactly one of each coordinator (refresh registry, change
    monitor, notification store) and injects them into each other.

    Usage::

        async with BallotClient(BallotConfig.from_env()) as client:
            await client.sign_in("admin@example.com", "secret")
            await client.start_monitoring()
            candidates = await client.find_cached("candidates")
    """

    def __init__(
        self,
        config: BallotConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        credentials: CredentialStore | None = None,
        transport: Transport | None = None,
        on_toast: Callable[[Notification], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or BallotConfig()
        self._external_session = session is not None
        self._http_session = session
        self._clock = clock
        self._on_toast = on_toast
        self._credentials = credentials or self._default_credentials()

        self._events = EventBus()
        self._cache = ReadCache(self._config.cache_ttl, enabled=self._config.cache_enabled)
        self._refresh = RefreshRegistry(self._config.refresh_rate)

        self._transport: Transport | None = None
        self._collections: CollectionClient | None = None
        self._notifications: NotificationStore | None = None
        self._audit: AuditLogger | None = None
        self._vote_control: VoteControl | None = None
        self._monitor: ChangeMonitor | None = None
        if transport is not None:
            self._wire(transport)

    def _default_credentials(self) -> CredentialStore:
        ttl = timedelta(days=self._config.token_ttl_days)
        if self._config.credentials_path:
            return FileCredentialStore(
                self._config.credentials_path,
                self._config.origin,
                ttl=ttl,
                clock=self._clock,
            )
        return MemoryCredentialStore(self._config.origin, ttl=ttl, clock=self._clock)

    def _wire(self, transport: Transport) -> None:
        cfg = self._config
        self._transport = transport
        self._collections = CollectionClient(transport, on_write=self._invalidate)
        self._notifications = NotificationStore(
            LocalNotificationBackend(cfg.notifications_path, retention=cfg.notification_retention),
            RemoteNotificationBackend(self._collections, retention=cfg.notification_retention),
            retention=cfg.notification_retention,
            on_toast=self._on_toast,
        )
        self._audit = AuditLogger(self._collections, self._events)
        self._vote_control = VoteControl(
            self._collections,
            self._events,
            notifications=self._notifications,
            audit=self._audit,
            clock=self._clock,
        )
        self._monitor = ChangeMonitor(
            self._collections,
            self._notifications,
            self._events,
            vote_interval=cfg.vote_poll_interval,
            status_interval=cfg.status_poll_interval,
            deadline_window=cfg.deadline_window,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BallotClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._wire(Dispatcher(self._config, self._http_session, self._credentials))
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop background tasks and release the HTTP session if owned."""
        if self._monitor is not None:
            await self._monitor.aclose()
        await self._refresh.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _require(self, component: Any) -> Any:
        if component is None:
            raise BallotError("Client not initialized. Use 'async with BallotClient(...) as client:'")
        return component

    @property
    def config(self) -> BallotConfig:
        return self._config

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def cache(self) -> ReadCache:
        return self._cache

    @property
    def refresh(self) -> RefreshRegistry:
        return self._refresh

    @property
    def collections(self) -> CollectionClient:
        return self._require(self._collections)

    @property
    def notifications(self) -> NotificationStore:
        return self._require(self._notifications)

    @property
    def audit(self) -> AuditLogger:
        return self._require(self._audit)

    @property
    def vote_control(self) -> VoteControl:
        return self._require(self._vote_control)

    @property
    def monitor(self) -> ChangeMonitor:
        return self._require(self._monitor)

    @property
    def is_authenticated(self) -> bool:
        return self._credentials.get() is not None

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    async def find_cached(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        skip: int | None = None,
        sort: Mapping[str, Any] | None = None,
        refresh: bool = False,
    ) -> list[Record]:
        """``find`` through the read cache.

        With ``refresh=True`` the cache is bypassed and the entry rewritten.
        """
        signature = QuerySignature.of(collection, where, limit=limit, skip=skip, sort=sort)
        if not refresh:
            cached = self._cache.read(signature)
            if cached is not None:
                _logger.debug("Cache hit %s", signature)
                return cached
        records = await self.collections.find(collection, where, limit=limit, skip=skip, sort=sort)
        self._cache.write(signature, records)
        return records

    async def prefetch(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        sort: Mapping[str, Any] | None = None,
    ) -> None:
        """Warm the cache for a query; failures are logged and ignored."""
        try:
            await self.find_cached(collection, where, limit=limit, sort=sort, refresh=True)
        except BallotError as exc:
            _logger.warning("Prefetch of %s failed: %s", collection, exc)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _invalidate(self, collection: str) -> None:
        self._cache.invalidate_collection(collection)

    def _after_mutation(self, collection: str) -> None:
        if collection == CANDIDATES_COLLECTION:
            self._events.publish(BroadcastEvent.CANDIDATES_UPDATED)

    async def create(self, collection: str, data: Mapping[str, Any]) -> Record:
        created = await self.collections.create(collection, data)
        self._after_mutation(collection)
        return created

    async def update(self, collection: str, object_id: str, data: Mapping[str, Any]) -> Record:
        updated = await self.collections.update(collection, object_id, data)
        self._after_mutation(collection)
        return updated

    async def delete(self, collection: str, object_id: str) -> None:
        await self.collections.delete(collection, object_id)
        self._after_mutation(collection)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _privileged_headers(self) -> dict[str, str] | None:
        if not self._config.master_key:
            return None
        return {
            "X-Application-Id": self._config.application_id,
            "X-Master-Key": self._config.master_key,
        }

    async def sign_in(self, email: str, password: str) -> SignInResult:
        """Sign in and attribute subsequent audit entries to the user.

        Raises :class:`~ballotbox.exceptions.BallotAuthenticationError`
        on bad credentials; no token is stored in that case.
        """
        self._cache.invalidate_all()
        result = await _auth_api.sign_in(
            self.collections,
            self._credentials,
            email=email,
            password=password,
            privileged_headers=self._privileged_headers(),
            clock=self._clock,
        )
        self.audit.set_user(result.user)
        await self.audit.log_authentication_action("user_login", {"role": result.role})
        return result

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        username: str = "",
        first_name: str = "",
        last_name: str = "",
    ) -> User:
        return await _auth_api.sign_up(
            self.collections,
            self._credentials,
            email=email,
            password=password,
            username=username,
            first_name=first_name,
            last_name=last_name,
        )

    async def sign_out(self) -> None:
        """Sign out; the local token is cleared even if the server call fails."""
        await self.audit.log_authentication_action("user_logout")
        await _auth_api.sign_out(self.collections, self._credentials)
        self.audit.set_user(None)
        self._cache.invalidate_all()

    async def current_user(self) -> User | None:
        return await _auth_api.current_user(self.collections)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def start_monitoring(self) -> None:
        """Record baselines and start the vote and status pollers."""
        await self.monitor.initialize()

    def stop_monitoring(self) -> None:
        self.monitor.stop_monitoring()
