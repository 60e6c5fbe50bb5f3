"""HTTP dispatch with timeout racing, retry/backoff and auth header injection."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeVar

import aiohttp

from ballotbox._constants import ANONYMOUS_PATH_MARKERS, INVALID_SESSION_MESSAGE, USER_AGENT
from ballotbox._redact import redact_for_log
from ballotbox.config import BallotConfig
from ballotbox.credentials import CredentialStore
from ballotbox.exceptions import (
    BallotClientError,
    BallotRequestAbortedError,
    BallotServerError,
    BallotSessionExpiredError,
    BallotTransportError,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`Dispatcher`) concrete.
    """

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = None,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
    ) -> Any: ...


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


def _is_binary(body: Any) -> bool:
    return isinstance(body, (bytes, bytearray, memoryview))


def _error_message(status: int, reason: str, text: str) -> str:
    """Best-effort extraction of the server-provided error message."""
    try:
        parsed = json.loads(text) if text else None
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        message = parsed.get("message") or parsed.get("error")
        if isinstance(message, str) and message:
            return message
    return f"{status} {reason}".strip()


def _is_invalid_session(message: str) -> bool:
    return INVALID_SESSION_MESSAGE.lower() in message.lower()


class Dispatcher:
    """The single network chokepoint.

    One call to :meth:`request` is one logical request: it may issue up
    to ``retries + 1`` HTTP attempts. Only HTTP 5xx and network/timeout
    failures are retried; 4xx is surfaced immediately.
    """

    def __init__(
        self,
        config: BallotConfig,
        http_session: aiohttp.ClientSession,
        credentials: CredentialStore,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._config = config
        self._http = http_session
        self._credentials = credentials
        self._sleep = sleep
        self._jitter = jitter

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_headers(self, path: str, body: Any, custom: Mapping[str, str] | None = None) -> dict[str, str]:
        """Headers for one attempt. Re-evaluated per attempt so a cleared token is honoured."""
        headers: dict[str, str] = dict(custom or {})
        headers.setdefault("User-Agent", USER_AGENT)

        if not _has_header(headers, "Content-Type") and not _is_binary(body):
            headers["Content-Type"] = "application/json"

        anonymous_path = any(marker in path for marker in ANONYMOUS_PATH_MARKERS)
        token = self._credentials.get()
        if token and not anonymous_path and self._config.is_secure_transport:
            headers["Authorization"] = f"Bearer {token}"
        elif not _has_header(headers, "X-Application-Id"):
            headers["X-Application-Id"] = self._config.application_id

        if self._config.master_key:
            headers["X-Master-Key"] = self._config.master_key
        return headers

    @staticmethod
    def encode_body(body: Any) -> Any:
        if body is None or _is_binary(body) or isinstance(body, str):
            return body
        return json.dumps(body, separators=(",", ":"))

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``: ``base * 2**attempt`` plus jitter."""
        return self._config.backoff_base * (2**attempt) + self._jitter(0.0, self._config.backoff_jitter)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _with_abort(self, aw: Awaitable[T], abort: asyncio.Event | None, path: str) -> T:
        """Await *aw* unless *abort* fires first."""
        if abort is None:
            return await aw
        if abort.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise BallotRequestAbortedError(f"Request to {path} aborted")

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise BallotRequestAbortedError(f"Request to {path} aborted")
        return task.result()

    async def _send(
        self,
        method: str,
        url: str,
        data: Any,
        headers: dict[str, str],
    ) -> tuple[int, str, str]:
        async with self._http.request(method, url, data=data, headers=headers) as resp:
            text = "" if resp.status == 204 else await resp.text()
            return resp.status, resp.reason or "", text

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = None,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
    ) -> Any:
        """Issue one logical request and return the decoded JSON body.

        Returns ``None`` for HTTP 204.

        Raises
        ------
        BallotClientError
            HTTP 4xx (never retried).
        BallotSessionExpiredError
            The server rejected the session token; the stored token has
            been cleared.
        BallotServerError
            HTTP 5xx after the last attempt.
        BallotTransportError
            Network failure or timeout after the last attempt, or a
            success body that is not JSON.
        BallotRequestAbortedError
            *abort* was set before the request finished.
        """
        max_retries = self._config.retries if retries is None else max(0, retries)
        attempt_timeout = self._config.request_timeout if timeout is None else timeout
        url = f"{self._config.base_url}{path}"
        method = method.upper()
        data = self.encode_body(body)

        for attempt in range(max_retries + 1):
            attempt_headers = self.build_headers(path, body, headers)
            _logger.debug(
                "%s %s attempt=%d headers=%s body=%s",
                method,
                url,
                attempt + 1,
                redact_for_log(attempt_headers),
                redact_for_log(body),
            )
            try:
                status, reason, text = await self._with_abort(
                    asyncio.wait_for(self._send(method, url, data, attempt_headers), attempt_timeout),
                    abort,
                    path,
                )
            except (aiohttp.ClientError, TimeoutError) as exc:
                if attempt < max_retries:
                    delay = self.backoff_delay(attempt)
                    _logger.debug("%s %s failed (%s); retrying in %.3fs", method, path, exc, delay)
                    await self._with_abort(self._sleep(delay), abort, path)
                    continue
                if isinstance(exc, TimeoutError):
                    message = f"Request to {path} timed out after {attempt_timeout}s"
                else:
                    message = f"Request to {path} failed: {exc}"
                raise BallotTransportError(message, path=path) from exc

            if status >= 500 and attempt < max_retries:
                delay = self.backoff_delay(attempt)
                _logger.debug("%s %s returned HTTP %d; retrying in %.3fs", method, path, status, delay)
                await self._with_abort(self._sleep(delay), abort, path)
                continue

            if not 200 <= status < 300:
                self._raise_for_status(status, reason, text, path)

            if status == 204 or not text.strip():
                return None
            try:
                result = json.loads(text)
            except json.JSONDecodeError as exc:
                raise BallotTransportError(
                    f"Invalid JSON from {path}: {text[:200]}",
                    status_code=status,
                    path=path,
                ) from exc
            _logger.debug("%s %s -> %d %s", method, path, status, redact_for_log(result))
            return result

        # The loop always returns or raises on its final attempt.
        raise AssertionError("unreachable")  # pragma: no cover

    def _raise_for_status(self, status: int, reason: str, text: str, path: str) -> None:
        message = _error_message(status, reason, text)
        if _is_invalid_session(message):
            _logger.info("Session token rejected by %s; clearing stored credentials", path)
            self._credentials.clear()
            raise BallotSessionExpiredError(message, status_code=status, path=path)
        if status >= 500:
            raise BallotServerError(message, status_code=status, path=path)
        raise BallotClientError(message, status_code=status, path=path)
