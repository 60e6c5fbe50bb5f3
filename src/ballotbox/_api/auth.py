"""Account endpoints.

Endpoints:
  - GET  /collections/users?where={"email": ...}   (sign-in lookup)
  - GET  /collections/roles?where={"id": ...}      (privileged role lookup)
  - POST /collections/users                        (sign-up)
  - POST /signout
  - GET  /me

Passwords are stored as MD5 hex digests by the service; the plaintext
never leaves this module.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from ballotbox._api.collections import CollectionClient, build_query
from ballotbox._constants import ROLES_COLLECTION, SIGNED_TOKEN_TTL_S, USERS_COLLECTION
from ballotbox.credentials import CredentialStore
from ballotbox.exceptions import BallotAuthenticationError, BallotError
from ballotbox.models._base import utcnow
from ballotbox.models.user import SignInResult, User

_logger = logging.getLogger(__name__)

USER_NOT_FOUND_MESSAGE = "User not found. Please check your email address and try again."
INACTIVE_ACCOUNT_MESSAGE = "Account is inactive. Please contact support."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def hash_password(password: str) -> str:
    """Lowercase MD5 hex digest, as stored in the ``users`` collection."""
    return hashlib.md5(password.encode("utf-8")).hexdigest()  # noqa: S324


def issue_token(user: User, role: str, now: datetime) -> tuple[str, datetime]:
    """Build the opaque session token and its expiry."""
    expires_at = now + timedelta(seconds=SIGNED_TOKEN_TTL_S)
    claims = {
        "userId": user.id,
        "email": user.email,
        "role": role,
        "exp": int(expires_at.timestamp() * 1000),
    }
    token = base64.b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8")).decode("ascii")
    return token, expires_at


async def _resolve_role(
    collections: CollectionClient,
    user: User,
    privileged_headers: Mapping[str, str] | None,
) -> str:
    role_id = user.primary_role_id
    if role_id is None:
        return "user"
    path = f"/collections/{ROLES_COLLECTION}?{build_query({'id': role_id})}"
    payload = await collections.transport.request(path, method="GET", headers=privileged_headers)
    roles = payload if isinstance(payload, list) else []
    if roles and isinstance(roles[0], Mapping) and roles[0].get("name"):
        return str(roles[0]["name"])
    return "user"


async def sign_in(
    collections: CollectionClient,
    credentials: CredentialStore,
    *,
    email: str,
    password: str,
    privileged_headers: Mapping[str, str] | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> SignInResult:
    """Validate credentials against the ``users`` collection and store a session token.

    Any existing token is cleared first, so a failed sign-in always
    leaves the client unauthenticated.

    Raises
    ------
    BallotAuthenticationError
        Unknown email, inactive account, or wrong password.
    """
    credentials.clear()
    hashed = hash_password(password)

    records = await collections.find(USERS_COLLECTION, {"email": email})
    if not records:
        raise BallotAuthenticationError(USER_NOT_FOUND_MESSAGE)

    user = User.model_validate(records[0])
    if not user.is_active:
        raise BallotAuthenticationError(INACTIVE_ACCOUNT_MESSAGE)
    if not hmac.compare_digest(user.password.lower(), hashed):
        _logger.info("Rejected sign-in for user id=%s", user.id)
        raise BallotAuthenticationError(INVALID_CREDENTIALS_MESSAGE)

    role = await _resolve_role(collections, user, privileged_headers)
    token, expires_at = issue_token(user, role, clock())
    credentials.save(token)
    _logger.debug("Signed in user id=%s role=%s", user.id, role)
    return SignInResult(user=user, role=role, token=token, expires_at=expires_at)


async def sign_up(
    collections: CollectionClient,
    credentials: CredentialStore,
    *,
    email: str,
    password: str,
    username: str = "",
    first_name: str = "",
    last_name: str = "",
) -> User:
    """Create an active user; stores a token if the service returns one."""
    created: dict[str, Any] = await collections.create(
        USERS_COLLECTION,
        {
            "email": email,
            "username": username,
            "password": hash_password(password),
            "firstName": first_name,
            "lastName": last_name,
            "status": "active",
        },
    )
    token = created.get("token")
    if isinstance(token, str) and token:
        credentials.save(token)
    return User.model_validate(created)


async def sign_out(collections: CollectionClient, credentials: CredentialStore) -> None:
    """Best-effort server sign-out; the local token is cleared regardless."""
    try:
        await collections.transport.request("/signout", method="POST")
    except BallotError as exc:
        _logger.debug("Sign-out request failed: %s", exc)
    finally:
        credentials.clear()


async def current_user(collections: CollectionClient) -> User | None:
    payload = await collections.transport.request("/me", method="GET")
    if not isinstance(payload, Mapping):
        return None
    return User.model_validate(payload)
