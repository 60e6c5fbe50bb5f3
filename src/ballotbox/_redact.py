"""Redaction of secrets before DEBUG logging.

Request headers and bodies carry bearer tokens, the master key and
password hashes. :func:`redact_for_log` returns a copy that is safe to
log: sensitive values are masked and long strings are truncated.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"
_MAX_DEPTH = 20

# Compared after lowercasing and dropping "-" and "_".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "authorization",
        "cookie",
        "setcookie",
        "masterkey",
        "xmasterkey",
    }
)


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("-", "").replace("_", "")


def _is_sensitive(key: Any) -> bool:
    normalized = _normalize_key(key)
    return normalized in _SENSITIVE_KEYS or normalized.endswith("token")


def _mask(key: Any, value: Any) -> str:
    """Keep the auth scheme of an ``Authorization`` value, mask the rest."""
    if _normalize_key(key) == "authorization" and isinstance(value, str) and " " in value:
        scheme = value.split(" ", 1)[0]
        return f"{scheme} {REDACTED}"
    return REDACTED


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(k): _mask(k, v) if _is_sensitive(k) else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
            for k, v in value.items()
        }

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
