"""Collection endpoints.

Endpoints:
  - GET    /collections/{name}?where=&limit=&skip=&sort=
  - GET    /collections/{name}?where=&count=true
  - GET    /collections/{name}/{id}
  - POST   /collections/{name}
  - PUT    /collections/{name}/{id}
  - DELETE /collections/{name}/{id}
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote, urlencode

from ballotbox._transport import Transport
from ballotbox.exceptions import BallotTransportError

_logger = logging.getLogger(__name__)

Record = dict[str, Any]


def encode_json(value: Any) -> str:
    """Compact JSON as used in query strings."""
    return json.dumps(value, separators=(",", ":"))


def build_query(
    where: Mapping[str, Any] | None = None,
    *,
    limit: int | None = None,
    skip: int | None = None,
    sort: Mapping[str, Any] | None = None,
    count: bool = False,
) -> str:
    """Serialize find/count options into a query string (without ``?``).

    Empty predicates and zero/``None`` limits are omitted.
    """
    params: list[tuple[str, str]] = []
    if where:
        params.append(("where", encode_json(where)))
    if limit:
        params.append(("limit", str(limit)))
    if skip:
        params.append(("skip", str(skip)))
    if sort:
        params.append(("sort", encode_json(sort)))
    if count:
        params.append(("count", "true"))
    return urlencode(params)


def _collection_path(collection: str, object_id: str | None = None) -> str:
    if not collection:
        raise ValueError("Collection name is required")
    path = f"/collections/{quote(collection, safe='')}"
    if object_id is not None:
        if not str(object_id):
            raise ValueError("Object id is required")
        path = f"{path}/{quote(str(object_id), safe='')}"
    return path


def _unwrap_results(collection: str, payload: Any) -> list[Record]:
    if payload is None:
        return []
    if isinstance(payload, Mapping) and isinstance(payload.get("results"), list):
        payload = payload["results"]
    if not isinstance(payload, list):
        raise BallotTransportError(
            f"Expected a list of records from {collection}, got {type(payload).__name__}",
            path=_collection_path(collection),
        )
    return [dict(item) for item in payload if isinstance(item, Mapping)]


class CollectionClient:
    """CRUD façade over the dispatcher.

    Performs no retries of its own; every error raised by the transport
    propagates unchanged. ``on_write`` is called with the collection name
    after every successful create, update or delete.
    """

    def __init__(self, transport: Transport, *, on_write: Callable[[str], None] | None = None) -> None:
        self._transport = transport
        self._on_write = on_write

    def _written(self, collection: str) -> None:
        if self._on_write is not None:
            self._on_write(collection)

    @property
    def transport(self) -> Transport:
        return self._transport

    async def find(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        skip: int | None = None,
        sort: Mapping[str, Any] | None = None,
        abort: asyncio.Event | None = None,
    ) -> list[Record]:
        """Return the records of *collection* matching *where*."""
        path = _collection_path(collection)
        query = build_query(where, limit=limit, skip=skip, sort=sort)
        if query:
            path = f"{path}?{query}"
        _logger.debug("find %s", path)
        payload = await self._transport.request(path, method="GET", abort=abort)
        return _unwrap_results(collection, payload)

    async def get(self, collection: str, object_id: str, *, abort: asyncio.Event | None = None) -> Record | None:
        payload = await self._transport.request(_collection_path(collection, object_id), method="GET", abort=abort)
        return dict(payload) if isinstance(payload, Mapping) else None

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        abort: asyncio.Event | None = None,
    ) -> Record:
        if not isinstance(data, Mapping):
            raise ValueError("Data must be a mapping")
        payload = await self._transport.request(
            _collection_path(collection),
            method="POST",
            body=dict(data),
            abort=abort,
        )
        self._written(collection)
        return dict(payload) if isinstance(payload, Mapping) else {}

    async def update(
        self,
        collection: str,
        object_id: str,
        data: Mapping[str, Any],
        *,
        abort: asyncio.Event | None = None,
    ) -> Record:
        if not isinstance(data, Mapping):
            raise ValueError("Data must be a mapping")
        payload = await self._transport.request(
            _collection_path(collection, object_id),
            method="PUT",
            body=dict(data),
            abort=abort,
        )
        self._written(collection)
        return dict(payload) if isinstance(payload, Mapping) else {}

    async def delete(self, collection: str, object_id: str, *, abort: asyncio.Event | None = None) -> None:
        await self._transport.request(_collection_path(collection, object_id), method="DELETE", abort=abort)
        self._written(collection)

    async def count(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        abort: asyncio.Event | None = None,
    ) -> int:
        """Number of records matching *where*.

        Accepts a ``{"count": n}`` body, or a plain list of records for
        services that ignore ``count=true``.
        """
        path = f"{_collection_path(collection)}?{build_query(where, count=True)}"
        payload = await self._transport.request(path, method="GET", abort=abort)
        if isinstance(payload, Mapping) and "count" in payload:
            try:
                return int(payload["count"])
            except (TypeError, ValueError) as exc:
                raise BallotTransportError(f"Invalid count from {collection}: {payload['count']!r}", path=path) from exc
        return len(_unwrap_results(collection, payload))
