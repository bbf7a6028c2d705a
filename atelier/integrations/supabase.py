"""Async client for the dashboard's Supabase (PostgREST) tables.

Only the narrow surface the voice assistant needs: insert a row, select
rows by simple filters and read the maximum of a column.
"""

import asyncio
import logging
from typing import Any

import httpx

from atelier.errors import MutationFailed, RecordNotFound

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAY = 1.0
_RETRYABLE = (httpx.RemoteProtocolError, httpx.ConnectError)

Filters = dict[str, tuple[str, Any]]


async def _retry_on_disconnect(coro_fn, *args, **kwargs):
    """Run a read, retrying dropped or refused connections.

    Backs off exponentially from ``RETRY_DELAY``. Only reads go
    through here; inserts are never repeated.
    """
    attempt = 0
    while True:
        try:
            return await coro_fn(*args, **kwargs)
        except _RETRYABLE as exc:
            if attempt >= MAX_RETRIES:
                raise
            delay = RETRY_DELAY * 2**attempt
            attempt += 1
            logger.warning(
                "Supabase read failed (%s), retry %d/%d in %.1fs",
                type(exc).__name__, attempt, MAX_RETRIES, delay,
            )
            await asyncio.sleep(delay)


def eq(value: Any) -> tuple[str, Any]:
    return ("eq", value)


def ilike(value: str) -> tuple[str, Any]:
    """Case-insensitive pattern; ``*`` is the PostgREST wildcard."""
    return ("ilike", value)


def contains(value: str) -> tuple[str, Any]:
    """Case-insensitive substring match."""
    escaped = value.replace("*", "").replace(",", " ").strip()
    return ilike(f"*{escaped}*")


def _filter_params(filters: Filters | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for column, (op, value) in (filters or {}).items():
        if isinstance(value, bool):
            value = str(value).lower()
        params[column] = f"{op}.{value}"
    return params


class SupabaseClient:
    """Async HTTP client for Supabase's REST endpoint.

    Usage::

        async with SupabaseClient(url, anon_key) as db:
            row = await db.insert("todos", {"text": "Call Ana", "position": 0})
    """

    def __init__(self, base_url: str, api_key: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str, params: dict | None = None) -> list[dict]:
        """GET a table. Retries on connection drop."""
        return await _retry_on_disconnect(self._get_raw, path, params=params)

    async def _get_raw(self, path: str, params: dict | None = None) -> list[dict]:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # Mutation interface
    # ------------------------------------------------------------------

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored (including ``id``).

        Raises:
            MutationFailed: The row was rejected or the server was unreachable.
        """
        try:
            response = await self._client.post(
                f"/{table}",
                json=record,
                headers={"Prefer": "return=representation"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MutationFailed(_describe(exc.response)) from exc
        except httpx.TransportError as exc:
            raise MutationFailed(f"Database unreachable: {exc}") from exc

        rows = response.json()
        row = rows[0] if isinstance(rows, list) and rows else {}
        logger.info("Inserted into %s: id=%s", table, row.get("id"))
        return row

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows matching every filter.

        Raises:
            MutationFailed: The query was rejected or the server was unreachable.
        """
        params = _filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        try:
            return await self._get(f"/{table}", params=params)
        except httpx.HTTPStatusError as exc:
            raise MutationFailed(_describe(exc.response)) from exc
        except httpx.TransportError as exc:
            raise MutationFailed(f"Database unreachable: {exc}") from exc

    async def select_one(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = "*",
    ) -> dict[str, Any]:
        """Return the first matching row.

        Raises:
            RecordNotFound: No row matches.
        """
        rows = await self.select(table, filters, columns=columns, limit=1)
        if not rows:
            raise RecordNotFound(f"No row in {table} matches {filters}")
        return rows[0]

    async def select_max(
        self,
        table: str,
        filters: Filters | None,
        column: str,
    ) -> Any | None:
        """Return the largest value of ``column`` among matching rows, or None."""
        rows = await self.select(
            table,
            filters,
            columns=column,
            order=f"{column}.desc.nullslast",
            limit=1,
        )
        if not rows:
            return None
        return rows[0].get(column)


def _describe(response: httpx.Response) -> str:
    """Extract PostgREST's error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return f"{body['message']} (HTTP {response.status_code})"
    return f"HTTP {response.status_code}"
