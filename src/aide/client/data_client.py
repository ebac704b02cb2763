"""Async client for the row-oriented data API (PostgREST-style)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

import httpx

from aide.errors import AuthenticationRequired, NetworkOrServerError
from aide.util.config import ClientConfig

logger = logging.getLogger(__name__)

Filters = dict[str, Any]


def _filter_params(filters: Filters | None) -> list[tuple[str, str]]:
    """Translate {column: value} into PostgREST query parameters.

    Lists become `in.(...)`, None becomes `is.null`, anything else `eq.value`.
    """
    params: list[tuple[str, str]] = []
    for column, value in (filters or {}).items():
        if value is None:
            params.append((column, "is.null"))
        elif isinstance(value, (list, tuple, set)):
            joined = ",".join(str(v) for v in value)
            params.append((column, f"in.({joined})"))
        elif isinstance(value, bool):
            params.append((column, f"eq.{str(value).lower()}"))
        else:
            params.append((column, f"eq.{value}"))
    return params


class DataClient:
    """Client for the tables of the hosted database.

    Requests carry the caller's access token so row-level policies apply;
    without a token the API key itself is sent as bearer.
    """

    def __init__(
        self,
        config: ClientConfig,
        token_provider: Callable[[], str | None] | None = None,
        http: httpx.AsyncClient | None = None,
        api_key: str | None = None,
    ):
        """Initialize the data client.

        Args:
            config: Client configuration (backend URL, anon key)
            token_provider: Returns the current access token, or None
            http: Shared async HTTP client (created if omitted)
            api_key: Key sent as apikey header; defaults to the anon key
        """
        self.base_url = config.rest_url
        self.api_key = api_key if api_key is not None else config.anon_key
        self._token_provider = token_provider
        self._http = http or httpx.AsyncClient(timeout=config.timeout)
        self._owns_http = http is None

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else None
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        logger.debug("%s %s %s", method, table, params or "")
        try:
            resp = await self._http.request(
                method,
                f"{self.base_url}/{table}",
                headers=self._headers(prefer),
                params=params,
                json=json_body,
            )
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"{method} {table} failed: {e}") from e

        if resp.status_code == 401:
            raise AuthenticationRequired(f"{method} {table} rejected: not authenticated")
        if resp.status_code >= 300:
            raise NetworkOrServerError(
                f"{method} {table} failed with HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Filters | None = None,
        order: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows.

        Args:
            table: Table name
            columns: Column list, `*` for all
            filters: Equality / membership filters
            order: Column to order by
            ascending: Sort direction for `order`
            limit: Maximum number of rows
            offset: Rows to skip (for paging)
        """
        params = [("select", columns)] + _filter_params(filters)
        if order:
            params.append(("order", f"{order}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        return await self._request("GET", table, params=params)

    async def select_one(self, table: str, *, filters: Filters, columns: str = "*") -> dict[str, Any] | None:
        """Read a single row, or None when nothing matches."""
        rows = await self.select(table, columns=columns, filters=filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, rows: dict[str, Any] | Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert one or more rows and return them as stored."""
        body = rows if isinstance(rows, dict) else list(rows)
        return await self._request("POST", table, json_body=body, prefer="return=representation")

    async def upsert(self, table: str, row: dict[str, Any], *, on_conflict: str) -> list[dict[str, Any]]:
        """Insert a row or merge it into the one sharing `on_conflict`."""
        return await self._request(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            json_body=row,
            prefer="resolution=merge-duplicates,return=representation",
        )

    async def update(self, table: str, values: dict[str, Any], *, filters: Filters) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        return await self._request(
            "PATCH", table, params=_filter_params(filters), json_body=values, prefer="return=representation"
        )

    async def delete(self, table: str, *, filters: Filters) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        return await self._request("DELETE", table, params=_filter_params(filters), prefer="return=representation")
