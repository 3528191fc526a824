"""
PostgREST client for the hosted Postgres database (Supabase-style REST).
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, get_settings
from ..exceptions import RepositoryError

logger = structlog.get_logger()

Filters = Sequence[Tuple[str, str]]


def eq(value: Any) -> str:
    return f"eq.{_literal(value)}"


def gte(value: Any) -> str:
    return f"gte.{_literal(value)}"


def lte(value: Any) -> str:
    return f"lte.{_literal(value)}"


def in_(values: Iterable[Any]) -> str:
    quoted = ",".join(f'"{_literal(v)}"' for v in values)
    return f"in.({quoted})"


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _is_transient(error: BaseException) -> bool:
    """Transport failures and server errors are retried; client errors are not."""
    return isinstance(error, RepositoryError) and (
        error.status_code == 0 or error.status_code >= 500
    )


class PostgrestClient:
    """
    Async client for PostgREST table endpoints.
    Handles authentication headers, paging and retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait=None,
    ):
        self.settings = settings or get_settings()
        self.base_url = (base_url or self.settings.supabase_url).rstrip("/") + "/rest/v1"
        self.api_key = api_key if api_key is not None else self.settings.supabase_key
        self.page_size = self.settings.page_size
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.settings.request_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "PostgrestClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        table: str,
        **kwargs,
    ) -> Any:
        """Authenticated request with retry on transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(self.settings.max_retries, 1)),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, table, **kwargs)

    async def _send(self, method: str, table: str, **kwargs) -> Any:
        client = await self._get_client()

        try:
            response = await client.request(method, f"/{table}", **kwargs)
        except httpx.TimeoutException as e:
            raise RepositoryError(f"Request timeout: {method} {table}", cause=e, operation=table)
        except httpx.RequestError as e:
            raise RepositoryError(f"Request error: {e}", cause=e, operation=table)

        if response.status_code in (401, 403):
            raise RepositoryError(
                "Authentication failed. Check the API key.",
                status_code=response.status_code,
                operation=table,
            )

        if response.status_code == 404:
            raise RepositoryError(
                f"Resource not found: {table}",
                status_code=404,
                operation=table,
            )

        if response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            logger.warning(
                "PostgREST error",
                table=table,
                method=method,
                status=response.status_code,
            )
            raise RepositoryError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                operation=table,
                details=error_detail,
            )

        if response.status_code == 204 or not response.content:
            return []

        return response.json()

    async def select(
        self,
        table: str,
        filters: Filters = (),
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows.

        Args:
            table: Table name
            filters: (column, "op.value") pairs, e.g. ("reconciled", eq(False))
            columns: Column list for the select parameter
            order: Order clause, e.g. "date.asc,id.asc"
            limit: Maximum rows
            offset: Rows to skip
        """
        params: List[Tuple[str, str]] = [("select", columns)]
        params.extend(filters)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        return await self._request("GET", table, params=params)

    async def select_all(
        self,
        table: str,
        filters: Filters = (),
        columns: str = "*",
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Select every matching row, one page at a time."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            chunk = await self.select(
                table, filters, columns, order, limit=self.page_size, offset=offset
            )
            rows.extend(chunk)
            if len(chunk) < self.page_size:
                break
            offset += self.page_size

        logger.debug("Rows fetched", table=table, rows=len(rows))
        return rows

    async def get_one(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        """Single row by id, or None if it does not exist."""
        try:
            rows = await self.select(table, [("id", eq(row_id))], limit=1)
        except RepositoryError as e:
            if e.status_code == 404:
                return None
            raise
        return rows[0] if rows else None

    async def update(
        self,
        table: str,
        filters: Filters,
        values: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """PATCH matching rows and return them; empty when no row matched the filters."""
        return await self._request(
            "PATCH",
            table,
            params=list(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
