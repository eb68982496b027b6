"""Remote store client — PostgREST-style REST API over httpx.

The handle is owned explicitly by whoever builds it (the orchestrator, the
app lifespan, a test) and can be closed or swapped; there is no module-level
singleton. HTTP errors are raised as StoreRequestError carrying the store's
error code; transport failures surface as httpx.TransportError.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from yunzhou.core.config import settings
from yunzhou.core.exceptions import ConnectionUnavailableError, StoreRequestError

logger = logging.getLogger(__name__)

DATE_COLUMN = "date"


def _in_list(values: list[Any]) -> str:
    """Format a PostgREST ``in.(...)`` filter value."""
    parts = []
    for v in values:
        s = str(v)
        if any(c in s for c in ',()" '):
            s = '"' + s.replace('"', '\\"') + '"'
        parts.append(s)
    return f"in.({','.join(parts)})"


def _parse_content_range(header: Optional[str]) -> int:
    """Extract the total from a ``Content-Range: 0-0/123`` header."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class StoreClient:
    """Per-table reads, upserts and deletes against the remote store."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size or settings.store_page_size
        self._http = httpx.Client(
            base_url=f"{self._base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.store_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._http.close()
        logger.info("Store client closed")

    # -----------------------------------------------------------------------
    # Request plumbing
    # -----------------------------------------------------------------------

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Any] = None,
        json: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        response = self._http.request(method, f"/{table}", params=params, json=json, headers=headers)
        if response.is_error:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: httpx.Response) -> StoreRequestError:
        body: dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            pass
        message = body.get("message") or response.text or response.reason_phrase
        return StoreRequestError(
            status_code=response.status_code,
            message=str(message),
            store_code=body.get("code"),
            store_details=body.get("details"),
            hint=body.get("hint"),
        )

    def _paginate(self, table: str, params: list[tuple[str, str]]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            page_params = params + [("limit", str(self._page_size)), ("offset", str(offset))]
            page = self._request("GET", table, params=page_params).json()
            rows.extend(page)
            if len(page) < self._page_size:
                return rows
            offset += self._page_size

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def count_rows(self, table: str) -> int:
        response = self._request(
            "GET", table,
            params=[("select", "id"), ("limit", "1")],
            headers={"Prefer": "count=exact", "Range-Unit": "items", "Range": "0-0"},
        )
        return _parse_content_range(response.headers.get("content-range"))

    def latest_date(self, table: str) -> Optional[str]:
        rows = self._request(
            "GET", table,
            params=[
                ("select", DATE_COLUMN),
                (DATE_COLUMN, "not.is.null"),
                ("order", f"{DATE_COLUMN}.desc"),
                ("limit", "1"),
            ],
        ).json()
        return rows[0][DATE_COLUMN] if rows else None

    def fetch_range(self, table: str, start: str, end: str) -> list[dict[str, Any]]:
        """All rows with start <= date <= end, oldest first."""
        return self._paginate(table, [
            ("select", "*"),
            (DATE_COLUMN, f"gte.{start}"),
            (DATE_COLUMN, f"lte.{end}"),
            ("order", f"{DATE_COLUMN}.asc,id.asc"),
        ])

    def fetch_all(self, table: str) -> list[dict[str, Any]]:
        return self._paginate(table, [("select", "*"), ("order", "id.asc")])

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def upsert(self, table: str, rows: list[dict[str, Any]], on_conflict: Optional[str] = None) -> None:
        """Insert rows, merging into existing rows that share the conflict key.

        Without a conflict key this is a plain insert.
        """
        if not on_conflict:
            self.insert(table, rows)
            return
        self._request(
            "POST", table,
            params={"on_conflict": on_conflict},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        self._request("POST", table, json=rows, headers={"Prefer": "return=minimal"})

    def delete_rows(self, table: str, ids: list[Any]) -> None:
        if not ids:
            return
        self._request("DELETE", table, params={"id": _in_list(ids)})

    def delete_all(self, table: str) -> None:
        self._request("DELETE", table, params={"id": "not.is.null"})

    def ping(self) -> bool:
        """Check if the store is reachable."""
        try:
            response = self._http.get("/")
            return response.status_code < 500
        except httpx.HTTPError:
            return False


def create_store_client(
    url: Optional[str] = None,
    api_key: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> StoreClient:
    """Build a store client, refusing missing or malformed configuration."""
    url = url if url is not None else settings.store_url
    api_key = api_key if api_key is not None else settings.store_api_key
    if not url or not api_key:
        raise ConnectionUnavailableError("Remote store URL and API key must both be configured.")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConnectionUnavailableError(f"Invalid remote store URL: '{url}'")
    client = StoreClient(url, api_key, transport=transport)
    logger.info(f"Store client initialized for {client.base_url}")
    return client
