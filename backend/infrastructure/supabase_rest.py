"""
Supabase REST wrapper over httpx (no SDK dependency)
Mimics supabase-py's .table().select().eq().execute() chaining
using httpx + PostgREST query params.

Used by: billing/store.py, billing/users.py

PATCH with filters is how conditional updates are expressed: PostgREST
applies the filters and the update in one statement, and with
`Prefer: return=representation` an empty body means nothing matched.
"""

import os
import logging
import httpx

from .errors import DatabaseError

logger = logging.getLogger("SupabaseREST")


class QueryResult:
    """Mimics supabase execute() result with .data attribute"""
    def __init__(self, data, count=None):
        self.data = data if data else []
        self.count = count


class TableQuery:
    """Chainable query builder for PostgREST API"""

    def __init__(self, base_url: str, key: str, table: str, transport: httpx.AsyncBaseTransport = None):
        self._base_url = f"{base_url}/rest/v1/{table}"
        self._key = key
        self._transport = transport
        self._params = {}
        self._method = "GET"
        self._body = None
        self._extra_headers = {}
        self._want_single = False

    def _headers(self):
        h = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        h.update(self._extra_headers)
        return h

    # ── Query builders ──

    def select(self, columns: str = "*"):
        self._method = "GET"
        self._params["select"] = columns
        return self

    def update(self, data: dict):
        self._method = "PATCH"
        self._body = data
        return self

    def upsert(self, data: dict, on_conflict: str = None):
        self._method = "POST"
        self._body = data
        self._extra_headers["Prefer"] = "resolution=merge-duplicates,return=representation"
        if on_conflict:
            self._params["on_conflict"] = on_conflict
        return self

    # ── Filters ──

    def eq(self, column: str, value):
        self._params[column] = f"eq.{value}"
        return self

    def is_null(self, column: str):
        self._params[column] = "is.null"
        return self

    # ── Modifiers ──

    def single(self):
        """Return single row (first match)"""
        self._want_single = True
        self._params["limit"] = "1"
        return self

    # ── Execute ──

    async def execute(self) -> QueryResult:
        """Execute the query via httpx; raises DatabaseError on any failure"""
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                resp = await client.request(
                    self._method,
                    self._base_url,
                    headers=self._headers(),
                    params=self._params,
                    json=self._body if self._method != "GET" else None,
                )
            except httpx.HTTPError as e:
                logger.error(f"[SupabaseREST] Request failed: {e}")
                raise DatabaseError(f"{self._method} {self._base_url} failed", e)

        if resp.status_code not in (200, 201, 204):
            logger.error(f"[SupabaseREST] {self._method} {self._base_url}: {resp.status_code} {resp.text[:300]}")
            raise DatabaseError(f"{self._method} {self._base_url} returned {resp.status_code}")

        data = resp.json() if resp.text else []

        if self._want_single and isinstance(data, list):
            data = data[0] if data else None

        return QueryResult(data)


class SupabaseREST:
    """Lightweight Supabase REST client mimicking SDK interface."""

    def __init__(self, url: str = None, key: str = None, transport: httpx.AsyncBaseTransport = None):
        self._url = (url or os.getenv("SUPABASE_URL", "")).rstrip("/")
        self._key = key or os.getenv("SUPABASE_KEY", "")
        self._transport = transport
        self._available = bool(self._url and self._key)

        if self._available:
            logger.info(f"[SupabaseREST] Configured for {self._url[:40]}...")
        else:
            logger.warning("[SupabaseREST] Missing SUPABASE_URL or SUPABASE_KEY")

    @property
    def is_available(self) -> bool:
        return self._available

    def table(self, name: str) -> TableQuery:
        return TableQuery(self._url, self._key, name, transport=self._transport)
