"""
Persistent store boundary for conversations and documents.

The core only needs four operations: insert, query, substring search and
delete. Two backends are provided: an in-process store used by default and
in tests, and a Supabase (PostgREST) store reached over HTTP.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

import aiohttp
from pydantic import BaseModel, Field

from openera_mcp.config import StoreSettings
from openera_mcp.errors import StoreError
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationEntry(BaseModel):
    """One persisted chat message."""

    model_config = {"extra": "ignore"}

    id: Optional[str] = None
    session_id: str
    agent_id: Optional[str] = None
    role: Literal["user", "assistant", "system"]
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class Document(BaseModel):
    """A retrieval document."""

    model_config = {"extra": "ignore"}

    id: Optional[str] = None
    title: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class ContextStore(ABC):
    """Table-oriented store used by the context retriever."""

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it as stored (with id and created_at)."""

    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return records matching all equality filters, ordered and bounded."""

    @abstractmethod
    async def substring_search(
        self,
        table: str,
        query: str,
        fields: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on any of ``fields``, newest first."""

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record by id. Returns whether anything was deleted."""

    async def close(self) -> None:
        """Release any held resources."""


class InMemoryContextStore(ContextStore):
    """Process-local store. Records are copied in and out."""

    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(record)
        if not stored.get("id"):
            stored["id"] = str(uuid.uuid4())
        if not stored.get("created_at"):
            stored["created_at"] = utc_now()
        async with self._lock:
            self._tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    def _ordered(
        self, rows: List[Dict[str, Any]], order_by: str, descending: bool
    ) -> List[Dict[str, Any]]:
        # Insertion order breaks ties between equal timestamps.
        indexed = list(enumerate(rows))
        indexed.sort(key=lambda pair: (pair[1].get(order_by) or "", pair[0]), reverse=descending)
        return [row for _, row in indexed]

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        async with self._lock:
            rows = list(self._tables.get(table, []))
        for key, value in (filters or {}).items():
            rows = [row for row in rows if row.get(key) == value]
        rows = self._ordered(rows, order_by, descending)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def substring_search(
        self,
        table: str,
        query: str,
        fields: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        needle = query.lower()
        async with self._lock:
            rows = list(self._tables.get(table, []))
        rows = [
            row
            for row in rows
            if any(needle in str(row.get(name) or "").lower() for name in fields)
        ]
        rows = self._ordered(rows, "created_at", True)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def delete(self, table: str, record_id: str) -> bool:
        async with self._lock:
            rows = self._tables.get(table, [])
            kept = [row for row in rows if row.get("id") != record_id]
            self._tables[table] = kept
            return len(kept) != len(rows)


def _quote_filter_value(value: str) -> str:
    # PostgREST reserves , ( ) inside or=(...) unless the value is double quoted.
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SupabaseContextStore(ContextStore):
    """
    Store backed by Supabase tables, spoken to through its PostgREST API.

    Args:
        url: Project URL, e.g. https://xyz.supabase.co
        api_key: Anon or service key, sent both as ``apikey`` and bearer token.
    """

    def __init__(self, url: str, api_key: str, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self._session = session
        self._owns_session = session is None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = self.headers
        if prefer:
            headers["Prefer"] = prefer
        try:
            async with self._get_session().request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json_body,
                headers=headers,
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise StoreError(
                        f"Supabase error on {table}: {response.status} - {error_text}"
                    )
                if response.status == 204:
                    return None
                return await response.json()
        except aiohttp.ClientError as e:
            raise StoreError(f"Supabase request to {table} failed: {e}") from e

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        body = {key: value for key, value in record.items() if value is not None}
        rows = await self._request("POST", table, json_body=[body], prefer="return=representation")
        if not rows:
            raise StoreError(f"Supabase returned no row for insert into {table}")
        return rows[0]

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "select": "*",
            "order": f"{order_by}.{'desc' if descending else 'asc'}",
        }
        if limit is not None:
            params["limit"] = str(limit)
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        return await self._request("GET", table, params=params) or []

    async def substring_search(
        self,
        table: str,
        query: str,
        fields: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        pattern = _quote_filter_value(f"*{query}*")
        params = {
            "select": "*",
            "order": "created_at.desc",
            "or": "(" + ",".join(f"{name}.ilike.{pattern}" for name in fields) + ")",
        }
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", table, params=params) or []

    async def delete(self, table: str, record_id: str) -> bool:
        rows = await self._request(
            "DELETE", table, params={"id": f"eq.{record_id}"}, prefer="return=representation"
        )
        return bool(rows)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


def create_store(settings: StoreSettings) -> ContextStore:
    """
    Build the store selected by ``settings.backend``.

    Raises:
        ValueError: For an unknown backend or a Supabase backend without credentials.
    """
    backend = settings.backend.lower()
    logger.debug(f"Creating context store - backend: {backend}")
    if backend == "memory":
        return InMemoryContextStore()
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("Supabase store requires SUPABASE_URL and SUPABASE_ANON_KEY")
        return SupabaseContextStore(settings.supabase_url, settings.supabase_key)
    raise ValueError(f"Unsupported store backend: {settings.backend}")
