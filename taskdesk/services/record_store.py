"""Record repository: the generic table/id store the task engine reads and writes.

Rows are plain dicts carrying their record id under ``"id"``. The store
gives per-record atomic field updates and nothing more; the optional
``expected`` argument of ``update`` is the conditional-write hook the claim
guard uses when an implementation supports it.
"""

import asyncio
import copy
import json
from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol, Sequence

from supabase import Client
from ulid import ULID

from taskdesk.services.supabase_client import SupabaseClient
from taskdesk.utils.errors import DependencyUnavailable, SupabaseError
from taskdesk.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

FilterOp = Literal["eq", "neq", "in", "contains"]


@dataclass(frozen=True)
class Filter:
    field: str
    op: FilterOp
    value: Any


# (field, "asc" | "desc")
Sort = Sequence[tuple[str, str]]


class RecordRepository(Protocol):
    supports_conditional_update: bool

    async def find(self, table: str, record_id: str) -> Optional[dict]: ...

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        sort: Optional[Sort] = None,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> tuple[list[dict], Optional[str]]: ...

    async def update(
        self,
        table: str,
        record_id: str,
        fields: dict,
        expected: Optional[dict] = None,
    ) -> Optional[dict]: ...

    async def create(self, table: str, fields: dict) -> dict: ...

    async def delete(self, table: str, record_id: str) -> None: ...


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == ()


def _values_match(stored: Any, expected: Any) -> bool:
    if _is_empty(stored) and _is_empty(expected):
        return True
    return stored == expected


def _filter_matches(row: dict, f: Filter) -> bool:
    stored = row.get(f.field)
    if f.op == "contains":
        wanted = f.value if isinstance(f.value, list) else [f.value]
        have = stored if isinstance(stored, list) else [stored]
        return all(w in have for w in wanted)
    if f.op == "in":
        candidates = list(f.value)
        if isinstance(stored, list):
            return any(s in candidates for s in stored)
        return stored in candidates

    if isinstance(stored, list) and not isinstance(f.value, list):
        hit = f.value in stored
    else:
        hit = _values_match(stored, f.value)
    return hit if f.op == "eq" else not hit


class InMemoryRecordRepository:
    """Process-local store for tests and local runs.

    ``latency`` is awaited at the start of every call so that concurrent
    callers interleave the way they would against a remote store.
    """

    supports_conditional_update = True

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.tables: dict[str, dict[str, dict]] = {}

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    def seed(self, table: str, rows: list[dict]) -> None:
        """Insert rows verbatim (ids included)."""
        store = self.tables.setdefault(table, {})
        for row in rows:
            store[str(row["id"])] = copy.deepcopy(row)

    async def find(self, table: str, record_id: str) -> Optional[dict]:
        await self._pause()
        row = self.tables.get(table, {}).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def query(self, table, filters=(), sort=None, page_size=None, cursor=None):
        await self._pause()
        rows = [r for r in self.tables.get(table, {}).values()
                if all(_filter_matches(r, f) for f in filters)]

        for field, direction in reversed(list(sort or [])):
            present = [r for r in rows if r.get(field) is not None]
            missing = [r for r in rows if r.get(field) is None]
            present.sort(key=lambda r: r[field], reverse=direction == "desc")
            rows = present + missing

        offset = int(cursor) if cursor else 0
        if page_size is None:
            return copy.deepcopy(rows[offset:]), None
        page = rows[offset:offset + page_size]
        next_cursor = str(offset + page_size) if len(rows) > offset + page_size else None
        return copy.deepcopy(page), next_cursor

    async def update(self, table, record_id, fields, expected=None):
        await self._pause()
        row = self.tables.get(table, {}).get(record_id)
        if row is None:
            return None
        # check and write without yielding: this is the atomic step
        for col, value in (expected or {}).items():
            if not _values_match(row.get(col), value):
                return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def create(self, table, fields):
        await self._pause()
        record_id = f"rec{ULID()}"
        row = {"id": record_id, **copy.deepcopy(fields)}
        self.tables.setdefault(table, {})[record_id] = row
        return copy.deepcopy(row)

    async def delete(self, table, record_id):
        await self._pause()
        self.tables.get(table, {}).pop(record_id, None)


class SupabaseRecordRepository:
    """Record repository backed by Supabase tables keyed on an ``id`` column.

    The client is synchronous, so each call runs in a worker thread.
    """

    supports_conditional_update = True

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    async def _run(self, action: str, fn):
        async with SupabaseClient(self._client) as client:
            try:
                return await asyncio.to_thread(fn, client)
            except SupabaseError:
                raise
            except Exception as e:
                raise SupabaseError(f"Failed to {action}: {e}")

    async def find(self, table: str, record_id: str) -> Optional[dict]:
        def run(client: Client):
            result = client.table(table).select("*").eq("id", record_id).limit(1).execute()
            return result.data[0] if result.data else None
        return await self._run(f"find {table} record", run)

    async def query(self, table, filters=(), sort=None, page_size=None, cursor=None):
        offset = int(cursor) if cursor else 0

        def run(client: Client):
            q = client.table(table).select("*")
            for f in filters:
                if f.op == "eq":
                    q = q.eq(f.field, f.value)
                elif f.op == "neq":
                    q = q.neq(f.field, f.value)
                elif f.op == "in":
                    q = q.in_(f.field, list(f.value))
                elif f.op == "contains":
                    q = q.contains(f.field, f.value if isinstance(f.value, list) else [f.value])
            for field, direction in sort or []:
                q = q.order(field, desc=direction == "desc")
            if page_size is not None:
                # one extra row tells us whether another page exists
                q = q.range(offset, offset + page_size)
            return q.execute().data or []

        rows = await self._run(f"query {table}", run)
        if page_size is not None and len(rows) > page_size:
            return rows[:page_size], str(offset + page_size)
        return rows, None

    async def update(self, table, record_id, fields, expected=None):
        def run(client: Client):
            q = client.table(table).update(fields).eq("id", record_id)
            for col, value in (expected or {}).items():
                if _is_empty(value):
                    # an unset link column may be stored as null or as an empty list
                    q = q.or_(f"{col}.is.null,{col}.eq.[]")
                elif isinstance(value, list):
                    q = q.filter(col, "eq", json.dumps(value))
                else:
                    q = q.eq(col, value)
            result = q.execute()
            return result.data[0] if result.data else None
        return await self._run(f"update {table} record {record_id}", run)

    async def create(self, table, fields):
        def run(client: Client):
            result = client.table(table).insert(fields).execute()
            if result.data:
                return result.data[0]
            raise SupabaseError(f"Failed to create {table} record: no data returned")
        return await self._run(f"create {table} record", run)

    async def delete(self, table, record_id):
        def run(client: Client):
            client.table(table).delete().eq("id", record_id).execute()
        await self._run(f"delete {table} record {record_id}", run)


class TimeoutRecordRepository:
    """Wraps a repository so every call is bounded by ``timeout`` seconds."""

    def __init__(self, inner: RecordRepository, timeout: float = 10.0):
        self.inner = inner
        self.timeout = timeout

    @property
    def supports_conditional_update(self) -> bool:
        return getattr(self.inner, "supports_conditional_update", False)

    async def _bounded(self, action: str, table: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Record store call timed out",
                action=action,
                table=table,
                timeout_seconds=self.timeout
            )
            raise DependencyUnavailable(f"Record store {action} on {table} timed out after {self.timeout}s")

    async def find(self, table, record_id):
        return await self._bounded("find", table, self.inner.find(table, record_id))

    async def query(self, table, filters=(), sort=None, page_size=None, cursor=None):
        return await self._bounded(
            "query", table, self.inner.query(table, filters, sort=sort, page_size=page_size, cursor=cursor)
        )

    async def update(self, table, record_id, fields, expected=None):
        return await self._bounded("update", table, self.inner.update(table, record_id, fields, expected=expected))

    async def create(self, table, fields):
        return await self._bounded("create", table, self.inner.create(table, fields))

    async def delete(self, table, record_id):
        return await self._bounded("delete", table, self.inner.delete(table, record_id))
