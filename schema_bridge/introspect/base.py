from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol, Sequence

import asyncpg
import duckdb

from schema_bridge.core.filter import EntityFilter
from schema_bridge.core.ir import InterimSchema

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
IntrospectStage = Literal["tables", "columns", "enums", "indexes", "policies", "checks", "fks", "views"]
IntrospectStatus = Literal["fetching", "done"]
ProgressCallback = Callable[[IntrospectStage, int, IntrospectStatus], None]
QueryCallback = Callable[[str, List[Row], Optional[BaseException]], None]


class Database(Protocol):
    async def query(self, sql: str) -> List[Row]: ...


class AsyncpgDatabase:
    """Adapts an asyncpg connection to the ``Database`` protocol."""

    def __init__(self, conn):
        self.conn = conn

    @classmethod
    async def connect(cls, dsn: str) -> "AsyncpgDatabase":
        return cls(await asyncpg.connect(dsn))

    async def query(self, sql: str) -> List[Row]:
        records = await self.conn.fetch(sql)
        return [dict(record) for record in records]

    async def close(self) -> None:
        await self.conn.close()


class DuckDBDatabase:
    """Adapts a duckdb connection; the blocking calls run in a worker thread."""

    def __init__(self, conn):
        self.conn = conn
        # a duckdb connection is not safe to share between threads
        self._lock = asyncio.Lock()

    @classmethod
    def connect(cls, path: str = ":memory:") -> "DuckDBDatabase":
        return cls(duckdb.connect(path))

    def _fetch(self, sql: str) -> List[Row]:
        cursor = self.conn.execute(sql)
        names = [d[0] for d in cursor.description or []]
        return [dict(zip(names, row)) for row in cursor.fetchall()]

    async def query(self, sql: str) -> List[Row]:
        async with self._lock:
            return await asyncio.to_thread(self._fetch, sql)

    async def close(self) -> None:
        self.conn.close()


def noop_progress(stage: str, count: int, status: str) -> None:
    return None


def noop_query(query_id: str, rows: List[Row], error: Optional[BaseException]) -> None:
    return None


class QueryRunner:
    """Runs catalog queries and reports each result (or failure) to the query callback."""

    def __init__(self, db: Database, query_callback: Optional[QueryCallback] = None):
        self.db = db
        self.query_callback = query_callback or noop_query

    async def run(self, query_id: str, sql: str) -> List[Row]:
        logger.debug("introspect query %s", query_id)
        try:
            rows = await self.db.query(sql)
        except Exception as exc:
            logger.error("introspect query %s failed: %s", query_id, exc)
            self.query_callback(query_id, [], exc)
            raise
        self.query_callback(query_id, rows, None)
        return rows


def id_predicate(column: str, ids: Sequence[Any]) -> str:
    """``column in (1,2)``, or ``false`` when there is nothing to match."""
    if not ids:
        return "false"
    return f"{column} in ({','.join(str(i) for i in ids)})"


class Introspector(ABC):
    dialect: str

    @abstractmethod
    async def from_database(
        self,
        db: Database,
        database_name: Optional[str],
        entity_filter: EntityFilter,
        progress_callback: Optional[ProgressCallback] = None,
        query_callback: Optional[QueryCallback] = None,
    ) -> InterimSchema:  # pragma: no cover - interface
        """Read the live catalog into an InterimSchema."""
