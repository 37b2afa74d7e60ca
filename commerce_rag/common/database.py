"""
SQLite store shared by the relational mirror, the document index and the failure ledger.

Callers that need the index write to commit or roll back together with a
business write open `async with transaction()` and pass the yielded connection down.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

logger = logging.getLogger("commerce_rag.common.database")

Params = Union[Sequence[Any], Dict[str, Any]]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    email TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'CUSTOMER',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS customers_profile (
    user_id TEXT PRIMARY KEY REFERENCES users(id),
    full_name TEXT NOT NULL,
    cpf TEXT NOT NULL,
    city TEXT NOT NULL,
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL,
    price_cents INTEGER NOT NULL,
    weight_grams INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS inventory (
    product_id TEXT PRIMARY KEY REFERENCES products(id),
    quantity INTEGER NOT NULL DEFAULT 0,
    reserved_quantity INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    customer_id TEXT NOT NULL,
    status TEXT NOT NULL,
    total_amount_cents INTEGER NOT NULL,
    items_count INTEGER NOT NULL,
    shipping_city TEXT NOT NULL DEFAULT '',
    shipping_state TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS order_items (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders(id),
    product_id TEXT NOT NULL,
    product_name TEXT NOT NULL,
    product_category TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    unit_price_cents INTEGER NOT NULL,
    line_total_cents INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);

CREATE TABLE IF NOT EXISTS rag_documents (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    content_markdown TEXT NOT NULL,
    embedding TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    source_updated_at TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (entity_type, entity_id)
);

CREATE TABLE IF NOT EXISTS rag_backfill_failures (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    failure_count INTEGER NOT NULL DEFAULT 1,
    last_error TEXT NOT NULL,
    is_permanent INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (entity_type, entity_id)
);
"""


class Database:
    """
    Thin sqlite3 wrapper.

    The connection runs in autocommit mode; transactions are explicit via
    transaction(). Statements run in a worker thread so the event loop keeps
    serving other tasks. An open transaction belongs to the task that opened
    it: statements from any other task wait until it commits or rolls back.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        target = self.path
        if target != ":memory:":
            resolved = Path(target).expanduser()
            resolved.parent.mkdir(parents=True, exist_ok=True)
            target = str(resolved)
        self._connection = sqlite3.connect(
            target,
            check_same_thread=False,
            isolation_level=None,  # autocommit mode, we manage transactions explicitly
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def init_schema(self) -> None:
        self._connection.executescript(SCHEMA)
        logger.debug(f"Schema ready at {self.path}")

    def close(self) -> None:
        self._connection.close()

    def _owns_transaction(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[sqlite3.Connection]:
        """Context manager for database transactions"""
        if self._owns_transaction():
            # Already inside this task's transaction
            yield self._connection
            return
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                await asyncio.to_thread(self._connection.execute, "BEGIN")
                try:
                    yield self._connection
                    await asyncio.to_thread(self._connection.execute, "COMMIT")
                except BaseException:
                    await asyncio.to_thread(self._connection.execute, "ROLLBACK")
                    raise
            finally:
                self._owner = None

    async def _run(self, statement: Callable[[sqlite3.Connection], Any], conn: Optional[sqlite3.Connection]) -> Any:
        if self._owns_transaction():
            return await asyncio.to_thread(statement, conn or self._connection)
        async with self._lock:
            return await asyncio.to_thread(statement, self._connection)

    async def execute(self, sql: str, params: Params = (), conn: Optional[sqlite3.Connection] = None) -> int:
        """Run a write statement, returning the affected row count"""
        return await self._run(lambda c: c.execute(sql, params).rowcount, conn)

    async def fetch_all(self, sql: str, params: Params = (), conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        rows = await self._run(lambda c: c.execute(sql, params).fetchall(), conn)
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, params: Params = (), conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
        row = await self._run(lambda c: c.execute(sql, params).fetchone(), conn)
        return dict(row) if row is not None else None

    async def fetch_value(self, sql: str, params: Params = (), conn: Optional[sqlite3.Connection] = None) -> Any:
        row = await self._run(lambda c: c.execute(sql, params).fetchone(), conn)
        return row[0] if row is not None else None


def utc_now_iso() -> str:
    """UTC timestamp in the same format as the schema defaults"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
