"""
Failure Ledger

Dead-letter store for entities that failed reindexing.

Persisted in the rag_backfill_failures table. The permanence flag is sticky:
once an entry is marked permanent, later transient failures keep it permanent.
"""

import logging
from typing import List, Optional

from .database import Database, utc_now_iso
from .schemas import EntityType, FailureRecord

logger = logging.getLogger("commerce_rag.common.failure_ledger")

DEFAULT_LIST_LIMIT = 200
MAX_LIST_LIMIT = 1000


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a list limit to [1, 1000], defaulting to 200"""
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return min(max(int(limit), 1), MAX_LIST_LIMIT)


class FailureLedger:
    """List/upsert/delete access to FailureRecords"""

    def __init__(self, database: Database):
        self.db = database

    async def upsert_failure(
        self,
        entity_type: EntityType,
        entity_id: str,
        error_message: str,
        is_permanent: bool,
    ) -> None:
        now = utc_now_iso()
        await self.db.execute(
            """
            INSERT INTO rag_backfill_failures (
                entity_type, entity_id, failure_count, last_error,
                is_permanent, last_attempt_at, updated_at
            )
            VALUES (?, ?, 1, ?, ?, ?, ?)
            ON CONFLICT (entity_type, entity_id)
            DO UPDATE SET
                failure_count = rag_backfill_failures.failure_count + 1,
                last_error = excluded.last_error,
                is_permanent = MAX(rag_backfill_failures.is_permanent, excluded.is_permanent),
                last_attempt_at = excluded.last_attempt_at,
                updated_at = excluded.updated_at
            """,
            (entity_type.value, entity_id, error_message, int(bool(is_permanent)), now, now),
        )

    async def list_failures(
        self,
        entity_type: Optional[EntityType] = None,
        include_permanent: bool = False,
        limit: Optional[int] = None,
    ) -> List[FailureRecord]:
        """Most recently updated first"""
        rows = await self.db.fetch_all(
            """
            SELECT entity_type, entity_id, failure_count, last_error, is_permanent, last_attempt_at
            FROM rag_backfill_failures
            WHERE (? IS NULL OR entity_type = ?)
              AND (? = 1 OR is_permanent = 0)
            ORDER BY updated_at DESC, rowid DESC
            LIMIT ?
            """,
            (
                entity_type.value if entity_type else None,
                entity_type.value if entity_type else None,
                int(bool(include_permanent)),
                clamp_limit(limit),
            ),
        )
        return [self._row_to_record(row) for row in rows]

    async def get_failure(self, entity_type: EntityType, entity_id: str) -> Optional[FailureRecord]:
        row = await self.db.fetch_one(
            """
            SELECT entity_type, entity_id, failure_count, last_error, is_permanent, last_attempt_at
            FROM rag_backfill_failures
            WHERE entity_type = ? AND entity_id = ?
            """,
            (entity_type.value, entity_id),
        )
        return self._row_to_record(row) if row else None

    async def delete_failure(self, entity_type: EntityType, entity_id: str) -> None:
        await self.db.execute(
            "DELETE FROM rag_backfill_failures WHERE entity_type = ? AND entity_id = ?",
            (entity_type.value, entity_id),
        )

    @staticmethod
    def _row_to_record(row) -> FailureRecord:
        return FailureRecord(
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            failure_count=int(row["failure_count"]),
            last_error=row["last_error"],
            is_permanent=bool(row["is_permanent"]),
            last_attempt_at=row["last_attempt_at"],
        )
