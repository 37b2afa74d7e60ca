"""
Backfill Engine

Bulk reconciliation of the document index against relational state.

Per entity type:
1. Count rows matching the filter
2. Dry run or zero rows: record the count only
3. Otherwise page through batches (offset pagination, one batch at a time)
4. Sync each item with bounded retries (attempt * 125ms backoff)
5. Record failures in the ledger; permanent failures stop retrying early

After the run, a failure rate at or above the threshold emits an alert event.
Per-item failures never abort the run; count/load/ledger failures do.
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..common.config import BackfillConfig
from ..common.database import utc_now_iso
from ..common.errors import NotFoundError, error_message, is_permanent_failure
from ..common.events import log_event
from ..common.failure_ledger import FailureLedger, clamp_limit
from ..common.schemas import (
    BackfillFilter,
    BackfillInput,
    BackfillReport,
    CustomerSyncInput,
    EntityType,
    ManagerSyncInput,
    OrderItemSyncInput,
    OrderSyncInput,
    ProductSyncInput,
    ReprocessInput,
    ReprocessReport,
)
from .source_repository import SourceRepository, entity_id_of
from .synchronizer import Synchronizer

logger = logging.getLogger("commerce_rag.indexer.backfill")

NOT_FOUND_MESSAGE = "Entidade não encontrada."
FAILURE_ALERT_MESSAGE = "Taxa de falhas acima do limite configurado."


class BackfillEngine:
    """
    Runs backfills and reprocesses dead-lettered entities.

    Batches are processed strictly sequentially; offset pagination and
    failure accounting assume it.
    """

    def __init__(
        self,
        source: SourceRepository,
        ledger: FailureLedger,
        synchronizer: Synchronizer,
        config: Optional[BackfillConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.ledger = ledger
        self.synchronizer = synchronizer
        self.config = config or BackfillConfig()
        self._sleep = sleep

    def default_input(self, **overrides: Any) -> BackfillInput:
        """BackfillInput populated from configuration"""
        values = {
            "batch_size": self.config.batch_size,
            "max_item_attempts": self.config.max_item_attempts,
            "failure_alert_threshold": self.config.failure_alert_threshold,
        }
        values.update(overrides)
        return BackfillInput(**values)

    async def run_backfill(self, backfill: BackfillInput) -> BackfillReport:
        started = time.perf_counter()
        report = BackfillReport(dry_run=backfill.dry_run, started_at=utc_now_iso())

        for entity_type in backfill.entity_types:
            await self._process_entity_type(entity_type, backfill, report)

        report.finished_at = utc_now_iso()
        report.elapsed_ms = int((time.perf_counter() - started) * 1000)

        self._check_failure_rate(report, backfill.failure_alert_threshold)

        logger.info(
            f"Backfill finished (dry_run={report.dry_run}, total={report.total}, "
            f"success={report.success}, failures={report.failures}, elapsed_ms={report.elapsed_ms})"
        )
        return report

    async def _process_entity_type(
        self,
        entity_type: EntityType,
        backfill: BackfillInput,
        report: BackfillReport,
    ) -> None:
        stats = report.per_entity[entity_type]
        total = await self.source.count(entity_type, backfill.filter)
        stats.total = total
        report.total += total

        if backfill.dry_run or total == 0:
            return

        batch_size = max(1, backfill.batch_size)
        offset = 0
        while offset < total:
            batch = await self.source.load_batch(entity_type, backfill.filter, batch_size, offset)
            if not batch:
                break

            items = await self._build_sync_items(entity_type, batch)
            for entity_id, sync_input in items:
                ok = await self._sync_with_retry(entity_type, entity_id, sync_input, backfill.max_item_attempts)
                if ok:
                    stats.success += 1
                    report.success += 1
                else:
                    stats.failures += 1
                    report.failures += 1

            offset += len(batch)

    async def _build_sync_items(self, entity_type: EntityType, batch: List[Dict[str, Any]]) -> List[tuple]:
        """(entity_id, sync input) pairs; orders get their items in one query"""
        if entity_type != EntityType.ORDER:
            return [(entity_id_of(entity_type, row), to_sync_input(entity_type, row)) for row in batch]

        order_ids = [str(row["id"]) for row in batch]
        items_by_order: Dict[str, List[OrderItemSyncInput]] = defaultdict(list)
        for item_row in await self.source.list_order_items_for_orders(order_ids):
            items_by_order[str(item_row["order_id"])].append(OrderItemSyncInput.from_row(item_row))

        return [
            (str(row["id"]), OrderSyncInput.from_row(row, items_by_order.get(str(row["id"]), [])))
            for row in batch
        ]

    async def _sync_with_retry(self, entity_type: EntityType, entity_id: str, sync_input: Any, max_attempts: int) -> bool:
        """True on success; on final failure the ledger entry is upserted"""
        try:
            await self._attempt_sync(entity_type, sync_input, max_attempts)
            return True
        except Exception as e:
            await self._record_failure(entity_type, entity_id, e)
            return False

    async def _attempt_sync(self, entity_type: EntityType, sync_input: Any, max_attempts: int) -> None:
        attempts = max(1, max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                await self._sync(entity_type, sync_input)
                return
            except Exception as e:
                if attempt >= attempts or is_permanent_failure(e):
                    raise
                await self._sleep(attempt * self.config.item_retry_delay_ms / 1000)

    async def _sync(self, entity_type: EntityType, sync_input: Any) -> None:
        if entity_type == EntityType.PRODUCT:
            await self.synchronizer.sync_product(sync_input)
        elif entity_type == EntityType.CUSTOMER:
            await self.synchronizer.sync_customer(sync_input)
        elif entity_type == EntityType.MANAGER:
            await self.synchronizer.sync_manager(sync_input)
        elif entity_type == EntityType.ORDER:
            await self.synchronizer.sync_order(sync_input, sync_input.items)
        elif entity_type == EntityType.ORDER_ITEM:
            await self.synchronizer.sync_order_item(sync_input)
        else:
            raise ValueError(f"Unsupported entity type: {entity_type}")

    async def _record_failure(self, entity_type: EntityType, entity_id: str, error: BaseException) -> None:
        permanent = is_permanent_failure(error)
        message = error_message(error)
        log_event(
            logger, logging.WARNING, "rag_backfill_item_failure",
            entityType=entity_type.value,
            entityId=entity_id,
            isPermanent=permanent,
            error=message,
        )
        await self.ledger.upsert_failure(entity_type, entity_id, message, permanent)

    def _check_failure_rate(self, report: BackfillReport, threshold: float) -> None:
        if report.total <= 0:
            return
        rate = report.failure_rate
        if rate >= threshold:
            log_event(
                logger, logging.WARNING, "rag_backfill_alerta",
                mensagem=FAILURE_ALERT_MESSAGE,
                taxaFalhas=round(rate, 4),
                limite=threshold,
            )

    # ---------- Reprocessing ---------- #

    async def reprocess_failures(self, reprocess: ReprocessInput) -> ReprocessReport:
        """
        Retry dead-lettered entities.

        A ledger entry is deleted only when its retry succeeds; a missing
        source row is recorded as a not-found failure.
        """
        failures = await self.ledger.list_failures(
            entity_type=reprocess.entity_type,
            include_permanent=reprocess.include_permanent,
            limit=clamp_limit(reprocess.limit),
        )
        report = ReprocessReport(total=len(failures))

        for failure in failures:
            entity_type, entity_id = failure.entity_type, failure.entity_id
            rows = await self.source.load_batch(entity_type, BackfillFilter(entity_id=entity_id), 1, 0)
            if not rows:
                await self._record_failure(entity_type, entity_id, NotFoundError(NOT_FOUND_MESSAGE))
                report.failures += 1
                continue

            items = await self._build_sync_items(entity_type, rows)
            _, sync_input = items[0]
            try:
                await self._attempt_sync(entity_type, sync_input, reprocess.max_item_attempts)
            except Exception as e:
                await self._record_failure(entity_type, entity_id, e)
                report.failures += 1
                continue

            await self.ledger.delete_failure(entity_type, entity_id)
            report.success += 1

        logger.info(
            f"Reprocess finished (total={report.total}, success={report.success}, failures={report.failures})"
        )
        return report


def to_sync_input(entity_type: EntityType, row: Dict[str, Any]) -> Any:
    """Source row to the typed sync input of its entity type"""
    if entity_type == EntityType.PRODUCT:
        return ProductSyncInput.from_row(row)
    if entity_type == EntityType.CUSTOMER:
        return CustomerSyncInput.from_row(row)
    if entity_type == EntityType.MANAGER:
        return ManagerSyncInput.from_row(row)
    if entity_type == EntityType.ORDER:
        return OrderSyncInput.from_row(row)
    if entity_type == EntityType.ORDER_ITEM:
        return OrderItemSyncInput.from_row(row)
    raise ValueError(f"Unsupported entity type: {entity_type}")
