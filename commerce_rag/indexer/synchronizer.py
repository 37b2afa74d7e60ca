"""
Synchronizer

Keeps the document index consistent with relational state and answers
semantic queries.

Pipeline per entity:
1. Render the pt-BR markdown snapshot (non-sensitive fields only)
2. Compute metadata
3. Embed the snapshot (with retries)
4. Upsert the CanonicalDocument, optionally inside the caller's transaction
"""

import logging
import sqlite3
import time
from typing import Any, Dict, List, Optional

from ..common.document_index import DocumentIndex
from ..common.embedding_service import EmbeddingService
from ..common.errors import IndexingError, RagError, ValidationError
from ..common.events import SyncMetrics, log_event
from ..common.schemas import (
    CanonicalDocument,
    CustomerSyncInput,
    EntityType,
    ManagerSyncInput,
    OrderItemSyncInput,
    OrderSyncInput,
    ProductSyncInput,
    SearchResult,
    normalize_entity_types,
)
from .templates import (
    create_snippet,
    customer_metadata,
    manager_metadata,
    order_item_metadata,
    order_metadata,
    product_metadata,
    render_customer_markdown,
    render_manager_markdown,
    render_order_item_markdown,
    render_order_markdown,
    render_product_markdown,
)

logger = logging.getLogger("commerce_rag.indexer.synchronizer")

DEFAULT_TOP_K = 5
MIN_TOP_K = 1
MAX_TOP_K = 20

SEARCH_SUCCESS_MESSAGE = "Pesquisa RAG concluída com sucesso."
SEARCH_EMPTY_MESSAGE = "Nenhum resultado encontrado."


def validate_top_k(top_k: Any, default: int = DEFAULT_TOP_K) -> int:
    """topK must be an integer in [1, 20]; None means the default"""
    if top_k is None:
        return default
    if isinstance(top_k, bool) or not isinstance(top_k, (int, float)) or int(top_k) != top_k:
        raise ValidationError(f"Informe um topK entre {MIN_TOP_K} e {MAX_TOP_K}.")
    if not MIN_TOP_K <= int(top_k) <= MAX_TOP_K:
        raise ValidationError(f"Informe um topK entre {MIN_TOP_K} e {MAX_TOP_K}.")
    return int(top_k)


class Synchronizer:
    """
    Mirrors relational entities into the DocumentIndex.

    Every sync_* method accepts an optional sqlite connection. When given,
    the index write runs on it and commits or rolls back with the caller's
    business write; otherwise it runs standalone.
    """

    def __init__(
        self,
        document_index: DocumentIndex,
        embedding_service: EmbeddingService,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.index = document_index
        self.embedding = embedding_service
        self.metrics = metrics or SyncMetrics()

    async def upsert_document(
        self,
        entity_type: EntityType,
        entity_id: str,
        markdown: str,
        metadata: Dict[str, Any],
        source_updated_at: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> SyncMetrics:
        """
        Embed a snapshot and upsert it into the index.

        Embedding exhaustion surfaces as IndexingError; index-store failures
        propagate unchanged.

        Returns:
            The metrics value after this call
        """
        started = time.perf_counter()
        try:
            embedding, latency_ms = await self.embedding.embed_timed(markdown)
            await self.index.upsert_document(
                CanonicalDocument(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    content_markdown=markdown,
                    embedding=embedding,
                    metadata=metadata,
                    source_updated_at=source_updated_at,
                ),
                conn=conn,
            )
        except Exception as e:
            self.metrics.record_failure()
            log_event(
                logger, logging.ERROR, "rag_index_failure",
                entityType=entity_type.value,
                entityId=entity_id,
                durationMs=_elapsed_ms(started),
                failCount=self.metrics.fail_count,
                error=str(e),
            )
            raise

        self.metrics.record_success(latency_ms)
        log_event(
            logger, logging.INFO, "rag_index_success",
            entityType=entity_type.value,
            entityId=entity_id,
            durationMs=_elapsed_ms(started),
            embeddingLatencyMs=latency_ms,
            indexedCount=self.metrics.indexed_count,
        )
        return self.metrics

    async def delete_document(
        self,
        entity_type: EntityType,
        entity_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> SyncMetrics:
        """Remove the document of a deactivated or removed entity"""
        try:
            await self.index.delete_document(entity_type, entity_id, conn=conn)
        except Exception as e:
            self.metrics.record_failure()
            log_event(
                logger, logging.ERROR, "rag_delete_failure",
                entityType=entity_type.value,
                entityId=entity_id,
                failCount=self.metrics.fail_count,
                error=str(e),
            )
            if isinstance(e, RagError):
                raise
            raise IndexingError("Não foi possível remover o índice vetorial.") from e

        self.metrics.deleted_count += 1
        log_event(logger, logging.INFO, "rag_delete_success", entityType=entity_type.value, entityId=entity_id)
        return self.metrics

    # ---------- Entity sync ---------- #

    async def sync_product(self, product: ProductSyncInput, conn: Optional[sqlite3.Connection] = None) -> SyncMetrics:
        return await self.upsert_document(
            EntityType.PRODUCT,
            product.id,
            render_product_markdown(product),
            product_metadata(product),
            product.updated_at,
            conn=conn,
        )

    async def sync_customer(self, customer: CustomerSyncInput, conn: Optional[sqlite3.Connection] = None) -> SyncMetrics:
        return await self.upsert_document(
            EntityType.CUSTOMER,
            customer.user_id,
            render_customer_markdown(customer),
            customer_metadata(customer),
            customer.updated_at,
            conn=conn,
        )

    async def sync_manager(self, manager: ManagerSyncInput, conn: Optional[sqlite3.Connection] = None) -> SyncMetrics:
        return await self.upsert_document(
            EntityType.MANAGER,
            manager.id,
            render_manager_markdown(manager),
            manager_metadata(manager),
            manager.updated_at,
            conn=conn,
        )

    async def sync_order(
        self,
        order: OrderSyncInput,
        items: Optional[List[OrderItemSyncInput]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> SyncMetrics:
        line_items = order.items if items is None else items
        return await self.upsert_document(
            EntityType.ORDER,
            order.id,
            render_order_markdown(order, line_items),
            order_metadata(order),
            order.updated_at,
            conn=conn,
        )

    async def sync_order_item(self, item: OrderItemSyncInput, conn: Optional[sqlite3.Connection] = None) -> SyncMetrics:
        return await self.upsert_document(
            EntityType.ORDER_ITEM,
            item.id,
            render_order_item_markdown(item),
            order_item_metadata(item),
            None,
            conn=conn,
        )

    # ---------- Search ---------- #

    async def search(
        self,
        query: Optional[str],
        top_k: Any = None,
        entity_types: Optional[List[Any]] = None,
    ) -> List[SearchResult]:
        """
        Semantic search over indexed snapshots.

        Args:
            query: Free text; blank is rejected
            top_k: Integer in [1, 20], default 5
            entity_types: Optional filter; unknown values are dropped

        Returns:
            Results ordered by descending cosine similarity
        """
        normalized_query = (query or "").strip()
        if not normalized_query:
            raise ValidationError("Digite uma pergunta para pesquisar.")

        limit = validate_top_k(top_k)
        types = normalize_entity_types(entity_types)
        embedding = await self.embedding.embed_single(normalized_query)
        hits = await self.index.search_documents(embedding, limit, types)

        return [
            SearchResult(
                entity_type=hit.entity_type.value,
                entity_id=hit.entity_id,
                score=round(hit.score, 6),
                snippet=create_snippet(hit.content_markdown),
                metadata=hit.metadata,
            )
            for hit in hits
        ]

    async def search_response(
        self,
        query: Optional[str],
        top_k: Any = None,
        entity_types: Optional[List[Any]] = None,
    ) -> Dict[str, Any]:
        """Search wrapped in the pt-BR response shape of the admin surface"""
        results = await self.search(query, top_k, entity_types)
        return {
            "mensagem": SEARCH_SUCCESS_MESSAGE if results else SEARCH_EMPTY_MESSAGE,
            "resultados": [result.to_dict() for result in results],
        }


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
