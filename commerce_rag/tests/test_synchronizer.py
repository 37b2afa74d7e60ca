"""
Tests for snapshot templates and the Synchronizer.
"""

import pytest
from unittest.mock import AsyncMock


def _product(**overrides):
    from commerce_rag.common.schemas import ProductSyncInput
    values = dict(
        id="p-1",
        name="Cafeteira Premium",
        description="Cafeteira elétrica com moedor integrado.",
        category="Eletroportáteis",
        sale_price_cents=123456,
        weight_grams=2500,
        stock_quantity=8,
        is_active=True,
        updated_at="2024-05-04T10:00:00.000Z",
    )
    values.update(overrides)
    return ProductSyncInput(**values)


def _order_with_items():
    from commerce_rag.common.schemas import OrderItemSyncInput, OrderSyncInput
    items = [
        OrderItemSyncInput("i-1", "o-1", "p-1", "Cafeteira Premium", "Eletroportáteis", 1, 49990, 49990),
        OrderItemSyncInput("i-2", "o-1", "p-2", "Moedor Manual", "Acessórios", 2, 6495, 12990),
    ]
    order = OrderSyncInput(
        id="o-1",
        customer_id="u-1",
        status="PAID",
        total_amount_cents=62980,
        items_count=2,
        shipping_city="Campinas",
        shipping_state="SP",
        updated_at="2024-05-10T12:00:00.000Z",
        items=items,
    )
    return order, items


class TestTemplates:
    @pytest.mark.parametrize("cents,expected", [
        (0, "R$ 0,00"),
        (990, "R$ 9,90"),
        (123456, "R$ 1.234,56"),
        (100000000, "R$ 1.000.000,00"),
        (-1550, "R$ -15,50"),
    ])
    def test_format_currency(self, cents, expected):
        from commerce_rag.indexer.templates import format_currency
        assert format_currency(cents) == expected

    def test_product_snapshot(self):
        from commerce_rag.indexer.templates import render_product_markdown

        markdown = render_product_markdown(_product())

        assert markdown.splitlines() == [
            "# Produto",
            "- ID: p-1",
            "- Nome: Cafeteira Premium",
            "- Categoria: Eletroportáteis",
            "- Preço: R$ 1.234,56",
            "- Peso (g): 2500",
            "- Estoque disponível: 8",
            "- Ativo: sim",
            "## Descrição",
            "Cafeteira elétrica com moedor integrado.",
        ]

    def test_product_without_weight(self):
        from commerce_rag.indexer.templates import render_product_markdown

        markdown = render_product_markdown(_product(weight_grams=None, is_active=False))

        assert "- Peso (g): não informado" in markdown
        assert "- Ativo: não" in markdown

    def test_order_snapshot_lists_items(self):
        from commerce_rag.indexer.templates import render_order_markdown

        order, items = _order_with_items()
        lines = render_order_markdown(order, items).splitlines()

        assert lines[:7] == [
            "# Pedido",
            "- ID: o-1",
            "- Status: PAID",
            "- Itens: 2",
            "- Total: R$ 629,80",
            "- Entrega: Campinas/SP",
            "## Itens",
        ]
        assert lines[8] == (
            "- Moedor Manual | categoria: Acessórios | quantidade: 2 "
            "| preço unitário: R$ 64,95 | subtotal: R$ 129,90"
        )

    def test_metadata(self):
        from commerce_rag.indexer.templates import order_item_metadata, order_metadata, product_metadata

        assert product_metadata(_product()) == {
            "category": "Eletroportáteis",
            "sale_price": 1234.56,
            "weight": 2500,
            "updated_at": "2024-05-04T10:00:00.000Z",
            "is_active": True,
            "stock_quantity": 8,
        }
        order, items = _order_with_items()
        assert order_metadata(order)["total_amount"] == 629.8
        assert order_item_metadata(items[0]) == {
            "order_id": "o-1", "product_id": "p-1", "category": "Eletroportáteis", "quantity": 1,
        }

    def test_snippet_flattens_and_truncates(self):
        from commerce_rag.indexer.templates import create_snippet

        assert create_snippet("# A\n- b") == "# A - b"
        assert len(create_snippet("x" * 500)) == 240


class TestSynchronizer:
    @pytest.fixture
    def synchronizer(self, database):
        from commerce_rag.common.document_index import DocumentIndex
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider, EmbeddingService
        from commerce_rag.indexer.synchronizer import Synchronizer

        service = EmbeddingService(DeterministicEmbeddingProvider(dimension=8), retry_delay_ms=0)
        return Synchronizer(DocumentIndex(database), service)

    @pytest.mark.asyncio
    async def test_sync_product_indexes_snapshot(self, synchronizer):
        from commerce_rag.common.schemas import EntityType

        metrics = await synchronizer.sync_product(_product())
        stored = await synchronizer.index.get_document(EntityType.PRODUCT, "p-1")

        assert stored.content_markdown.startswith("# Produto")
        assert len(stored.embedding) == 8
        assert stored.source_updated_at == "2024-05-04T10:00:00.000Z"
        assert metrics.indexed_count == 1
        assert metrics.last_embedding_latency_ms is not None

    @pytest.mark.asyncio
    async def test_customer_snapshot_has_no_pii(self, seeded_database, synchronizer):
        from commerce_rag.common.schemas import BackfillFilter, CustomerSyncInput, EntityType
        from commerce_rag.indexer.source_repository import SourceRepository

        rows = await SourceRepository(seeded_database).load_batch(EntityType.CUSTOMER, BackfillFilter(), 10, 0)
        await synchronizer.sync_customer(CustomerSyncInput.from_row(rows[0]))
        stored = await synchronizer.index.get_raw_row(EntityType.CUSTOMER, "u-1")

        serialized = stored["content_markdown"] + stored["metadata_json"]
        assert "Ana Souza" not in serialized
        assert "123.456.789-00" not in serialized
        assert "ana@example.com" not in serialized
        assert "- Cidade: Campinas" in stored["content_markdown"]

    @pytest.mark.asyncio
    async def test_resync_is_byte_identical(self, synchronizer):
        from commerce_rag.common.schemas import EntityType

        await synchronizer.sync_product(_product())
        first = await synchronizer.index.get_raw_row(EntityType.PRODUCT, "p-1")
        await synchronizer.sync_product(_product())
        second = await synchronizer.index.get_raw_row(EntityType.PRODUCT, "p-1")

        assert first == second

    @pytest.mark.asyncio
    async def test_sync_participates_in_caller_transaction(self, database, synchronizer):
        from commerce_rag.common.schemas import EntityType

        with pytest.raises(RuntimeError):
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-1", "Cafeteira Premium", "Eletroportáteis", 123456),
                    conn=conn,
                )
                await synchronizer.sync_product(_product(), conn=conn)
                raise RuntimeError("payment rejected")

        assert await synchronizer.index.get_document(EntityType.PRODUCT, "p-1") is None
        assert await database.fetch_value("SELECT COUNT(*) FROM products") == 0

    @pytest.mark.asyncio
    async def test_rollback_spares_writes_made_while_embedding(self, database, synchronizer):
        import asyncio
        from commerce_rag.common.failure_ledger import FailureLedger
        from commerce_rag.common.schemas import EntityType

        ledger = FailureLedger(database)
        embedding_started = asyncio.Event()
        fast_provider = synchronizer.embedding.provider

        async def slow_embed(text):
            embedding_started.set()
            await asyncio.sleep(0.05)
            return await fast_provider.embed(text)

        synchronizer.embedding.provider = AsyncMock()
        synchronizer.embedding.provider.embed.side_effect = slow_embed

        async def cancel_order():
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-1", "Cafeteira Premium", "Eletroportáteis", 123456),
                    conn=conn,
                )
                await synchronizer.sync_product(_product(), conn=conn)
                raise RuntimeError("payment rejected")

        async def record_unrelated_failure():
            await embedding_started.wait()
            await ledger.upsert_failure(EntityType.ORDER, "o-9", "timeout", False)

        results = await asyncio.gather(cancel_order(), record_unrelated_failure(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert results[1] is None
        assert await synchronizer.index.get_document(EntityType.PRODUCT, "p-1") is None
        assert await ledger.get_failure(EntityType.ORDER, "o-9") is not None

    @pytest.mark.asyncio
    async def test_order_and_item_sync(self, synchronizer):
        from commerce_rag.common.schemas import EntityType

        order, items = _order_with_items()
        await synchronizer.sync_order(order)
        await synchronizer.sync_order_item(items[0])

        stored_order = await synchronizer.index.get_document(EntityType.ORDER, "o-1")
        stored_item = await synchronizer.index.get_document(EntityType.ORDER_ITEM, "i-1")
        assert "- Cafeteira Premium | categoria: Eletroportáteis" in stored_order.content_markdown
        assert stored_item.content_markdown.startswith("# Item de pedido")
        assert stored_item.source_updated_at is None

    @pytest.mark.asyncio
    async def test_delete_document(self, synchronizer):
        from commerce_rag.common.schemas import EntityType

        await synchronizer.sync_product(_product())
        metrics = await synchronizer.delete_document(EntityType.PRODUCT, "p-1")

        assert await synchronizer.index.get_document(EntityType.PRODUCT, "p-1") is None
        assert metrics.deleted_count == 1

    @pytest.mark.asyncio
    async def test_delete_failure_becomes_indexing_error(self, synchronizer):
        from commerce_rag.common.errors import IndexingError
        from commerce_rag.common.schemas import EntityType

        synchronizer.index.delete_document = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(IndexingError):
            await synchronizer.delete_document(EntityType.PRODUCT, "p-1")
        assert synchronizer.metrics.fail_count == 1

    @pytest.mark.asyncio
    async def test_embedding_exhaustion_surfaces_indexing_error(self, synchronizer):
        from commerce_rag.common.errors import IndexingError, TransientError

        synchronizer.embedding.provider = AsyncMock()
        synchronizer.embedding.provider.embed.side_effect = TransientError("down")

        with pytest.raises(IndexingError):
            await synchronizer.sync_product(_product())
        assert synchronizer.metrics.fail_count == 1

    @pytest.mark.asyncio
    async def test_index_failure_propagates_unchanged(self, synchronizer):
        synchronizer.index.upsert_document = AsyncMock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(RuntimeError, match="database is locked"):
            await synchronizer.sync_product(_product())

    @pytest.mark.asyncio
    async def test_success_and_failure_events_are_logged(self, synchronizer, caplog):
        import logging

        with caplog.at_level(logging.INFO, logger="commerce_rag.indexer.synchronizer"):
            await synchronizer.sync_product(_product())

        assert any('"event": "rag_index_success"' in record.message for record in caplog.records)


class TestSearch:
    @pytest.fixture
    def synchronizer(self, database):
        from commerce_rag.common.document_index import DocumentIndex
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider, EmbeddingService
        from commerce_rag.indexer.synchronizer import Synchronizer

        service = EmbeddingService(DeterministicEmbeddingProvider(dimension=8), retry_delay_ms=0)
        return Synchronizer(DocumentIndex(database), service)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", None])
    async def test_blank_query_rejected(self, synchronizer, query):
        from commerce_rag.common.errors import ValidationError

        with pytest.raises(ValidationError, match="Digite uma pergunta para pesquisar."):
            await synchronizer.search(query)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k", [0, 21, 2.5, "5", True])
    async def test_top_k_out_of_range(self, synchronizer, top_k):
        from commerce_rag.common.errors import ValidationError

        with pytest.raises(ValidationError, match="Informe um topK entre 1 e 20."):
            await synchronizer.search("cafeteira", top_k=top_k)

    @pytest.mark.asyncio
    async def test_results_are_ranked_and_shaped(self, synchronizer):
        order, _ = _order_with_items()
        await synchronizer.sync_product(_product())
        await synchronizer.sync_product(_product(id="p-2", name="Moedor Manual", category="Acessórios"))
        await synchronizer.sync_order(order)

        results = await synchronizer.search("Cafeteira Premium", top_k=2, entity_types=["product", "bogus"])

        assert len(results) == 2
        assert {result.entity_type for result in results} == {"product"}
        assert results[0].score >= results[1].score
        assert "\n" not in results[0].snippet
        assert len(results[0].snippet) <= 240
        assert results[0].score == round(results[0].score, 6)

    @pytest.mark.asyncio
    async def test_search_response_messages(self, synchronizer):
        empty = await synchronizer.search_response("cafeteira")
        assert empty == {"mensagem": "Nenhum resultado encontrado.", "resultados": []}

        await synchronizer.sync_product(_product())
        found = await synchronizer.search_response("cafeteira")
        assert found["mensagem"] == "Pesquisa RAG concluída com sucesso."
        assert found["resultados"][0]["entityId"] == "p-1"
        assert set(found["resultados"][0]) == {"entityType", "entityId", "score", "snippet", "metadata"}
