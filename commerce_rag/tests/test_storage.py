"""
Tests for the sqlite store: transactions, document index, failure ledger
and source row listing.
"""

import pytest


def _document(entity_id="p-1", content="# Produto", embedding=None, metadata=None, source_updated_at=None):
    from commerce_rag.common.schemas import CanonicalDocument, EntityType
    return CanonicalDocument(
        entity_type=EntityType.PRODUCT,
        entity_id=entity_id,
        content_markdown=content,
        embedding=embedding or [1.0, 0.0],
        metadata=metadata or {"category": "Acessórios"},
        source_updated_at=source_updated_at,
    )


class TestDatabase:
    @pytest.mark.asyncio
    async def test_transaction_commits(self, database):
        async with database.transaction() as conn:
            await database.execute(
                "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                ("p-9", "Filtro", "Acessórios", 990),
                conn=conn,
            )

        assert await database.fetch_value("SELECT COUNT(*) FROM products") == 1

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, database):
        with pytest.raises(RuntimeError):
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-9", "Filtro", "Acessórios", 990),
                    conn=conn,
                )
                raise RuntimeError("business rule failed")

        assert await database.fetch_value("SELECT COUNT(*) FROM products") == 0

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, database):
        with pytest.raises(RuntimeError):
            async with database.transaction():
                async with database.transaction() as inner:
                    await database.execute(
                        "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                        ("p-9", "Filtro", "Acessórios", 990),
                        conn=inner,
                    )
                raise RuntimeError("outer failed")

        assert await database.fetch_value("SELECT COUNT(*) FROM products") == 0

    @pytest.mark.asyncio
    async def test_other_task_write_survives_rollback(self, database):
        import asyncio
        from commerce_rag.common.failure_ledger import FailureLedger
        from commerce_rag.common.schemas import EntityType

        ledger = FailureLedger(database)
        inside = asyncio.Event()

        async def business_update():
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-9", "Filtro", "Acessórios", 990),
                    conn=conn,
                )
                inside.set()
                await asyncio.sleep(0.05)
                raise RuntimeError("payment rejected")

        async def record_failure():
            await inside.wait()
            await ledger.upsert_failure(EntityType.ORDER, "o-9", "timeout", False)

        results = await asyncio.gather(business_update(), record_failure(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert results[1] is None
        assert await database.fetch_value("SELECT COUNT(*) FROM products") == 0
        assert (await ledger.get_failure(EntityType.ORDER, "o-9")).failure_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_transactions_do_not_join(self, database):
        import asyncio

        first_open = asyncio.Event()

        async def failing():
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-8", "Balança", "Acessórios", 5990),
                    conn=conn,
                )
                first_open.set()
                await asyncio.sleep(0.05)
                raise RuntimeError("stock check failed")

        async def succeeding():
            await first_open.wait()
            async with database.transaction() as conn:
                await database.execute(
                    "INSERT INTO products (id, name, category, price_cents) VALUES (?, ?, ?, ?)",
                    ("p-9", "Filtro", "Acessórios", 990),
                    conn=conn,
                )

        results = await asyncio.gather(failing(), succeeding(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        rows = await database.fetch_all("SELECT id FROM products ORDER BY id")
        assert [row["id"] for row in rows] == ["p-9"]

    def test_file_database_creates_parent_directory(self, tmp_path):
        from commerce_rag.common.database import Database

        db = Database(tmp_path / "nested" / "store.db")
        db.init_schema()
        db.close()

        assert (tmp_path / "nested" / "store.db").exists()


class TestDocumentIndex:
    @pytest.fixture
    def index(self, database):
        from commerce_rag.common.document_index import DocumentIndex
        return DocumentIndex(database)

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, index):
        from commerce_rag.common.schemas import EntityType

        await index.upsert_document(_document(embedding=[0.1234567891, 0.5]))
        stored = await index.get_document(EntityType.PRODUCT, "p-1")

        assert stored.content_markdown == "# Produto"
        assert stored.embedding == [0.123457, 0.5]
        assert stored.metadata == {"category": "Acessórios"}
        assert stored.updated_at

    @pytest.mark.asyncio
    async def test_unchanged_upsert_keeps_row_identical(self, index):
        from commerce_rag.common.schemas import EntityType

        await index.upsert_document(_document(source_updated_at="2024-05-04T10:00:00.000Z"))
        first = await index.get_raw_row(EntityType.PRODUCT, "p-1")

        later = _document(source_updated_at="2024-05-04T10:00:00.000Z")
        later.updated_at = "2099-01-01T00:00:00.000Z"
        await index.upsert_document(later)
        second = await index.get_raw_row(EntityType.PRODUCT, "p-1")

        assert first == second

    @pytest.mark.asyncio
    async def test_changed_upsert_overwrites_content(self, index):
        from commerce_rag.common.schemas import EntityType

        await index.upsert_document(_document())
        changed = _document(content="# Produto\n- Nome: Novo")
        changed.updated_at = "2099-01-01T00:00:00.000Z"
        await index.upsert_document(changed)
        stored = await index.get_document(EntityType.PRODUCT, "p-1")

        assert stored.content_markdown == "# Produto\n- Nome: Novo"
        assert stored.updated_at == "2099-01-01T00:00:00.000Z"
        assert await index.count_documents() == 1

    @pytest.mark.asyncio
    async def test_delete(self, index):
        from commerce_rag.common.schemas import EntityType

        await index.upsert_document(_document())

        assert await index.delete_document(EntityType.PRODUCT, "p-1") is True
        assert await index.delete_document(EntityType.PRODUCT, "p-1") is False
        assert await index.get_document(EntityType.PRODUCT, "p-1") is None

    @pytest.mark.asyncio
    async def test_search_orders_by_similarity(self, index):
        from commerce_rag.common.schemas import EntityType

        await index.upsert_document(_document("p-1", embedding=[1.0, 0.0]))
        await index.upsert_document(_document("p-2", embedding=[0.6, 0.8]))
        await index.upsert_document(_document("p-3", embedding=[0.0, 1.0]))

        hits = await index.search_documents([1.0, 0.0], top_k=2)

        assert [hit.entity_id for hit in hits] == ["p-1", "p-2"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.6)
        assert hits[0].entity_type == EntityType.PRODUCT

    @pytest.mark.asyncio
    async def test_search_filters_entity_types_and_skips_other_dimensions(self, index):
        from commerce_rag.common.schemas import CanonicalDocument, EntityType

        await index.upsert_document(_document("p-1", embedding=[1.0, 0.0]))
        await index.upsert_document(_document("p-2", embedding=[1.0, 0.0, 0.0]))
        await index.upsert_document(CanonicalDocument(
            entity_type=EntityType.ORDER,
            entity_id="o-1",
            content_markdown="# Pedido",
            embedding=[1.0, 0.0],
        ))

        hits = await index.search_documents([1.0, 0.0], top_k=10, entity_types=[EntityType.ORDER])
        assert [hit.entity_id for hit in hits] == ["o-1"]

        all_hits = await index.search_documents([1.0, 0.0], top_k=10)
        assert sorted(hit.entity_id for hit in all_hits) == ["o-1", "p-1"]


class TestFailureLedger:
    @pytest.fixture
    def ledger(self, database):
        from commerce_rag.common.failure_ledger import FailureLedger
        return FailureLedger(database)

    @pytest.mark.asyncio
    async def test_counts_attempts_and_keeps_last_error(self, ledger):
        from commerce_rag.common.schemas import EntityType

        await ledger.upsert_failure(EntityType.PRODUCT, "p-1", "timeout", False)
        await ledger.upsert_failure(EntityType.PRODUCT, "p-1", "timeout again", False)
        record = await ledger.get_failure(EntityType.PRODUCT, "p-1")

        assert record.failure_count == 2
        assert record.last_error == "timeout again"
        assert record.is_permanent is False

    @pytest.mark.asyncio
    async def test_permanence_is_sticky(self, ledger):
        from commerce_rag.common.schemas import EntityType

        await ledger.upsert_failure(EntityType.ORDER, "o-1", "Entidade não encontrada.", True)
        await ledger.upsert_failure(EntityType.ORDER, "o-1", "timeout", False)
        record = await ledger.get_failure(EntityType.ORDER, "o-1")

        assert record.is_permanent is True
        assert record.failure_count == 2

    @pytest.mark.asyncio
    async def test_list_excludes_permanent_by_default(self, ledger):
        from commerce_rag.common.schemas import EntityType

        await ledger.upsert_failure(EntityType.PRODUCT, "p-1", "timeout", False)
        await ledger.upsert_failure(EntityType.PRODUCT, "p-2", "not found", True)
        await ledger.upsert_failure(EntityType.ORDER, "o-1", "timeout", False)

        default = await ledger.list_failures()
        assert {record.entity_id for record in default} == {"p-1", "o-1"}

        everything = await ledger.list_failures(include_permanent=True)
        assert len(everything) == 3

        products = await ledger.list_failures(entity_type=EntityType.PRODUCT, include_permanent=True)
        assert {record.entity_id for record in products} == {"p-1", "p-2"}

    @pytest.mark.asyncio
    async def test_list_most_recent_first_with_limit(self, ledger):
        from commerce_rag.common.schemas import EntityType

        for entity_id in ("p-1", "p-2", "p-3"):
            await ledger.upsert_failure(EntityType.PRODUCT, entity_id, "timeout", False)

        records = await ledger.list_failures(limit=2)

        assert [record.entity_id for record in records] == ["p-3", "p-2"]

    @pytest.mark.asyncio
    async def test_delete(self, ledger):
        from commerce_rag.common.schemas import EntityType

        await ledger.upsert_failure(EntityType.PRODUCT, "p-1", "timeout", False)
        await ledger.delete_failure(EntityType.PRODUCT, "p-1")

        assert await ledger.get_failure(EntityType.PRODUCT, "p-1") is None

    @pytest.mark.parametrize("limit,expected", [(None, 200), (0, 1), (-5, 1), (50, 50), (5000, 1000)])
    def test_clamp_limit(self, limit, expected):
        from commerce_rag.common.failure_ledger import clamp_limit
        assert clamp_limit(limit) == expected


class TestSourceRepository:
    @pytest.fixture
    def source(self, seeded_database):
        from commerce_rag.indexer.source_repository import SourceRepository
        return SourceRepository(seeded_database)

    @pytest.mark.asyncio
    async def test_counts_per_entity_type(self, source):
        from commerce_rag.common.schemas import BackfillFilter, EntityType

        counts = {entity_type: await source.count(entity_type, BackfillFilter()) for entity_type in EntityType}

        assert counts == {
            EntityType.PRODUCT: 2,
            EntityType.CUSTOMER: 1,
            EntityType.MANAGER: 1,
            EntityType.ORDER: 2,
            EntityType.ORDER_ITEM: 3,
        }

    @pytest.mark.asyncio
    async def test_product_stock_is_available_quantity(self, source):
        from commerce_rag.common.schemas import BackfillFilter, EntityType

        rows = await source.load_batch(EntityType.PRODUCT, BackfillFilter(), 10, 0)

        assert [(row["id"], row["stock_quantity"]) for row in rows] == [("p-1", 8), ("p-2", 3)]

    @pytest.mark.asyncio
    async def test_pagination_by_offset(self, source):
        from commerce_rag.common.schemas import BackfillFilter, EntityType

        first = await source.load_batch(EntityType.ORDER_ITEM, BackfillFilter(), 2, 0)
        second = await source.load_batch(EntityType.ORDER_ITEM, BackfillFilter(), 2, 2)

        assert [row["id"] for row in first + second] == ["i-1", "i-2", "i-3"]

    @pytest.mark.asyncio
    async def test_date_and_id_filters(self, source):
        from commerce_rag.common.schemas import BackfillFilter, EntityType

        recent = BackfillFilter(from_date="2024-05-11T00:00:00.000Z")
        assert await source.count(EntityType.ORDER, recent) == 1
        # order items follow their parent order's timestamp
        assert await source.count(EntityType.ORDER_ITEM, recent) == 1

        single = BackfillFilter(entity_id="u-1")
        rows = await source.load_batch(EntityType.CUSTOMER, single, 10, 0)
        assert rows[0]["updated_at"] == "2024-05-03T10:00:00.000Z"

    @pytest.mark.asyncio
    async def test_order_items_grouped_in_one_query(self, source):
        rows = await source.list_order_items_for_orders(["o-1", "o-2"])

        assert [(row["order_id"], row["id"]) for row in rows] == [("o-1", "i-1"), ("o-1", "i-2"), ("o-2", "i-3")]
        assert await source.list_order_items_for_orders([]) == []

    def test_entity_id_of(self):
        from commerce_rag.common.schemas import EntityType
        from commerce_rag.indexer.source_repository import entity_id_of

        assert entity_id_of(EntityType.CUSTOMER, {"user_id": "u-1", "id": "x"}) == "u-1"
        assert entity_id_of(EntityType.ORDER, {"id": "o-1"}) == "o-1"
