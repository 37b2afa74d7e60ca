"""Shared fixtures: an in-memory store seeded with a small catalog."""

import pytest


def seed_store(db):
    """Two products, one customer, one manager and two orders (one canceled)"""
    db.connection.execute(
        "INSERT INTO users (id, username, email, role, updated_at) VALUES (?, ?, ?, ?, ?)",
        ("u-1", "ana", "ana@example.com", "CUSTOMER", "2024-05-01T10:00:00.000Z"),
    )
    db.connection.execute(
        "INSERT INTO users (id, username, email, role, updated_at) VALUES (?, ?, ?, ?, ?)",
        ("u-2", "bruno", "bruno@example.com", "MANAGER", "2024-05-02T10:00:00.000Z"),
    )
    db.connection.execute(
        "INSERT INTO customers_profile (user_id, full_name, cpf, city, state, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
        ("u-1", "Ana Souza", "123.456.789-00", "Campinas", "SP", "2024-05-03T10:00:00.000Z"),
    )
    db.connection.execute(
        """
        INSERT INTO products (id, name, description, category, price_cents, weight_grams, is_active, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        ("p-1", "Cafeteira Premium", "Cafeteira elétrica com moedor integrado.", "Eletroportáteis",
         49990, 2500, 1, "2024-05-04T10:00:00.000Z"),
    )
    db.connection.execute(
        """
        INSERT INTO products (id, name, description, category, price_cents, weight_grams, is_active, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        ("p-2", "Moedor Manual", "Moedor de café em aço inox.", "Acessórios",
         12990, None, 1, "2024-05-05T10:00:00.000Z"),
    )
    db.connection.execute("INSERT INTO inventory (product_id, quantity, reserved_quantity) VALUES (?, ?, ?)", ("p-1", 10, 2))
    db.connection.execute("INSERT INTO inventory (product_id, quantity, reserved_quantity) VALUES (?, ?, ?)", ("p-2", 3, 0))
    db.connection.execute(
        """
        INSERT INTO orders (id, customer_id, status, total_amount_cents, items_count,
                            shipping_city, shipping_state, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        ("o-1", "u-1", "PAID", 62980, 2, "Campinas", "SP", "2024-05-10T12:00:00.000Z", "2024-05-10T12:00:00.000Z"),
    )
    db.connection.execute(
        """
        INSERT INTO orders (id, customer_id, status, total_amount_cents, items_count,
                            shipping_city, shipping_state, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        ("o-2", "u-1", "CANCELED", 12990, 1, "Campinas", "SP", "2024-05-11T12:00:00.000Z", "2024-05-12T12:00:00.000Z"),
    )
    for item in (
        ("i-1", "o-1", "p-1", "Cafeteira Premium", "Eletroportáteis", 1, 49990, 49990),
        ("i-2", "o-1", "p-2", "Moedor Manual", "Acessórios", 1, 12990, 12990),
        ("i-3", "o-2", "p-2", "Moedor Manual", "Acessórios", 1, 12990, 12990),
    ):
        db.connection.execute(
            """
            INSERT INTO order_items (id, order_id, product_id, product_name, product_category,
                                     quantity, unit_price_cents, line_total_cents)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            item,
        )


@pytest.fixture
def database():
    from commerce_rag.common.database import Database
    db = Database(":memory:")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def seeded_database(database):
    seed_store(database)
    return database


@pytest.fixture
def components(seeded_database):
    """Fully wired components over the seeded store, no retry delays"""
    from commerce_rag.bootstrap import build_components
    from commerce_rag.common.config import CommerceRagConfig

    config = CommerceRagConfig()
    config.embedding.retry_delay_ms = 0
    config.backfill.item_retry_delay_ms = 0
    return build_components(config, database=seeded_database)


@pytest.fixture
def seeded_db_file(tmp_path):
    """Path of an on-disk store with the seed data, for entry points that open their own connection"""
    from commerce_rag.common.database import Database
    path = tmp_path / "store.db"
    db = Database(path)
    db.init_schema()
    seed_store(db)
    db.close()
    return str(path)
