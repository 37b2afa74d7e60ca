"""
Source Repository

Bulk counting and listing of relational rows to index, per entity type,
under optional date / entity id filters.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from ..common.database import Database
from ..common.schemas import BackfillFilter, EntityType


@dataclass(frozen=True)
class _SourceQuery:
    select: str
    from_clause: str
    key_column: str
    updated_column: str
    base_condition: str = "1 = 1"


SOURCE_QUERIES: Dict[EntityType, _SourceQuery] = {
    EntityType.PRODUCT: _SourceQuery(
        select="""
            p.id, p.name, p.description, p.category, p.price_cents, p.weight_grams, p.is_active,
            COALESCE(i.quantity - i.reserved_quantity, 0) AS stock_quantity,
            p.updated_at
        """,
        from_clause="products p LEFT JOIN inventory i ON i.product_id = p.id",
        key_column="p.id",
        updated_column="p.updated_at",
    ),
    EntityType.CUSTOMER: _SourceQuery(
        select="""
            cp.user_id, cp.full_name, cp.cpf, u.email, cp.city, cp.state,
            MAX(cp.updated_at, u.updated_at) AS updated_at
        """,
        from_clause="customers_profile cp INNER JOIN users u ON u.id = cp.user_id",
        key_column="cp.user_id",
        updated_column="MAX(cp.updated_at, u.updated_at)",
    ),
    EntityType.MANAGER: _SourceQuery(
        select="u.id, u.username, u.email, u.updated_at",
        from_clause="users u",
        key_column="u.id",
        updated_column="u.updated_at",
        base_condition="u.role = 'MANAGER'",
    ),
    EntityType.ORDER: _SourceQuery(
        select="""
            o.id, o.customer_id, o.status, o.total_amount_cents, o.items_count,
            o.shipping_city, o.shipping_state, o.updated_at
        """,
        from_clause="orders o",
        key_column="o.id",
        updated_column="o.updated_at",
    ),
    EntityType.ORDER_ITEM: _SourceQuery(
        select="""
            oi.id, oi.order_id, oi.product_id, oi.product_name, oi.product_category,
            oi.quantity, oi.unit_price_cents, oi.line_total_cents
        """,
        # Items carry no timestamp of their own; the parent order's is used
        from_clause="order_items oi INNER JOIN orders o ON o.id = oi.order_id",
        key_column="oi.id",
        updated_column="o.updated_at",
    ),
}


def _where(query: _SourceQuery) -> str:
    return f"""
        WHERE {query.base_condition}
          AND (:entity_id IS NULL OR {query.key_column} = :entity_id)
          AND (:from_date IS NULL OR {query.updated_column} >= :from_date)
          AND (:to_date IS NULL OR {query.updated_column} <= :to_date)
    """


def _params(row_filter: BackfillFilter) -> Dict[str, Any]:
    return {
        "entity_id": row_filter.entity_id,
        "from_date": row_filter.from_date,
        "to_date": row_filter.to_date,
    }


def entity_id_of(entity_type: EntityType, row: Dict[str, Any]) -> str:
    """Customers are keyed by user_id, everything else by id"""
    if entity_type == EntityType.CUSTOMER:
        return str(row["user_id"])
    return str(row["id"])


class SourceRepository:
    """Read-only access to the relational rows mirrored into the index"""

    def __init__(self, database: Database):
        self.db = database

    async def count(self, entity_type: EntityType, row_filter: BackfillFilter) -> int:
        query = SOURCE_QUERIES[entity_type]
        value = await self.db.fetch_value(
            f"SELECT COUNT(*) FROM {query.from_clause} {_where(query)}",
            _params(row_filter),
        )
        return int(value or 0)

    async def load_batch(
        self,
        entity_type: EntityType,
        row_filter: BackfillFilter,
        limit: int,
        offset: int,
    ) -> List[Dict[str, Any]]:
        """Stable ordering by key so offset pagination does not skip rows"""
        query = SOURCE_QUERIES[entity_type]
        params = _params(row_filter)
        params.update({"limit": limit, "offset": offset})
        return await self.db.fetch_all(
            f"""
            SELECT {query.select}
            FROM {query.from_clause}
            {_where(query)}
            ORDER BY {query.key_column}
            LIMIT :limit OFFSET :offset
            """,
            params,
        )

    async def list_order_items_for_orders(self, order_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Child line items for a batch of orders, in one query"""
        if not order_ids:
            return []
        placeholders = ", ".join("?" for _ in order_ids)
        return await self.db.fetch_all(
            f"""
            SELECT id, order_id, product_id, product_name, product_category,
                   quantity, unit_price_cents, line_total_cents
            FROM order_items
            WHERE order_id IN ({placeholders})
            ORDER BY order_id, id
            """,
            list(order_ids),
        )
