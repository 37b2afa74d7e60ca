"""
Analytics Repository

Read-only aggregate queries over the relational mirror. Exact numbers for
the agent come from here, never from the vector index.
"""

from typing import Any, Dict, List, Optional

from ..common.database import Database
from ..common.schemas import DateRange

_DATE_FILTER = """
    (:from_date IS NULL OR date({column}) >= date(:from_date))
    AND (:to_date IS NULL OR date({column}) <= date(:to_date))
"""


def _date_params(date_range: Optional[DateRange]) -> Dict[str, Any]:
    return {
        "from_date": date_range.from_date if date_range else None,
        "to_date": date_range.to_date if date_range else None,
    }


class AnalyticsRepository:
    """Sales, product, status, customer, inventory and daily revenue aggregates"""

    def __init__(self, database: Database):
        self.db = database

    async def get_sales_metrics(self, date_range: Optional[DateRange] = None) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(
            f"""
            SELECT
                COUNT(*) AS total_orders,
                COALESCE(SUM(total_amount_cents), 0) AS total_revenue_cents,
                COALESCE(CAST(ROUND(AVG(total_amount_cents)) AS INTEGER), 0) AS avg_order_value_cents,
                COALESCE(SUM(CASE WHEN status = 'CANCELED' THEN 1 ELSE 0 END), 0) AS canceled_orders
            FROM orders
            WHERE {_DATE_FILTER.format(column="created_at")}
            """,
            _date_params(date_range),
        )

    async def get_top_products(self, date_range: Optional[DateRange] = None, limit: int = 10) -> List[Dict[str, Any]]:
        params = _date_params(date_range)
        params["limit"] = limit
        return await self.db.fetch_all(
            f"""
            SELECT
                oi.product_id,
                oi.product_name,
                oi.product_category,
                SUM(oi.quantity) AS total_sold,
                SUM(oi.line_total_cents) AS total_revenue_cents
            FROM order_items oi
            INNER JOIN orders o ON o.id = oi.order_id
            WHERE o.status != 'CANCELED'
              AND {_DATE_FILTER.format(column="o.created_at")}
            GROUP BY oi.product_id, oi.product_name, oi.product_category
            ORDER BY SUM(oi.quantity) DESC, oi.product_id
            LIMIT :limit
            """,
            params,
        )

    async def get_order_status_counts(self, date_range: Optional[DateRange] = None) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(
            f"""
            SELECT status, COUNT(*) AS total
            FROM orders
            WHERE {_DATE_FILTER.format(column="created_at")}
            GROUP BY status
            ORDER BY total DESC, status
            """,
            _date_params(date_range),
        )

    async def get_customer_metrics(self) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(
            """
            SELECT
                (SELECT COUNT(*) FROM customers_profile) AS total_customers,
                (SELECT COUNT(DISTINCT customer_id) FROM orders) AS customers_with_orders
            """
        )

    async def get_low_stock_products(self, threshold: int = 5) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(
            """
            SELECT
                p.id AS product_id,
                p.name AS product_name,
                p.category,
                COALESCE(i.quantity - i.reserved_quantity, 0) AS stock_quantity
            FROM products p
            LEFT JOIN inventory i ON i.product_id = p.id
            WHERE p.is_active = 1
              AND COALESCE(i.quantity - i.reserved_quantity, 0) <= :threshold
            ORDER BY COALESCE(i.quantity - i.reserved_quantity, 0) ASC, p.id
            """,
            {"threshold": threshold},
        )

    async def get_daily_revenue(self, date_range: Optional[DateRange] = None) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(
            f"""
            SELECT
                date(created_at) AS date,
                COUNT(*) AS orders,
                COALESCE(SUM(total_amount_cents), 0) AS revenue_cents
            FROM orders
            WHERE status != 'CANCELED'
              AND {_DATE_FILTER.format(column="created_at")}
            GROUP BY date(created_at)
            ORDER BY date(created_at) DESC
            """,
            _date_params(date_range),
        )
