"""
Document and sync-input types for the semantic index.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class EntityType(str, Enum):
    """Relational entities mirrored into the document index"""
    PRODUCT = "product"
    CUSTOMER = "customer"
    MANAGER = "manager"
    ORDER = "order"
    ORDER_ITEM = "order_item"


ALL_ENTITY_TYPES: List[EntityType] = list(EntityType)


def parse_entity_type(value: Any) -> Optional[EntityType]:
    """Trimmed, case-insensitive lookup; None for anything outside the enum"""
    if isinstance(value, EntityType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return EntityType(value.strip().lower())
    except ValueError:
        return None


def normalize_entity_types(values: Optional[Iterable[Any]]) -> List[EntityType]:
    """Keep known entity types in input order, dropping unknown ones and duplicates"""
    result: List[EntityType] = []
    for value in values or []:
        entity_type = parse_entity_type(value)
        if entity_type is not None and entity_type not in result:
            result.append(entity_type)
    return result


@dataclass
class CanonicalDocument:
    """One indexed snapshot, unique per (entity_type, entity_id)"""
    entity_type: EntityType
    entity_id: str
    content_markdown: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_updated_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SearchHit:
    """Ranked document returned by the index"""
    entity_type: EntityType
    entity_id: str
    content_markdown: str
    metadata: Dict[str, Any]
    score: float


@dataclass
class SearchResult:
    """Search result as exposed to callers"""
    entity_type: str
    entity_id: str
    score: float
    snippet: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "score": self.score,
            "snippet": self.snippet,
            "metadata": self.metadata,
        }


@dataclass
class FailureRecord:
    """Dead-letter entry for an entity that failed reindexing"""
    entity_type: EntityType
    entity_id: str
    failure_count: int
    last_error: str
    is_permanent: bool
    last_attempt_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "failureCount": self.failure_count,
            "lastError": self.last_error,
            "isPermanent": self.is_permanent,
            "lastAttemptAt": self.last_attempt_at,
        }


# ---------- Sync inputs (what business mutations hand to the Synchronizer) ---------- #

@dataclass
class ProductSyncInput:
    id: str
    name: str
    description: str
    category: str
    sale_price_cents: int
    weight_grams: Optional[int]
    stock_quantity: int
    is_active: bool
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProductSyncInput":
        return cls(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description") or "",
            category=row["category"],
            sale_price_cents=int(row.get("sale_price_cents", row.get("price_cents", 0)) or 0),
            weight_grams=row.get("weight_grams"),
            stock_quantity=int(row.get("stock_quantity") or 0),
            is_active=bool(row.get("is_active")),
            updated_at=row.get("updated_at"),
        )


@dataclass
class CustomerSyncInput:
    """Only non-sensitive profile fields; name, CPF and email never reach the index"""
    user_id: str
    city: str
    state: str
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomerSyncInput":
        return cls(
            user_id=str(row["user_id"]),
            city=row.get("city") or "",
            state=row.get("state") or "",
            updated_at=row.get("updated_at"),
        )


@dataclass
class ManagerSyncInput:
    id: str
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ManagerSyncInput":
        return cls(id=str(row["id"]), updated_at=row.get("updated_at"))


@dataclass
class OrderItemSyncInput:
    id: str
    order_id: str
    product_id: str
    product_name: str
    product_category: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderItemSyncInput":
        return cls(
            id=str(row["id"]),
            order_id=str(row["order_id"]),
            product_id=str(row["product_id"]),
            product_name=row["product_name"],
            product_category=row["product_category"],
            quantity=int(row["quantity"]),
            unit_price_cents=int(row["unit_price_cents"]),
            line_total_cents=int(row["line_total_cents"]),
        )


@dataclass
class OrderSyncInput:
    id: str
    customer_id: str
    status: str
    total_amount_cents: int
    items_count: int
    shipping_city: str
    shipping_state: str
    updated_at: Optional[str] = None
    items: List[OrderItemSyncInput] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], items: Optional[List[OrderItemSyncInput]] = None) -> "OrderSyncInput":
        return cls(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            status=row["status"],
            total_amount_cents=int(row["total_amount_cents"]),
            items_count=int(row["items_count"]),
            shipping_city=row.get("shipping_city") or "",
            shipping_state=row.get("shipping_state") or "",
            updated_at=row.get("updated_at"),
            items=list(items or []),
        )
