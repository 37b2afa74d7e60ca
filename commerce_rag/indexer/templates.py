"""
Snapshot Templates

Renders relational entities to pt-BR Markdown for embedding.
The snapshot is the single source of truth for what gets indexed; customer
and manager snapshots never include names, CPF or email.
"""

from typing import Any, Dict, List

from ..common.schemas import (
    CustomerSyncInput,
    ManagerSyncInput,
    OrderItemSyncInput,
    OrderSyncInput,
    ProductSyncInput,
)


PRODUCT_TEMPLATE = """# Produto
- ID: {id}
- Nome: {name}
- Categoria: {category}
- Preço: {price}
- Peso (g): {weight}
- Estoque disponível: {stock}
- Ativo: {active}
## Descrição
{description}"""

CUSTOMER_TEMPLATE = """# Cliente
- ID usuário: {user_id}
- Cidade: {city}
- UF: {state}"""

MANAGER_TEMPLATE = """# Gestor
- ID usuário: {id}"""

ORDER_TEMPLATE = """# Pedido
- ID: {id}
- Status: {status}
- Itens: {items_count}
- Total: {total}
- Entrega: {city}/{state}
## Itens"""

ORDER_ITEM_LINE = (
    "- {name} | categoria: {category} | quantidade: {quantity} "
    "| preço unitário: {unit_price} | subtotal: {line_total}"
)

ORDER_ITEM_TEMPLATE = """# Item de pedido
- ID item: {id}
- ID pedido: {order_id}
- ID produto: {product_id}
- Nome produto: {name}
- Categoria: {category}
- Quantidade: {quantity}
- Preço unitário: {unit_price}
- Total da linha: {line_total}"""


def format_currency(cents: int) -> str:
    """Cents to BRL, e.g. 123456 -> 'R$ 1.234,56'"""
    sign = "-" if cents < 0 else ""
    formatted = f"{abs(cents) / 100:,.2f}"
    formatted = formatted.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {sign}{formatted}"


def render_product_markdown(product: ProductSyncInput) -> str:
    return PRODUCT_TEMPLATE.format(
        id=product.id,
        name=product.name,
        category=product.category,
        price=format_currency(product.sale_price_cents),
        weight=product.weight_grams if product.weight_grams is not None else "não informado",
        stock=product.stock_quantity,
        active="sim" if product.is_active else "não",
        description=product.description,
    )


def render_customer_markdown(customer: CustomerSyncInput) -> str:
    return CUSTOMER_TEMPLATE.format(user_id=customer.user_id, city=customer.city, state=customer.state)


def render_manager_markdown(manager: ManagerSyncInput) -> str:
    return MANAGER_TEMPLATE.format(id=manager.id)


def render_order_markdown(order: OrderSyncInput, items: List[OrderItemSyncInput]) -> str:
    lines = [
        ORDER_TEMPLATE.format(
            id=order.id,
            status=order.status,
            items_count=order.items_count,
            total=format_currency(order.total_amount_cents),
            city=order.shipping_city,
            state=order.shipping_state,
        )
    ]
    for item in items:
        lines.append(ORDER_ITEM_LINE.format(
            name=item.product_name,
            category=item.product_category,
            quantity=item.quantity,
            unit_price=format_currency(item.unit_price_cents),
            line_total=format_currency(item.line_total_cents),
        ))
    return "\n".join(lines)


def render_order_item_markdown(item: OrderItemSyncInput) -> str:
    return ORDER_ITEM_TEMPLATE.format(
        id=item.id,
        order_id=item.order_id,
        product_id=item.product_id,
        name=item.product_name,
        category=item.product_category,
        quantity=item.quantity,
        unit_price=format_currency(item.unit_price_cents),
        line_total=format_currency(item.line_total_cents),
    )


# ---------- Metadata ---------- #

def product_metadata(product: ProductSyncInput) -> Dict[str, Any]:
    return {
        "category": product.category,
        "sale_price": product.sale_price_cents / 100,
        "weight": product.weight_grams,
        "updated_at": product.updated_at,
        "is_active": product.is_active,
        "stock_quantity": product.stock_quantity,
    }


def customer_metadata(customer: CustomerSyncInput) -> Dict[str, Any]:
    return {"city": customer.city, "state": customer.state, "updated_at": customer.updated_at}


def manager_metadata(manager: ManagerSyncInput) -> Dict[str, Any]:
    return {"updated_at": manager.updated_at}


def order_metadata(order: OrderSyncInput) -> Dict[str, Any]:
    return {
        "customer_id": order.customer_id,
        "status": order.status,
        "total_amount": order.total_amount_cents / 100,
        "items_count": order.items_count,
        "shipping_city": order.shipping_city,
        "shipping_state": order.shipping_state,
        "updated_at": order.updated_at,
    }


def order_item_metadata(item: OrderItemSyncInput) -> Dict[str, Any]:
    return {
        "order_id": item.order_id,
        "product_id": item.product_id,
        "category": item.product_category,
        "quantity": item.quantity,
    }


def create_snippet(markdown: str, limit: int = 240) -> str:
    """Newlines flattened, truncated to `limit` characters"""
    return markdown.replace("\n", " ")[:limit]
