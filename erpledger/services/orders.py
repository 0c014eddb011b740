import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.money import (
    MAX_MONEY,
    MAX_QUANTITY,
    MONEY_QUANT,
    QUANTITY_QUANT,
    has_excess_precision,
    to_money,
    to_quantity,
)
from erpledger.core.observability import log_event
from erpledger.models.catalog import Product
from erpledger.models.invoice import Invoice
from erpledger.models.order import Order, OrderItem
from erpledger.models.partner import Customer, Supplier
from erpledger.models.stock import StockMovement
from erpledger.services import stock_ledger
from erpledger.services.audit_service import log_audit_event, model_snapshot
from erpledger.services.billing import compute_order_total, line_total
from erpledger.services.numbering import next_document_number

logger = logging.getLogger("erpledger.orders")

ORDER_REFERENCE = "ORDER"
ORDER_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "DRAFT": {"PENDING", "CONFIRMED", "CANCELLED"},
    "PENDING": {"CONFIRMED", "CANCELLED"},
    "CONFIRMED": {"IN_PROGRESS", "COMPLETED", "CANCELLED"},
    "IN_PROGRESS": {"COMPLETED", "CANCELLED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}
EDITABLE_ORDER_STATUSES = {"DRAFT", "PENDING"}
RESERVABLE_ORDER_STATUSES = {"DRAFT", "PENDING", "CONFIRMED", "IN_PROGRESS"}
FULFILLABLE_ORDER_STATUSES = {"CONFIRMED", "IN_PROGRESS"}


def order_or_404(db: Session, *, company_id: str, order_id: str, lock: bool = False) -> Order:
    stmt = select(Order).where(Order.id == order_id, Order.company_id == company_id)
    if lock:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found")
    return order


def order_items(db: Session, order_id: str) -> list[OrderItem]:
    return list(
        db.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)).scalars()
    )


def is_sales_order(order: Order) -> bool:
    return order.customer_id is not None


def _order_snapshot(db: Session, order: Order) -> dict[str, Any]:
    snapshot = model_snapshot(order)
    snapshot["items"] = [
        model_snapshot(item, "product_id", "quantity", "price", "tax_rate", "total")
        for item in order_items(db, order.id)
    ]
    return snapshot


def _resolve_counterparty(
    db: Session, *, company_id: str, customer_id: str | None, supplier_id: str | None
) -> None:
    if bool(customer_id) == bool(supplier_id):
        raise ValidationError("Exactly one of customer_id or supplier_id is required", field="customer_id")
    if customer_id:
        found = db.execute(
            select(Customer.id).where(Customer.id == customer_id, Customer.company_id == company_id)
        ).scalar_one_or_none()
        if not found:
            raise NotFoundError("Customer not found")
    else:
        found = db.execute(
            select(Supplier.id).where(Supplier.id == supplier_id, Supplier.company_id == company_id)
        ).scalar_one_or_none()
        if not found:
            raise NotFoundError("Supplier not found")


def _build_items(db: Session, *, company_id: str, order_id: str, items) -> list[OrderItem]:
    product_ids = {item.product_id for item in items}
    found = set(
        db.execute(
            select(Product.id).where(Product.company_id == company_id, Product.id.in_(list(product_ids)))
        ).scalars()
    )
    missing = product_ids - found
    if missing:
        raise NotFoundError("Product not found")

    rows = []
    for item in items:
        quantity = Decimal(str(item.quantity))
        price = Decimal(str(item.price))
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero", field="items.quantity")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}", field="items.quantity")
        if has_excess_precision(quantity, QUANTITY_QUANT):
            raise ValidationError("quantity supports at most 3 decimal places", field="items.quantity")
        if price > MAX_MONEY:
            raise ValidationError(f"price cannot exceed {MAX_MONEY}", field="items.price")
        if has_excess_precision(price, MONEY_QUANT):
            raise ValidationError("price supports at most 2 decimal places", field="items.price")
        tax_rate = Decimal(str(item.tax_rate))
        if has_excess_precision(tax_rate, MONEY_QUANT):
            raise ValidationError("tax_rate supports at most 2 decimal places", field="items.tax_rate")
        total = line_total(quantity, price, tax_rate)
        if total > MAX_MONEY:
            raise ValidationError(f"Item total cannot exceed {MAX_MONEY}", field="items.total")
        rows.append(
            OrderItem(
                id=generate_id(),
                order_id=order_id,
                product_id=item.product_id,
                quantity=to_quantity(quantity),
                price=to_money(price),
                tax_rate=tax_rate,
                total=total,
            )
        )
    return rows


def _items_total(rows: list[OrderItem]) -> Decimal:
    total = compute_order_total(rows)
    if total > MAX_MONEY:
        raise ValidationError(f"Order total cannot exceed {MAX_MONEY}", field="items")
    return total


def create_order(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    base_currency: str,
    items,
    customer_id: str | None = None,
    supplier_id: str | None = None,
    currency: str | None = None,
    status: str = "DRAFT",
    notes: str | None = None,
    due_date: date | None = None,
) -> Order:
    if status not in EDITABLE_ORDER_STATUSES:
        raise ValidationError("A new order must be DRAFT or PENDING", field="status")
    _resolve_counterparty(db, company_id=company_id, customer_id=customer_id, supplier_id=supplier_id)
    if not items:
        raise ValidationError("Order needs at least one item", field="items")

    order_id = generate_id()
    rows = _build_items(db, company_id=company_id, order_id=order_id, items=items)
    order = Order(
        id=order_id,
        company_id=company_id,
        order_number=next_document_number(
            db,
            number_column=Order.order_number,
            company_column=Order.company_id,
            company_id=company_id,
            prefix="ORD",
        ),
        customer_id=customer_id,
        supplier_id=supplier_id,
        status=status,
        currency=(currency or base_currency).strip().upper(),
        total_amount=_items_total(rows),
        notes=notes,
        due_date=due_date,
        created_by_id=actor_user_id,
    )
    db.add(order)
    db.flush()
    db.add_all(rows)
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="CREATE",
        entity_type="order",
        entity_id=order.id,
        new_values=_order_snapshot(db, order),
    )
    log_event(
        logger,
        "order.created",
        company_id=company_id,
        order_id=order.id,
        order_number=order.order_number,
        total_amount=str(order.total_amount),
    )
    return order


def _release_reservations(
    db: Session, *, order: Order, actor_user_id: str, warehouse_id: str | None = None
) -> list[StockMovement]:
    reserved = stock_ledger.reserved_by_reference(
        db,
        company_id=order.company_id,
        reference_type=ORDER_REFERENCE,
        reference_id=order.id,
        warehouse_id=warehouse_id,
    )
    movements = []
    for (reserved_warehouse_id, product_id), quantity in sorted(reserved.items()):
        movements.append(
            stock_ledger.record_movement(
                db,
                company_id=order.company_id,
                actor_user_id=actor_user_id,
                warehouse_id=reserved_warehouse_id,
                product_id=product_id,
                movement_type="UNRESERVED",
                quantity=quantity,
                reference_id=order.id,
                reference_type=ORDER_REFERENCE,
                notes=f"Release for {order.order_number}",
            )
        )
    return movements


def update_order(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    order_id: str,
    changes: dict[str, Any],
    items=None,
) -> Order:
    order = order_or_404(db, company_id=company_id, order_id=order_id, lock=True)
    old_values = _order_snapshot(db, order)

    if items is not None:
        if order.status not in EDITABLE_ORDER_STATUSES:
            raise ConflictError(f"Items cannot change while the order is {order.status}")
        if _has_invoice(db, order):
            raise ConflictError("Items cannot change once the order has an invoice")
        rows = _build_items(db, company_id=company_id, order_id=order.id, items=items)
        db.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
        db.add_all(rows)
        order.total_amount = _items_total(rows)

    new_status = changes.get("status")
    if new_status and new_status != order.status:
        allowed = ORDER_STATUS_TRANSITIONS.get(order.status, set())
        if new_status not in allowed:
            raise ConflictError(f"Order cannot move from {order.status} to {new_status}")
        if new_status == "CANCELLED" and is_sales_order(order):
            _release_reservations(db, order=order, actor_user_id=actor_user_id)
        order.status = new_status

    if "notes" in changes:
        order.notes = changes["notes"]
    if "due_date" in changes:
        order.due_date = changes["due_date"]
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="UPDATE",
        entity_type="order",
        entity_id=order.id,
        old_values=old_values,
        new_values=_order_snapshot(db, order),
    )
    return order

def _has_invoice(db: Session, order: Order) -> bool:
    return db.execute(select(Invoice.id).where(Invoice.order_id == order.id).limit(1)).first() is not None


def delete_order(db: Session, *, company_id: str, actor_user_id: str, order_id: str) -> None:
    order = order_or_404(db, company_id=company_id, order_id=order_id, lock=True)
    if _has_invoice(db, order):
        raise ConflictError("Cannot delete an order with an invoice")
    has_movements = db.execute(
        select(StockMovement.id)
        .where(
            StockMovement.company_id == company_id,
            StockMovement.reference_type == ORDER_REFERENCE,
            StockMovement.reference_id == order.id,
        )
        .limit(1)
    ).first()
    if has_movements:
        raise ConflictError("Cannot delete an order with stock movements; cancel it instead")
    old_values = _order_snapshot(db, order)

    db.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
    db.delete(order)
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="DELETE",
        entity_type="order",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    log_event(logger, "order.deleted", company_id=company_id, order_id=old_values["id"])


def _stock_quantities(db: Session, order: Order) -> dict[str, Decimal]:
    """Ordered quantity per stock-carrying product; services are skipped."""
    items = order_items(db, order.id)
    services = set(
        db.execute(
            select(Product.id).where(
                Product.id.in_([item.product_id for item in items]),
                Product.is_service.is_(True),
            )
        ).scalars()
    )
    quantities: dict[str, Decimal] = defaultdict(Decimal)
    for item in items:
        if item.product_id not in services:
            quantities[item.product_id] += to_quantity(item.quantity)
    return dict(quantities)


def reserve_order(
    db: Session, *, company_id: str, actor_user_id: str, order_id: str, warehouse_id: str
) -> tuple[Order, list[StockMovement]]:
    order = order_or_404(db, company_id=company_id, order_id=order_id, lock=True)
    if not is_sales_order(order):
        raise ValidationError("Only sales orders reserve stock")
    if order.status not in RESERVABLE_ORDER_STATUSES:
        raise ConflictError(f"Cannot reserve stock for a {order.status} order")
    stock_ledger.active_warehouse(db, company_id=company_id, warehouse_id=warehouse_id)

    already_reserved: dict[str, Decimal] = defaultdict(Decimal)
    for (_, product_id), quantity in stock_ledger.reserved_by_reference(
        db, company_id=company_id, reference_type=ORDER_REFERENCE, reference_id=order.id
    ).items():
        already_reserved[product_id] += quantity

    movements = []
    for product_id, ordered in sorted(_stock_quantities(db, order).items()):
        remaining = ordered - already_reserved[product_id]
        if remaining <= 0:
            continue
        movements.append(
            stock_ledger.record_movement(
                db,
                company_id=company_id,
                actor_user_id=actor_user_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                movement_type="RESERVED",
                quantity=remaining,
                reference_id=order.id,
                reference_type=ORDER_REFERENCE,
                notes=f"Reservation for {order.order_number}",
            )
        )
    if not movements:
        raise ConflictError("Order is already fully reserved")

    _log_stock_action("order.reserved", order, warehouse_id, movements)
    return order, movements


def release_order(
    db: Session, *, company_id: str, actor_user_id: str, order_id: str, warehouse_id: str
) -> tuple[Order, list[StockMovement]]:
    order = order_or_404(db, company_id=company_id, order_id=order_id, lock=True)
    if not is_sales_order(order):
        raise ValidationError("Only sales orders reserve stock")
    stock_ledger.active_warehouse(db, company_id=company_id, warehouse_id=warehouse_id)

    movements = _release_reservations(db, order=order, actor_user_id=actor_user_id, warehouse_id=warehouse_id)
    if not movements:
        raise ConflictError("Order has no reservations at this warehouse")

    _log_stock_action("order.released", order, warehouse_id, movements)
    return order, movements


def fulfill_order(
    db: Session, *, company_id: str, actor_user_id: str, order_id: str, warehouse_id: str
) -> tuple[Order, list[StockMovement]]:
    """Ship a sales order (OUT) or receive a purchase order (IN) and complete it."""
    order = order_or_404(db, company_id=company_id, order_id=order_id, lock=True)
    if order.status not in FULFILLABLE_ORDER_STATUSES:
        raise ConflictError(f"Cannot fulfill a {order.status} order")
    stock_ledger.active_warehouse(db, company_id=company_id, warehouse_id=warehouse_id)
    old_values = model_snapshot(order)

    movements: list[StockMovement] = []
    movement_type = "IN"
    if is_sales_order(order):
        movements.extend(_release_reservations(db, order=order, actor_user_id=actor_user_id))
        movement_type = "OUT"

    for product_id, quantity in sorted(_stock_quantities(db, order).items()):
        movements.append(
            stock_ledger.record_movement(
                db,
                company_id=company_id,
                actor_user_id=actor_user_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                movement_type=movement_type,
                quantity=quantity,
                reference_id=order.id,
                reference_type=ORDER_REFERENCE,
                notes=f"Fulfillment of {order.order_number}",
            )
        )

    order.status = "COMPLETED"
    db.flush()
    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="UPDATE",
        entity_type="order",
        entity_id=order.id,
        old_values=old_values,
        new_values=model_snapshot(order),
    )
    _log_stock_action("order.fulfilled", order, warehouse_id, movements)
    return order, movements


def _log_stock_action(event: str, order: Order, warehouse_id: str, movements: list[StockMovement]) -> None:
    log_event(
        logger,
        event,
        company_id=order.company_id,
        order_id=order.id,
        warehouse_id=warehouse_id,
        movement_ids=[movement.id for movement in movements],
    )
