from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ValidationError
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.order import Order
from erpledger.routers.stock import movement_out
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.order import (
    OrderCreate,
    OrderItemOut,
    OrderListOut,
    OrderOut,
    OrderStatus,
    OrderStockActionIn,
    OrderStockActionOut,
    OrderUpdate,
)
from erpledger.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_out(db: Session, order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        supplier_id=order.supplier_id,
        status=order.status,
        currency=order.currency,
        total_amount=float(order.total_amount),
        notes=order.notes,
        due_date=order.due_date,
        created_by_id=order.created_by_id,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemOut(
                id=item.id,
                product_id=item.product_id,
                quantity=float(item.quantity),
                price=float(item.price),
                tax_rate=float(item.tax_rate),
                total=float(item.total),
            )
            for item in order_service.order_items(db, order.id)
        ],
    )


@router.post(
    "",
    response_model=OrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description=(
        "Creates a sales order (customer_id) or purchase order (supplier_id). "
        "Item totals and the order total are computed by the server."
    ),
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("orders.create")),
):
    order = order_service.create_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        base_currency=access.company.base_currency,
        items=payload.items,
        customer_id=payload.customer_id,
        supplier_id=payload.supplier_id,
        currency=payload.currency,
        status=payload.status,
        notes=payload.notes,
        due_date=payload.due_date,
    )
    db.commit()
    db.refresh(order)
    return _order_out(db, order)


@router.get(
    "",
    response_model=OrderListOut,
    summary="List orders",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_orders(
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    customer_id: str | None = Query(default=None),
    supplier_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("orders.read")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    conditions = [Order.company_id == access.company.id]
    if status_filter:
        conditions.append(Order.status == status_filter)
    if customer_id:
        conditions.append(Order.customer_id == customer_id)
    if supplier_id:
        conditions.append(Order.supplier_id == supplier_id)
    if start_date:
        conditions.append(func.date(Order.created_at) >= start_date)
    if end_date:
        conditions.append(func.date(Order.created_at) <= end_date)

    total = int(db.execute(select(func.count(Order.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_order_out(db, row) for row in rows]
    return OrderListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="Get an order",
    responses=error_responses(401, 403, 404, 500),
)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("orders.read")),
):
    order = order_service.order_or_404(db, company_id=access.company.id, order_id=order_id)
    return _order_out(db, order)


@router.patch(
    "/{order_id}",
    response_model=OrderOut,
    summary="Update an order",
    description="Changes status along the allowed transitions, notes, due date, or replaces items while DRAFT/PENDING.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_order(
    order_id: str,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("orders.update")),
):
    changes = payload.model_dump(exclude_unset=True, exclude={"items"})
    order = order_service.update_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        order_id=order_id,
        changes=changes,
        items=payload.items,
    )
    db.commit()
    db.refresh(order)
    return _order_out(db, order)


@router.delete(
    "/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete an order",
    description="Refused once the order has an invoice or stock movements; cancel it instead.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_order(
    order_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("orders.delete")),
):
    order_service.delete_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        order_id=order_id,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

def _stock_action_out(order, movements) -> OrderStockActionOut:
    return OrderStockActionOut(
        order_id=order.id,
        status=order.status,
        movements=[movement_out(movement) for movement in movements],
    )


@router.post(
    "/{order_id}/reserve",
    response_model=OrderStockActionOut,
    summary="Reserve stock for a sales order",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def reserve_order(
    order_id: str,
    payload: OrderStockActionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.create")),
):
    order, movements = order_service.reserve_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        order_id=order_id,
        warehouse_id=payload.warehouse_id,
    )
    db.commit()
    return _stock_action_out(order, movements)


@router.post(
    "/{order_id}/release",
    response_model=OrderStockActionOut,
    summary="Release stock reserved for a sales order",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def release_order(
    order_id: str,
    payload: OrderStockActionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.create")),
):
    order, movements = order_service.release_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        order_id=order_id,
        warehouse_id=payload.warehouse_id,
    )
    db.commit()
    return _stock_action_out(order, movements)


@router.post(
    "/{order_id}/fulfill",
    response_model=OrderStockActionOut,
    summary="Fulfill an order",
    description="Ships a sales order (OUT) or receives a purchase order (IN) at the warehouse and completes it.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def fulfill_order(
    order_id: str,
    payload: OrderStockActionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.create")),
):
    order, movements = order_service.fulfill_order(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        order_id=order_id,
        warehouse_id=payload.warehouse_id,
    )
    db.commit()
    return _stock_action_out(order, movements)
