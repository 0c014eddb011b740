from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.stock import StockMovement
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.stock import (
    MovementType,
    StockLevelListOut,
    StockLevelOut,
    StockMovementCreate,
    StockMovementListOut,
    StockMovementOut,
    StockRecalculateOut,
    StockTransferCreate,
    StockTransferOut,
)
from erpledger.services import stock_ledger

router = APIRouter(tags=["stock"])


def movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        warehouse_id=movement.warehouse_id,
        product_id=movement.product_id,
        movement_type=movement.movement_type,
        quantity=float(movement.quantity),
        reference_id=movement.reference_id,
        reference_type=movement.reference_type,
        notes=movement.notes,
        created_by_id=movement.created_by_id,
        created_at=movement.created_at,
    )


@router.post(
    "/stock-movements",
    response_model=StockMovementOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record a stock movement",
    description=(
        "Appends one movement to the stock log. IN/OUT/RESERVED/UNRESERVED take a positive quantity; "
        "ADJUSTMENT takes a signed delta. Movements that would make available stock negative are rejected with 409."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_stock_movement(
    payload: StockMovementCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.create")),
):
    movement = stock_ledger.record_movement(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        warehouse_id=payload.warehouse_id,
        product_id=payload.product_id,
        movement_type=payload.movement_type,
        quantity=payload.quantity,
        reference_id=payload.reference_id,
        reference_type=payload.reference_type,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(movement)
    return movement_out(movement)


@router.get(
    "/stock-movements",
    response_model=StockMovementListOut,
    summary="List stock movements",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def list_stock_movements(
    warehouse_id: str | None = Query(default=None),
    product_id: str | None = Query(default=None),
    movement_type: MovementType | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.read")),
):
    rows, total = stock_ledger.list_movements(
        db,
        company_id=access.company.id,
        warehouse_id=warehouse_id,
        product_id=product_id,
        movement_type=movement_type,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    items = [movement_out(row) for row in rows]
    return StockMovementListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/stock",
    response_model=StockLevelListOut,
    summary="Current stock levels",
    description="Quantity, reserved and available per warehouse and product, summed from the movement log.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_stock_levels(
    warehouse_id: str | None = Query(default=None),
    product_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock.read")),
):
    levels = stock_ledger.get_current_levels(
        db,
        company_id=access.company.id,
        warehouse_id=warehouse_id,
        product_id=product_id,
    )
    return StockLevelListOut(
        items=[
            StockLevelOut(
                warehouse_id=level.warehouse_id,
                product_id=level.product_id,
                quantity=float(level.quantity),
                reserved=float(level.reserved),
                available=float(level.available),
                last_movement_at=level.last_movement_at,
            )
            for level in levels
        ]
    )


@router.post(
    "/stock/recalculate",
    response_model=StockRecalculateOut,
    summary="Rebuild cached stock levels",
    description="Recomputes every cached stock level of the company from the movement log.",
    responses=error_responses(401, 403, 500),
)
def recalculate_stock(
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock.recalculate")),
):
    result = stock_ledger.recalculate(db, company_id=access.company.id)
    db.commit()
    return StockRecalculateOut(**result)


@router.post(
    "/stock-transfers",
    response_model=StockTransferOut,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer stock between warehouses",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_stock_transfer(
    payload: StockTransferCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("stock_movements.create")),
):
    out_movement, in_movement = stock_ledger.record_transfer(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        notes=payload.notes,
    )
    db.commit()
    return StockTransferOut(
        reference_id=out_movement.reference_id,
        out_movement=movement_out(out_movement),
        in_movement=movement_out(in_movement),
    )
