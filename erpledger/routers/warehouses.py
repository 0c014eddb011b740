from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ConflictError, NotFoundError
from erpledger.core.id_utils import generate_id
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.catalog import Warehouse
from erpledger.models.stock import StockLevel, StockMovement
from erpledger.schemas.catalog import WarehouseCreate, WarehouseListOut, WarehouseOut, WarehouseUpdate
from erpledger.schemas.common import pagination_meta
from erpledger.services.audit_service import log_audit_event, model_snapshot

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


def _warehouse_or_404(db: Session, *, company_id: str, warehouse_id: str) -> Warehouse:
    warehouse = db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.company_id == company_id)
    ).scalar_one_or_none()
    if not warehouse:
        raise NotFoundError("Warehouse not found")
    return warehouse


def _warehouse_out(warehouse: Warehouse) -> WarehouseOut:
    return WarehouseOut(
        id=warehouse.id,
        name=warehouse.name,
        address=warehouse.address,
        is_active=warehouse.is_active,
        created_at=warehouse.created_at,
        updated_at=warehouse.updated_at,
    )


@router.post(
    "",
    response_model=WarehouseOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a warehouse",
    responses=error_responses(401, 403, 422, 500),
)
def create_warehouse(
    payload: WarehouseCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("warehouses.create")),
):
    warehouse = Warehouse(
        id=generate_id(),
        company_id=access.company.id,
        name=payload.name.strip(),
        address=payload.address,
        is_active=True,
    )
    db.add(warehouse)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="CREATE",
        entity_type="warehouse",
        entity_id=warehouse.id,
        new_values=model_snapshot(warehouse, "id", "name", "address", "is_active"),
    )
    db.commit()
    db.refresh(warehouse)
    return _warehouse_out(warehouse)


@router.get(
    "",
    response_model=WarehouseListOut,
    summary="List warehouses",
    responses=error_responses(401, 403, 422, 500),
)
def list_warehouses(
    is_active: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("warehouses.read")),
):
    conditions = [Warehouse.company_id == access.company.id]
    if is_active is not None:
        conditions.append(Warehouse.is_active.is_(is_active))

    total = int(db.execute(select(func.count(Warehouse.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Warehouse)
        .where(*conditions)
        .order_by(Warehouse.created_at.asc(), Warehouse.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_warehouse_out(row) for row in rows]
    return WarehouseListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{warehouse_id}",
    response_model=WarehouseOut,
    summary="Get a warehouse",
    responses=error_responses(401, 403, 404, 500),
)
def get_warehouse(
    warehouse_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("warehouses.read")),
):
    return _warehouse_out(_warehouse_or_404(db, company_id=access.company.id, warehouse_id=warehouse_id))


@router.patch(
    "/{warehouse_id}",
    response_model=WarehouseOut,
    summary="Update a warehouse",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_warehouse(
    warehouse_id: str,
    payload: WarehouseUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("warehouses.update")),
):
    warehouse = _warehouse_or_404(db, company_id=access.company.id, warehouse_id=warehouse_id)
    fields = ("name", "address", "is_active")
    old_values = model_snapshot(warehouse, *fields)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "address":
            continue
        setattr(warehouse, field, value.strip() if field == "name" else value)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="UPDATE",
        entity_type="warehouse",
        entity_id=warehouse.id,
        old_values=old_values,
        new_values=model_snapshot(warehouse, *fields),
    )
    db.commit()
    db.refresh(warehouse)
    return _warehouse_out(warehouse)


@router.delete(
    "/{warehouse_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a warehouse",
    description="Warehouses with stock movements cannot be deleted; deactivate them instead.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_warehouse(
    warehouse_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("warehouses.delete")),
):
    warehouse = _warehouse_or_404(db, company_id=access.company.id, warehouse_id=warehouse_id)
    if db.execute(select(StockMovement.id).where(StockMovement.warehouse_id == warehouse.id).limit(1)).first():
        raise ConflictError("Cannot delete a warehouse with stock movements")

    old_values = model_snapshot(warehouse, "id", "name", "address", "is_active")
    db.execute(delete(StockLevel).where(StockLevel.warehouse_id == warehouse.id))
    db.delete(warehouse)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="DELETE",
        entity_type="warehouse",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
