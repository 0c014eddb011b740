from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.order import Order
from erpledger.models.partner import Customer, Supplier
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.partner import PartnerCreate, PartnerListOut, PartnerOut, PartnerUpdate
from erpledger.services.audit_service import log_audit_event, model_snapshot

customers_router = APIRouter(prefix="/customers", tags=["customers"])
suppliers_router = APIRouter(prefix="/suppliers", tags=["suppliers"])

_AUDITED_FIELDS = ("id", "name", "email", "phone", "tax_id")


def _partner_out(row: Customer | Supplier) -> PartnerOut:
    return PartnerOut(
        id=row.id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        tax_id=row.tax_id,
        created_at=row.created_at,
    )


def _create_partner(db: Session, model, entity_type: str, payload: PartnerCreate, access: CompanyAccess) -> PartnerOut:
    row = model(
        id=generate_id(),
        company_id=access.company.id,
        name=payload.name.strip(),
        email=payload.email.lower() if payload.email else None,
        phone=payload.phone,
        tax_id=payload.tax_id,
    )
    db.add(row)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="CREATE",
        entity_type=entity_type,
        entity_id=row.id,
        new_values=model_snapshot(row, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(row)
    return _partner_out(row)


def _list_partners(db: Session, model, *, company_id: str, q: str | None, limit: int, offset: int) -> PartnerListOut:
    conditions = [model.company_id == company_id]
    if q and q.strip():
        conditions.append(func.lower(model.name).like(f"%{q.strip().lower()}%"))

    total = int(db.execute(select(func.count(model.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(model).where(*conditions).order_by(model.name.asc(), model.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [_partner_out(row) for row in rows]
    return PartnerListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@customers_router.post(
    "",
    response_model=PartnerOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer",
    responses=error_responses(401, 403, 422, 500),
)
def create_customer(
    payload: PartnerCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("customers.create")),
):
    return _create_partner(db, Customer, "customer", payload, access)


@customers_router.get(
    "",
    response_model=PartnerListOut,
    summary="List customers",
    responses=error_responses(401, 403, 422, 500),
)
def list_customers(
    q: str | None = Query(default=None, description="Search by name"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("customers.read")),
):
    return _list_partners(db, Customer, company_id=access.company.id, q=q, limit=limit, offset=offset)


@suppliers_router.post(
    "",
    response_model=PartnerOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a supplier",
    responses=error_responses(401, 403, 422, 500),
)
def create_supplier(
    payload: PartnerCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("suppliers.create")),
):
    return _create_partner(db, Supplier, "supplier", payload, access)


@suppliers_router.get(
    "",
    response_model=PartnerListOut,
    summary="List suppliers",
    responses=error_responses(401, 403, 422, 500),
)
def list_suppliers(
    q: str | None = Query(default=None, description="Search by name"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("suppliers.read")),
):
    return _list_partners(db, Supplier, company_id=access.company.id, q=q, limit=limit, offset=offset)


def _partner_or_404(db: Session, model, *, company_id: str, partner_id: str):
    row = db.execute(
        select(model).where(model.id == partner_id, model.company_id == company_id)
    ).scalar_one_or_none()
    if not row:
        raise NotFoundError(f"{model.__name__} not found")
    return row


def _update_partner(
    db: Session, model, entity_type: str, partner_id: str, payload: PartnerUpdate, access: CompanyAccess
) -> PartnerOut:
    row = _partner_or_404(db, model, company_id=access.company.id, partner_id=partner_id)
    old_values = model_snapshot(row, *_AUDITED_FIELDS)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        if changes["name"] is None:
            raise ValidationError("name cannot be empty", field="name")
        row.name = changes["name"].strip()
    if "email" in changes:
        row.email = changes["email"].lower() if changes["email"] else None
    for field in ("phone", "tax_id"):
        if field in changes:
            setattr(row, field, changes[field])
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="UPDATE",
        entity_type=entity_type,
        entity_id=row.id,
        old_values=old_values,
        new_values=model_snapshot(row, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(row)
    return _partner_out(row)


def _delete_partner(db: Session, model, entity_type: str, order_column, partner_id: str, access: CompanyAccess) -> None:
    row = _partner_or_404(db, model, company_id=access.company.id, partner_id=partner_id)
    if db.execute(select(Order.id).where(order_column == row.id).limit(1)).first():
        raise ConflictError(f"Cannot delete a {entity_type} with orders")
    old_values = model_snapshot(row, *_AUDITED_FIELDS)
    db.delete(row)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="DELETE",
        entity_type=entity_type,
        entity_id=old_values["id"],
        old_values=old_values,
    )
    db.commit()


@customers_router.get(
    "/{customer_id}",
    response_model=PartnerOut,
    summary="Get a customer",
    responses=error_responses(401, 403, 404, 500),
)
def get_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("customers.read")),
):
    return _partner_out(_partner_or_404(db, Customer, company_id=access.company.id, partner_id=customer_id))


@customers_router.patch(
    "/{customer_id}",
    response_model=PartnerOut,
    summary="Update a customer",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_customer(
    customer_id: str,
    payload: PartnerUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("customers.update")),
):
    return _update_partner(db, Customer, "customer", customer_id, payload, access)


@customers_router.delete(
    "/{customer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a customer",
    description="Customers referenced by orders cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("customers.delete")),
):
    _delete_partner(db, Customer, "customer", Order.customer_id, customer_id, access)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@suppliers_router.get(
    "/{supplier_id}",
    response_model=PartnerOut,
    summary="Get a supplier",
    responses=error_responses(401, 403, 404, 500),
)
def get_supplier(
    supplier_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("suppliers.read")),
):
    return _partner_out(_partner_or_404(db, Supplier, company_id=access.company.id, partner_id=supplier_id))


@suppliers_router.patch(
    "/{supplier_id}",
    response_model=PartnerOut,
    summary="Update a supplier",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_supplier(
    supplier_id: str,
    payload: PartnerUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("suppliers.update")),
):
    return _update_partner(db, Supplier, "supplier", supplier_id, payload, access)


@suppliers_router.delete(
    "/{supplier_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a supplier",
    description="Suppliers referenced by orders cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_supplier(
    supplier_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("suppliers.delete")),
):
    _delete_partner(db, Supplier, "supplier", Order.supplier_id, supplier_id, access)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
