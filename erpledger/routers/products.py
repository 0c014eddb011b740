from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ConflictError, NotFoundError
from erpledger.core.id_utils import generate_id
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.catalog import Product
from erpledger.models.order import OrderItem
from erpledger.models.stock import StockLevel, StockMovement
from erpledger.routers.categories import category_or_404
from erpledger.schemas.catalog import ProductCreate, ProductListOut, ProductOut, ProductUpdate
from erpledger.schemas.common import pagination_meta
from erpledger.services.audit_service import log_audit_event, model_snapshot

router = APIRouter(prefix="/products", tags=["products"])

_AUDITED_FIELDS = ("id", "name", "sku", "unit", "category_id", "is_service", "is_active")


def _product_or_404(db: Session, *, company_id: str, product_id: str) -> Product:
    product = db.execute(
        select(Product).where(Product.id == product_id, Product.company_id == company_id)
    ).scalar_one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _ensure_sku_available(db: Session, *, company_id: str, sku: str | None, exclude_id: str | None = None) -> None:
    if not sku:
        return
    stmt = select(Product.id).where(
        Product.company_id == company_id,
        func.lower(Product.sku) == sku.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Product.id != exclude_id)
    if db.execute(stmt).first():
        raise ConflictError("SKU already exists")


def _product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        sku=product.sku,
        category_id=product.category_id,
        unit=product.unit,
        is_service=product.is_service,
        is_active=product.is_active,
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


@router.post(
    "",
    response_model=ProductOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("products.create")),
):
    _ensure_sku_available(db, company_id=access.company.id, sku=payload.sku)
    if payload.category_id:
        category_or_404(db, company_id=access.company.id, category_id=payload.category_id)
    product = Product(
        id=generate_id(),
        company_id=access.company.id,
        name=payload.name.strip(),
        sku=payload.sku,
        unit=payload.unit.strip(),
        category_id=payload.category_id,
        is_service=payload.is_service,
        is_active=True,
    )
    db.add(product)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="CREATE",
        entity_type="product",
        entity_id=product.id,
        new_values=model_snapshot(product, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(product)
    return _product_out(product)


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products",
    responses=error_responses(401, 403, 422, 500),
)
def list_products(
    q: str | None = Query(default=None, description="Search by name or SKU"),
    category_id: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("products.read")),
):
    conditions = [Product.company_id == access.company.id]
    if category_id:
        conditions.append(Product.category_id == category_id)
    if is_active is not None:
        conditions.append(Product.is_active.is_(is_active))
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        conditions.append(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))

    total = int(db.execute(select(func.count(Product.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Product)
        .where(*conditions)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_product_out(row) for row in rows]
    return ProductListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{product_id}",
    response_model=ProductOut,
    summary="Get a product",
    responses=error_responses(401, 403, 404, 500),
)
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("products.read")),
):
    return _product_out(_product_or_404(db, company_id=access.company.id, product_id=product_id))


@router.patch(
    "/{product_id}",
    response_model=ProductOut,
    summary="Update a product",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("products.update")),
):
    product = _product_or_404(db, company_id=access.company.id, product_id=product_id)
    changes = payload.model_dump(exclude_unset=True)
    if "sku" in changes:
        changes["sku"] = (changes["sku"] or "").strip() or None
        _ensure_sku_available(db, company_id=access.company.id, sku=changes["sku"], exclude_id=product.id)
    if changes.get("category_id"):
        category_or_404(db, company_id=access.company.id, category_id=changes["category_id"])

    old_values = model_snapshot(product, *_AUDITED_FIELDS)
    for field, value in changes.items():
        if value is None and field not in {"sku", "category_id"}:
            continue
        setattr(product, field, value)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="UPDATE",
        entity_type="product",
        entity_id=product.id,
        old_values=old_values,
        new_values=model_snapshot(product, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(product)
    return _product_out(product)


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a product",
    description="Products used in orders or stock movements cannot be deleted; deactivate them instead.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("products.delete")),
):
    product = _product_or_404(db, company_id=access.company.id, product_id=product_id)
    if db.execute(select(OrderItem.id).where(OrderItem.product_id == product.id).limit(1)).first():
        raise ConflictError("Cannot delete a product used in orders")
    if db.execute(select(StockMovement.id).where(StockMovement.product_id == product.id).limit(1)).first():
        raise ConflictError("Cannot delete a product with stock movements")

    old_values = model_snapshot(product, *_AUDITED_FIELDS)
    db.execute(delete(StockLevel).where(StockLevel.product_id == product.id))
    db.delete(product)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="DELETE",
        entity_type="product",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
