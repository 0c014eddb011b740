from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.catalog import Category, Product
from erpledger.schemas.catalog import CategoryCreate, CategoryListOut, CategoryOut, CategoryUpdate
from erpledger.schemas.common import pagination_meta
from erpledger.services.audit_service import log_audit_event, model_snapshot

router = APIRouter(prefix="/categories", tags=["categories"])

_AUDITED_FIELDS = ("id", "name", "description", "parent_id")


def category_or_404(db: Session, *, company_id: str, category_id: str) -> Category:
    category = db.execute(
        select(Category).where(Category.id == category_id, Category.company_id == company_id)
    ).scalar_one_or_none()
    if not category:
        raise NotFoundError("Category not found")
    return category


def _ensure_parent_allowed(db: Session, *, company_id: str, category_id: str | None, parent_id: str) -> None:
    """The parent must be in the company and must not sit below `category_id`."""
    if category_id and parent_id == category_id:
        raise ValidationError("Category cannot be its own parent", field="parent_id")
    current = category_or_404(db, company_id=company_id, category_id=parent_id)
    seen = set()
    while current.parent_id and current.id not in seen:
        if current.parent_id == category_id:
            raise ValidationError("Parent would create a circular reference", field="parent_id")
        seen.add(current.id)
        current = category_or_404(db, company_id=company_id, category_id=current.parent_id)


def _category_out(category: Category) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        description=category.description,
        parent_id=category.parent_id,
        created_at=category.created_at,
        updated_at=category.updated_at,
    )


@router.post(
    "",
    response_model=CategoryOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a category",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("categories.create")),
):
    if payload.parent_id:
        _ensure_parent_allowed(db, company_id=access.company.id, category_id=None, parent_id=payload.parent_id)
    category = Category(
        id=generate_id(),
        company_id=access.company.id,
        name=payload.name.strip(),
        description=payload.description,
        parent_id=payload.parent_id,
    )
    db.add(category)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="CREATE",
        entity_type="category",
        entity_id=category.id,
        new_values=model_snapshot(category, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(category)
    return _category_out(category)


@router.get(
    "",
    response_model=CategoryListOut,
    summary="List categories",
    responses=error_responses(401, 403, 422, 500),
)
def list_categories(
    parent_id: str | None = Query(default=None, description="Only direct children of this category"),
    roots_only: bool = Query(default=False, description="Only categories without a parent"),
    q: str | None = Query(default=None, description="Search by name or description"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("categories.read")),
):
    conditions = [Category.company_id == access.company.id]
    if roots_only:
        conditions.append(Category.parent_id.is_(None))
    elif parent_id:
        conditions.append(Category.parent_id == parent_id)
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        conditions.append(
            or_(func.lower(Category.name).like(pattern), func.lower(Category.description).like(pattern))
        )

    total = int(db.execute(select(func.count(Category.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Category).where(*conditions).order_by(Category.name.asc(), Category.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [_category_out(row) for row in rows]
    return CategoryListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Get a category",
    responses=error_responses(401, 403, 404, 500),
)
def get_category(
    category_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("categories.read")),
):
    return _category_out(category_or_404(db, company_id=access.company.id, category_id=category_id))


@router.patch(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Update a category",
    description="Moving a category under one of its own descendants is rejected.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("categories.update")),
):
    category = category_or_404(db, company_id=access.company.id, category_id=category_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("parent_id"):
        _ensure_parent_allowed(
            db, company_id=access.company.id, category_id=category.id, parent_id=changes["parent_id"]
        )

    old_values = model_snapshot(category, *_AUDITED_FIELDS)
    if changes.get("name"):
        category.name = changes["name"].strip()
    for field in ("description", "parent_id"):
        if field in changes:
            setattr(category, field, changes[field])
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="UPDATE",
        entity_type="category",
        entity_id=category.id,
        old_values=old_values,
        new_values=model_snapshot(category, *_AUDITED_FIELDS),
    )
    db.commit()
    db.refresh(category)
    return _category_out(category)


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a category",
    description="Categories with subcategories or products cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("categories.delete")),
):
    category = category_or_404(db, company_id=access.company.id, category_id=category_id)
    if db.execute(select(Category.id).where(Category.parent_id == category.id).limit(1)).first():
        raise ConflictError("Cannot delete a category with subcategories")
    if db.execute(select(Product.id).where(Product.category_id == category.id).limit(1)).first():
        raise ConflictError("Cannot delete a category with products")

    old_values = model_snapshot(category, *_AUDITED_FIELDS)
    db.delete(category)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="DELETE",
        entity_type="category",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
