from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ValidationError
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.invoice import Invoice
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.invoice import (
    InvoiceBalanceOut,
    InvoiceCreate,
    InvoiceListOut,
    InvoiceOut,
    InvoiceStatus,
    InvoiceUpdate,
)
from erpledger.services import billing

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _invoice_out(invoice: Invoice) -> InvoiceOut:
    balance = billing.get_invoice_balance(invoice)
    return InvoiceOut(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        order_id=invoice.order_id,
        status=invoice.status,
        currency=invoice.currency,
        total_amount=float(balance["total"]),
        paid_amount=float(balance["paid"]),
        outstanding_amount=float(balance["outstanding"]),
        tax_amount=float(invoice.tax_amount),
        issued_date=invoice.issued_date,
        due_date=invoice.due_date,
        notes=invoice.notes,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
    )


@router.post(
    "",
    response_model=InvoiceOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an invoice",
    description="Invoices an order (total taken from the order) or a standalone amount.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.create")),
):
    invoice = billing.create_invoice(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        base_currency=access.company.base_currency,
        order_id=payload.order_id,
        total_amount=payload.total_amount,
        currency=payload.currency,
        status=payload.status,
        due_date=payload.due_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(invoice)
    return _invoice_out(invoice)


@router.get(
    "",
    response_model=InvoiceListOut,
    summary="List invoices",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_invoices(
    status_filter: InvoiceStatus | None = Query(default=None, alias="status"),
    order_id: str | None = Query(default=None),
    due_before: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.read")),
):
    conditions = [Invoice.company_id == access.company.id]
    if status_filter:
        conditions.append(Invoice.status == status_filter)
    if order_id:
        conditions.append(Invoice.order_id == order_id)
    if due_before:
        conditions.append(Invoice.due_date <= due_before)

    total = int(db.execute(select(func.count(Invoice.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Invoice)
        .where(*conditions)
        .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_invoice_out(row) for row in rows]
    return InvoiceListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceOut,
    summary="Get an invoice",
    responses=error_responses(401, 403, 404, 500),
)
def get_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.read")),
):
    return _invoice_out(billing.invoice_or_404(db, company_id=access.company.id, invoice_id=invoice_id))


@router.get(
    "/{invoice_id}/balance",
    response_model=InvoiceBalanceOut,
    summary="Invoice balance",
    description="Total, paid (sum of payments) and outstanding amount of an invoice.",
    responses=error_responses(401, 403, 404, 500),
)
def get_invoice_balance(
    invoice_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.read")),
):
    invoice = billing.invoice_or_404(db, company_id=access.company.id, invoice_id=invoice_id)
    balance = billing.get_invoice_balance(invoice)
    return InvoiceBalanceOut(
        invoice_id=invoice.id,
        status=invoice.status,
        currency=invoice.currency,
        total=float(balance["total"]),
        paid=float(balance["paid"]),
        outstanding=float(balance["outstanding"]),
    )


@router.patch(
    "/{invoice_id}",
    response_model=InvoiceOut,
    summary="Update an invoice",
    description=(
        "Sets DRAFT, ISSUED, OVERDUE or CANCELLED by hand, or edits due date and notes. "
        "PAID and PARTIALLY_PAID follow from payments."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.update")),
):
    changes = payload.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is None:
        raise ValidationError("status cannot be empty", field="status")
    invoice = billing.update_invoice(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        invoice_id=invoice_id,
        changes=changes,
    )
    db.commit()
    db.refresh(invoice)
    return _invoice_out(invoice)


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete an invoice",
    description="Only invoices without payments can be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("invoices.delete")),
):
    billing.delete_invoice(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        invoice_id=invoice_id,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
