from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ValidationError
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.payment import Payment
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.payment import PaymentCreate, PaymentListOut, PaymentOut, PaymentUpdate
from erpledger.services import billing

router = APIRouter(prefix="/payments", tags=["payments"])


def _payment_out(payment: Payment) -> PaymentOut:
    return PaymentOut(
        id=payment.id,
        invoice_id=payment.invoice_id,
        amount=float(payment.amount),
        currency=payment.currency,
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        reference=payment.reference,
        notes=payment.notes,
        created_by_id=payment.created_by_id,
        created_at=payment.created_at,
    )


@router.post(
    "",
    response_model=PaymentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
    description="Records a payment and, when linked to an invoice, recomputes the invoice paid amount and status.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("payments.create")),
):
    payment = billing.record_payment(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        invoice_id=payload.invoice_id,
        amount=payload.amount,
        currency=payload.currency or (None if payload.invoice_id else access.company.base_currency),
        payment_method=payload.payment_method,
        payment_date=payload.payment_date,
        reference=payload.reference,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(payment)
    return _payment_out(payment)


@router.get(
    "",
    response_model=PaymentListOut,
    summary="List payments",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_payments(
    invoice_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("payments.read")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    conditions = [Payment.company_id == access.company.id]
    if invoice_id:
        conditions.append(Payment.invoice_id == invoice_id)
    if start_date:
        conditions.append(func.date(Payment.payment_date) >= start_date)
    if end_date:
        conditions.append(func.date(Payment.payment_date) <= end_date)

    total = int(db.execute(select(func.count(Payment.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Payment)
        .where(*conditions)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_payment_out(row) for row in rows]
    return PaymentListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{payment_id}",
    response_model=PaymentOut,
    summary="Get a payment",
    responses=error_responses(401, 403, 404, 500),
)
def get_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("payments.read")),
):
    return _payment_out(billing.payment_or_404(db, company_id=access.company.id, payment_id=payment_id))


@router.patch(
    "/{payment_id}",
    response_model=PaymentOut,
    summary="Update a payment",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_payment(
    payment_id: str,
    payload: PaymentUpdate,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("payments.update")),
):
    payment = billing.update_payment(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        payment_id=payment_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(payment)
    return _payment_out(payment)


@router.delete(
    "/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a payment",
    responses=error_responses(401, 403, 404, 500),
)
def delete_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("payments.delete")),
):
    billing.delete_payment(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        payment_id=payment_id,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
