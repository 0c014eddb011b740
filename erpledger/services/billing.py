"""
Billing reconciliation.

Order totals are derived from their items and invoice `paid_amount` from the
payments recorded against it. Neither is ever taken from the caller. Invoice
status follows paid versus total after every payment change.
"""
import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.config import settings
from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.money import MAX_MONEY, MONEY_QUANT, ZERO_MONEY, has_excess_precision, to_money
from erpledger.core.observability import log_event
from erpledger.models.invoice import Invoice
from erpledger.models.order import Order
from erpledger.models.payment import Payment
from erpledger.services.audit_service import log_audit_event, model_snapshot
from erpledger.services.numbering import next_document_number

logger = logging.getLogger("erpledger.billing")

INVOICE_STATUSES = ("DRAFT", "ISSUED", "PAID", "PARTIALLY_PAID", "OVERDUE", "CANCELLED")
MANUAL_INVOICE_STATUSES = {"DRAFT", "ISSUED", "OVERDUE", "CANCELLED"}
PAYMENT_METHODS = ("CASH", "BANK_TRANSFER", "CARD", "ELECTRONIC", "OTHER")
_PAYMENT_MUTABLE_FIELDS = ("amount", "payment_method", "payment_date", "reference", "notes")


def line_total(quantity, price, tax_rate) -> Decimal:
    return to_money(
        Decimal(str(quantity))
        * Decimal(str(price))
        * (Decimal("1") + Decimal(str(tax_rate)) / Decimal("100"))
    )


def compute_order_total(items: Iterable) -> Decimal:
    """Sum of the rounded item totals, so the order always equals its stored lines.

    Items are (quantity, price, tax_rate) tuples or objects exposing those attributes.
    """
    total = ZERO_MONEY
    for item in items:
        if isinstance(item, tuple):
            quantity, price, tax_rate = item
        else:
            quantity, price, tax_rate = item.quantity, item.price, item.tax_rate
        total += line_total(quantity, price, tax_rate)
    return to_money(total)


def invoice_tax_amount(total: Decimal, rate_percent: Decimal | None = None) -> Decimal:
    """Tax contained in a tax-inclusive total."""
    rate = Decimal(str(settings.invoice_tax_rate_percent if rate_percent is None else rate_percent))
    return to_money(Decimal(str(total)) * rate / (Decimal("100") + rate))


def derive_invoice_status(invoice) -> str:
    status = invoice.status
    if status == "CANCELLED":
        return status
    total = to_money(invoice.total_amount or 0)
    paid = to_money(invoice.paid_amount or 0)
    if total > 0 and paid >= total:
        return "PAID"
    if ZERO_MONEY < paid < total:
        return "PARTIALLY_PAID"
    if paid == 0 and status in {"PAID", "PARTIALLY_PAID"}:
        return "ISSUED"
    return status


def get_invoice_balance(invoice) -> dict[str, Decimal]:
    total = to_money(invoice.total_amount or 0)
    paid = to_money(invoice.paid_amount or 0)
    return {
        "total": total,
        "paid": paid,
        "outstanding": to_money(max(total - paid, ZERO_MONEY)),
    }


def recompute_invoice_paid(db: Session, invoice: Invoice) -> Invoice:
    db.flush()
    paid = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice.id)
    ).scalar_one()
    invoice.paid_amount = to_money(paid)
    invoice.status = derive_invoice_status(invoice)
    db.flush()
    return invoice


def _normalize_currency(value: str) -> str:
    normalized = (value or "").strip().upper()
    if len(normalized) != 3:
        raise ValidationError("currency must be a 3-letter code", field="currency")
    return normalized


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError("amount must be a number", field="amount") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("amount must be greater than zero", field="amount")
    if value > MAX_MONEY:
        raise ValidationError(f"amount cannot exceed {MAX_MONEY}", field="amount")
    if has_excess_precision(value, MONEY_QUANT):
        raise ValidationError("amount supports at most 2 decimal places", field="amount")
    return to_money(value)


def _validate_payment_method(method: str) -> str:
    normalized = (method or "").strip().upper()
    if normalized not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )
    return normalized


def invoice_or_404(db: Session, *, company_id: str, invoice_id: str, lock: bool = False) -> Invoice:
    stmt = select(Invoice).where(Invoice.id == invoice_id, Invoice.company_id == company_id)
    if lock:
        stmt = stmt.with_for_update()
    invoice = db.execute(stmt).scalar_one_or_none()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def payment_or_404(db: Session, *, company_id: str, payment_id: str) -> Payment:
    payment = db.execute(
        select(Payment).where(Payment.id == payment_id, Payment.company_id == company_id)
    ).scalar_one_or_none()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def _log_payment_event(event: str, payment: Payment, invoice: Invoice | None) -> None:
    log_event(
        logger,
        event,
        company_id=payment.company_id,
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        amount=str(payment.amount),
        invoice_paid_amount=str(invoice.paid_amount) if invoice else None,
        invoice_status=invoice.status if invoice else None,
    )


def record_payment(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    amount: Decimal | int | str,
    payment_method: str,
    invoice_id: str | None = None,
    currency: str | None = None,
    payment_date: datetime | None = None,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    value = _validate_amount(amount)
    method = _validate_payment_method(payment_method)

    invoice = None
    if invoice_id:
        invoice = invoice_or_404(db, company_id=company_id, invoice_id=invoice_id, lock=True)
        if invoice.status == "CANCELLED":
            raise ConflictError("Cannot record a payment against a cancelled invoice")

    resolved_currency = _normalize_currency(
        currency or (invoice.currency if invoice else settings.default_currency)
    )
    if invoice:
        if resolved_currency != invoice.currency:
            raise ValidationError(
                f"Payment currency must match invoice currency {invoice.currency}",
                field="currency",
            )
        outstanding = get_invoice_balance(invoice)["outstanding"]
        if value > outstanding:
            raise ValidationError(
                f"Payment amount exceeds outstanding balance {outstanding}",
                field="amount",
            )

    payment = Payment(
        id=generate_id(),
        company_id=company_id,
        invoice_id=invoice.id if invoice else None,
        amount=value,
        currency=resolved_currency,
        payment_method=method,
        payment_date=payment_date or datetime.now(timezone.utc),
        reference=reference,
        notes=notes,
        created_by_id=actor_user_id,
    )
    db.add(payment)
    if invoice:
        recompute_invoice_paid(db, invoice)
    else:
        db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="CREATE",
        entity_type="payment",
        entity_id=payment.id,
        new_values=model_snapshot(payment),
    )
    _log_payment_event("payment.recorded", payment, invoice)
    return payment


def update_payment(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    payment_id: str,
    changes: dict[str, Any],
) -> Payment:
    unknown = set(changes) - set(_PAYMENT_MUTABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
    if "payment_date" in changes and changes["payment_date"] is None:
        raise ValidationError("payment_date cannot be empty", field="payment_date")

    payment = payment_or_404(db, company_id=company_id, payment_id=payment_id)
    invoice = None
    if payment.invoice_id:
        invoice = invoice_or_404(db, company_id=company_id, invoice_id=payment.invoice_id, lock=True)
    old_values = model_snapshot(payment)

    if "amount" in changes:
        value = _validate_amount(changes["amount"])
        if invoice:
            # The payment's own amount is already part of paid_amount.
            headroom = get_invoice_balance(invoice)["outstanding"] + to_money(payment.amount)
            if value > headroom:
                raise ValidationError(
                    f"Payment amount exceeds outstanding balance {headroom}",
                    field="amount",
                )
        payment.amount = value
    if "payment_method" in changes:
        payment.payment_method = _validate_payment_method(changes["payment_method"])
    for field in ("payment_date", "reference", "notes"):
        if field in changes:
            setattr(payment, field, changes[field])

    if invoice:
        recompute_invoice_paid(db, invoice)
    else:
        db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="UPDATE",
        entity_type="payment",
        entity_id=payment.id,
        old_values=old_values,
        new_values=model_snapshot(payment),
    )
    _log_payment_event("payment.updated", payment, invoice)
    return payment


def delete_payment(db: Session, *, company_id: str, actor_user_id: str, payment_id: str) -> None:
    payment = payment_or_404(db, company_id=company_id, payment_id=payment_id)
    invoice = None
    if payment.invoice_id:
        invoice = invoice_or_404(db, company_id=company_id, invoice_id=payment.invoice_id, lock=True)
    old_values = model_snapshot(payment)

    db.delete(payment)
    if invoice:
        recompute_invoice_paid(db, invoice)
    else:
        db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="DELETE",
        entity_type="payment",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    _log_payment_event("payment.deleted", payment, invoice)


def create_invoice(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    base_currency: str,
    order_id: str | None = None,
    total_amount: Decimal | None = None,
    currency: str | None = None,
    status: str = "DRAFT",
    due_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    if status not in {"DRAFT", "ISSUED"}:
        raise ValidationError("A new invoice must be DRAFT or ISSUED", field="status")

    if order_id:
        if total_amount is not None:
            raise ValidationError(
                "total_amount is taken from the linked order and cannot be supplied",
                field="total_amount",
            )
        order = db.execute(
            select(Order).where(Order.id == order_id, Order.company_id == company_id)
        ).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        if order.status == "CANCELLED":
            raise ConflictError("Cannot invoice a cancelled order")
        already_invoiced = db.execute(
            select(Invoice.id).where(Invoice.order_id == order.id)
        ).scalar_one_or_none()
        if already_invoiced:
            raise ConflictError("Order already has an invoice")
        if currency and _normalize_currency(currency) != order.currency:
            raise ValidationError(
                f"Invoice currency must match order currency {order.currency}",
                field="currency",
            )
        total = to_money(order.total_amount)
        resolved_currency = order.currency
    else:
        if total_amount is None:
            raise ValidationError(
                "Either order_id or total_amount is required",
                field="total_amount",
            )
        total = _validate_amount(total_amount)
        resolved_currency = _normalize_currency(currency or base_currency)

    if total <= 0:
        raise ValidationError("Invoice total must be greater than zero", field="total_amount")

    invoice = Invoice(
        id=generate_id(),
        company_id=company_id,
        order_id=order_id,
        invoice_number=next_document_number(
            db,
            number_column=Invoice.invoice_number,
            company_column=Invoice.company_id,
            company_id=company_id,
            prefix="INV",
        ),
        status=status,
        currency=resolved_currency,
        total_amount=total,
        paid_amount=ZERO_MONEY,
        tax_amount=invoice_tax_amount(total),
        issued_date=datetime.now(timezone.utc).date() if status == "ISSUED" else None,
        due_date=due_date,
        notes=notes,
    )
    db.add(invoice)
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="CREATE",
        entity_type="invoice",
        entity_id=invoice.id,
        new_values=model_snapshot(invoice),
    )
    log_event(
        logger,
        "invoice.created",
        company_id=company_id,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        total_amount=str(total),
    )
    return invoice


def _validate_manual_status(invoice: Invoice, new_status: str) -> None:
    if new_status not in MANUAL_INVOICE_STATUSES:
        raise ValidationError(
            "PAID and PARTIALLY_PAID are derived from payments and cannot be set manually",
            field="status",
        )
    if invoice.status == "CANCELLED":
        raise ConflictError("Cancelled invoices cannot change status")

    balance = get_invoice_balance(invoice)
    if balance["paid"] > 0 and new_status in {"DRAFT", "ISSUED", "CANCELLED"}:
        raise ConflictError(f"Invoice has payments and cannot be set to {new_status}")
    if new_status == "OVERDUE" and balance["outstanding"] <= 0:
        raise ValidationError("Only invoices with an outstanding balance can be OVERDUE", field="status")


def update_invoice(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    invoice_id: str,
    changes: dict[str, Any],
) -> Invoice:
    invoice = invoice_or_404(db, company_id=company_id, invoice_id=invoice_id, lock=True)
    old_values = model_snapshot(invoice)

    new_status = changes.get("status")
    if new_status and new_status != invoice.status:
        _validate_manual_status(invoice, new_status)
        invoice.status = new_status
        if new_status == "ISSUED" and invoice.issued_date is None:
            invoice.issued_date = datetime.now(timezone.utc).date()
    if "due_date" in changes:
        invoice.due_date = changes["due_date"]
    if "notes" in changes:
        invoice.notes = changes["notes"]
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="UPDATE",
        entity_type="invoice",
        entity_id=invoice.id,
        old_values=old_values,
        new_values=model_snapshot(invoice),
    )
    return invoice


def delete_invoice(db: Session, *, company_id: str, actor_user_id: str, invoice_id: str) -> None:
    invoice = invoice_or_404(db, company_id=company_id, invoice_id=invoice_id, lock=True)
    has_payments = db.execute(
        select(Payment.id).where(Payment.invoice_id == invoice.id).limit(1)
    ).first()
    if has_payments:
        raise ConflictError("Cannot delete an invoice with payments")
    old_values = model_snapshot(invoice)

    db.delete(invoice)
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="DELETE",
        entity_type="invoice",
        entity_id=old_values["id"],
        old_values=old_values,
    )
    log_event(
        logger,
        "invoice.deleted",
        company_id=company_id,
        invoice_id=old_values["id"],
        invoice_number=old_values["invoice_number"],
    )
