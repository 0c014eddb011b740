from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from erpledger.core.money import MAX_MONEY
from erpledger.schemas.common import PaginationMeta

InvoiceStatus = Literal["DRAFT", "ISSUED", "PAID", "PARTIALLY_PAID", "OVERDUE", "CANCELLED"]


class InvoiceCreate(BaseModel):
    order_id: Optional[str] = None
    total_amount: Optional[Decimal] = Field(default=None, gt=0, le=MAX_MONEY)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    status: Literal["DRAFT", "ISSUED"] = "DRAFT"
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "order_id": "order-id-here",
                "status": "ISSUED",
                "due_date": "2026-04-30",
            }
        }
    )


class InvoiceUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "InvoiceUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"status": "ISSUED"}
        }
    )


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    order_id: str | None = None
    status: str
    currency: str
    total_amount: float
    paid_amount: float
    outstanding_amount: float
    tax_amount: float
    issued_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class InvoiceListOut(BaseModel):
    items: list[InvoiceOut]
    pagination: PaginationMeta


class InvoiceBalanceOut(BaseModel):
    invoice_id: str
    status: str
    currency: str
    total: float
    paid: float
    outstanding: float

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "invoice_id": "invoice-id",
                "status": "PARTIALLY_PAID",
                "currency": "RUB",
                "total": 1000.0,
                "paid": 700.0,
                "outstanding": 300.0,
            }
        }
    )
