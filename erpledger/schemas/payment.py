from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from erpledger.schemas.common import PaginationMeta

PaymentMethod = Literal["CASH", "BANK_TRANSFER", "CARD", "ELECTRONIC", "OTHER"]


class PaymentCreate(BaseModel):
    invoice_id: Optional[str] = None
    amount: Decimal
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_method: PaymentMethod
    payment_date: Optional[datetime] = None
    reference: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "invoice_id": "invoice-id-here",
                "amount": 300,
                "currency": "RUB",
                "payment_method": "BANK_TRANSFER",
                "reference": "PP-1042",
            }
        }
    )


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    payment_date: Optional[datetime] = None
    reference: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "PaymentUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class PaymentOut(BaseModel):
    id: str
    invoice_id: str | None = None
    amount: float
    currency: str
    payment_method: str
    payment_date: datetime
    reference: str | None = None
    notes: str | None = None
    created_by_id: str
    created_at: datetime


class PaymentListOut(BaseModel):
    items: list[PaymentOut]
    pagination: PaginationMeta
