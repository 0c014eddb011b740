from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from erpledger.core.money import MAX_MONEY, MAX_QUANTITY
from erpledger.schemas.common import PaginationMeta
from erpledger.schemas.stock import StockMovementOut

OrderStatus = Literal["DRAFT", "PENDING", "CONFIRMED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]


class OrderItemIn(BaseModel):
    product_id: str
    quantity: Decimal = Field(gt=0, le=MAX_QUANTITY)
    price: Decimal = Field(ge=0, le=MAX_MONEY)
    tax_rate: Decimal = Field(default=Decimal("20"), ge=0, le=100)


class OrderCreate(BaseModel):
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    status: Literal["DRAFT", "PENDING"] = "DRAFT"
    notes: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = None
    items: list[OrderItemIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_id": "customer-id-here",
                "currency": "RUB",
                "notes": "Deliver before noon",
                "items": [
                    {"product_id": "product-id-here", "quantity": 2, "price": 100, "tax_rate": 20},
                    {"product_id": "other-product-id", "quantity": 1, "price": 50, "tax_rate": 10},
                ],
            }
        }
    )


class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    notes: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = None
    items: Optional[list[OrderItemIn]] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "OrderUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "CONFIRMED",
            }
        }
    )


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    quantity: float
    price: float
    tax_rate: float
    total: float


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_id: str | None = None
    supplier_id: str | None = None
    status: str
    currency: str
    total_amount: float
    notes: str | None = None
    due_date: date | None = None
    created_by_id: str
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemOut]


class OrderListOut(BaseModel):
    items: list[OrderOut]
    pagination: PaginationMeta


class OrderStockActionIn(BaseModel):
    warehouse_id: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"warehouse_id": "warehouse-id-here"}
        }
    )


class OrderStockActionOut(BaseModel):
    order_id: str
    status: str
    movements: list[StockMovementOut]
