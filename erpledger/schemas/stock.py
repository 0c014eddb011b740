from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from erpledger.schemas.common import PaginationMeta

MovementType = Literal["IN", "OUT", "TRANSFER", "ADJUSTMENT", "RESERVED", "UNRESERVED"]


class StockMovementCreate(BaseModel):
    warehouse_id: str
    product_id: str
    movement_type: MovementType
    quantity: Decimal = Field(
        ...,
        description="Positive amount; ADJUSTMENT takes a signed non-zero delta. At most 3 decimal places.",
    )
    reference_id: Optional[str] = Field(default=None, max_length=36)
    reference_type: Optional[str] = Field(default=None, max_length=30)
    notes: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "warehouse_id": "warehouse-id-here",
                "product_id": "product-id-here",
                "movement_type": "IN",
                "quantity": 10,
                "notes": "Initial receipt",
            }
        }
    )


class StockMovementOut(BaseModel):
    id: str
    warehouse_id: str
    product_id: str
    movement_type: str
    quantity: float
    reference_id: str | None = None
    reference_type: str | None = None
    notes: str | None = None
    created_by_id: str
    created_at: datetime


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class StockLevelOut(BaseModel):
    warehouse_id: str
    product_id: str
    quantity: float
    reserved: float
    available: float
    last_movement_at: datetime | None = None


class StockLevelListOut(BaseModel):
    items: list[StockLevelOut]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [
                    {
                        "warehouse_id": "warehouse-id",
                        "product_id": "product-id",
                        "quantity": 7.0,
                        "reserved": 2.0,
                        "available": 5.0,
                        "last_movement_at": "2026-03-01T10:00:00Z",
                    }
                ]
            }
        }
    )


class StockRecalculateOut(BaseModel):
    recalculated_count: int
    corrected_count: int


class StockTransferCreate(BaseModel):
    from_warehouse_id: str
    to_warehouse_id: str
    product_id: str
    quantity: Decimal
    notes: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "from_warehouse_id": "source-warehouse-id",
                "to_warehouse_id": "target-warehouse-id",
                "product_id": "product-id-here",
                "quantity": 4,
                "notes": "Restock shop floor",
            }
        }
    )


class StockTransferOut(BaseModel):
    reference_id: str
    out_movement: StockMovementOut
    in_movement: StockMovementOut
