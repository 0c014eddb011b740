from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from erpledger.schemas.common import PaginationMeta


class WarehouseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    address: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Main warehouse",
                "address": "12 Lenina St, Kazan",
            }
        }
    )


class WarehouseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    address: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "WarehouseUpdate":
        if self.name is None and self.address is None and self.is_active is None:
            raise ValueError("At least one field must be provided")
        return self


class WarehouseOut(BaseModel):
    id: str
    name: str
    address: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WarehouseListOut(BaseModel):
    items: list[WarehouseOut]
    pagination: PaginationMeta


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    sku: Optional[str] = Field(default=None, max_length=64)
    unit: str = Field(default="pcs", min_length=1, max_length=20)
    is_service: bool = False
    category_id: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Steel bolt M8",
                "sku": "BOLT-M8",
                "unit": "pcs",
                "is_service": False,
            }
        }
    )


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    sku: Optional[str] = Field(default=None, max_length=64)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    is_active: Optional[bool] = None
    category_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ProductUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ProductOut(BaseModel):
    id: str
    name: str
    sku: str | None = None
    category_id: str | None = None
    unit: str
    is_service: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Fasteners",
                "description": "Bolts, nuts and washers",
            }
        }
    )


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "CategoryUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class CategoryOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    parent_id: str | None = None
    created_at: datetime
    updated_at: datetime


class CategoryListOut(BaseModel):
    items: list[CategoryOut]
    pagination: PaginationMeta
