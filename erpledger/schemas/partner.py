from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from erpledger.schemas.common import PaginationMeta


class PartnerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    tax_id: Optional[str] = Field(default=None, max_length=40)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "OOO Romashka",
                "email": "buyer@romashka.example",
                "phone": "+7 900 000-00-00",
                "tax_id": "7701234567",
            }
        }
    )


class PartnerOut(BaseModel):
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    tax_id: str | None = None
    created_at: datetime


class PartnerListOut(BaseModel):
    items: list[PartnerOut]
    pagination: PaginationMeta


class PartnerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    tax_id: Optional[str] = Field(default=None, max_length=40)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "PartnerUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"phone": "+7 900 111-22-33"}
        }
    )
