from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator


def _clean_required(value: str, field_name: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{field_name} is required")
    return cleaned


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    first_name: str
    last_name: str
    company_name: str
    base_currency: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("first_name")
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        return _clean_required(value, "first_name")

    @field_validator("last_name")
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        return _clean_required(value, "last_name")

    @field_validator("company_name")
    @classmethod
    def validate_company_name(cls, value: str) -> str:
        return _clean_required(value, "company_name")

    @field_validator("base_currency")
    @classmethod
    def normalize_base_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().upper()
        if len(cleaned) != 3:
            raise ValueError("base_currency must be a 3-letter code")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "admin@example.com",
                "password": "password123",
                "first_name": "Anna",
                "last_name": "Petrova",
                "company_name": "Petrova Trading",
                "base_currency": "RUB",
            }
        }
    )


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _clean_required(value, "email")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "admin@example.com",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshIn(BaseModel):
    refresh_token: str

    @field_validator("refresh_token")
    @classmethod
    def validate_refresh_token(cls, value: str) -> str:
        return _clean_required(value, "refresh_token")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"refresh_token": "paste-refresh-token-here"}
        }
    )


class MeOut(BaseModel):
    id: str
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    company_id: str
    company_name: str
    base_currency: str
    role: str
    created_at: datetime
