from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator

from erpledger.schemas.common import PaginationMeta

ALLOWED_TEAM_ROLES = {"admin", "manager", "accountant", "warehouse"}


class TeamMemberCreateIn(BaseModel):
    email: EmailStr
    password: str
    first_name: str | None = None
    last_name: str | None = None
    role: str = "manager"

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        role = value.strip().lower()
        if role not in ALLOWED_TEAM_ROLES:
            raise ValueError("role must be one of: admin, manager, accountant, warehouse")
        return role

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "storekeeper@example.com",
                "password": "password123",
                "first_name": "Ivan",
                "last_name": "Sidorov",
                "role": "warehouse",
            }
        }
    )


class TeamMemberOut(BaseModel):
    membership_id: str
    user_id: str
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    role: str
    is_active: bool
    created_at: datetime


class TeamMemberListOut(BaseModel):
    items: list[TeamMemberOut]
    pagination: PaginationMeta
