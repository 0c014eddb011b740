import json
from decimal import Decimal
from typing import List, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ERP Ledger Backend"
    env: str = "dev"
    log_level: str = "INFO"
    secret_key: str
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 14

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # BILLING
    default_currency: str = "RUB"
    invoice_tax_rate_percent: Decimal = Field(default=Decimal("20"), ge=0, le=100)

    # INVENTORY
    stock_allow_negative: bool = False

    # PERMISSIONS
    # JSON object mapping role name -> list of permission keys, replaces the built-in matrix per role.
    role_permissions: dict[str, list[str]] | None = None

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator("role_permissions", mode="before")
    @classmethod
    def parse_role_permissions(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            if not v.strip():
                return None
            v = json.loads(v)
        if not isinstance(v, dict):
            raise ValueError("ROLE_PERMISSIONS must be a JSON object of role -> permission list")
        parsed: dict[str, list[str]] = {}
        for role, permissions in v.items():
            if not isinstance(permissions, list):
                raise ValueError(f"ROLE_PERMISSIONS entry for '{role}' must be a list")
            parsed[str(role).strip().lower()] = [str(p).strip().lower() for p in permissions if str(p).strip()]
        return parsed

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        cleaned = (value or "").strip().upper()
        if cleaned not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR")
        return cleaned

    @field_validator("default_currency")
    @classmethod
    def normalize_default_currency(cls, value: str) -> str:
        cleaned = (value or "").strip().upper()
        if len(cleaned) != 3:
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter code")
        return cleaned

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")
        if self.stock_allow_negative:
            raise ValueError("STOCK_ALLOW_NEGATIVE cannot be enabled in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
