from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from erpledger.core.config import settings
from erpledger.core.security_current import CompanyAccess, get_current_company_access

ROLES = ("admin", "manager", "accountant", "warehouse")

DEFAULT_PERMISSION_MATRIX: dict[str, set[str]] = {
    "admin": {"*"},
    "manager": {
        "categories.create",
        "categories.read",
        "categories.update",
        "categories.delete",
        "products.create",
        "products.read",
        "products.update",
        "products.delete",
        "orders.create",
        "orders.read",
        "orders.update",
        "orders.delete",
        "customers.create",
        "customers.read",
        "customers.update",
        "customers.delete",
        "suppliers.create",
        "suppliers.read",
        "suppliers.update",
        "suppliers.delete",
        "warehouses.read",
        "stock.read",
    },
    "accountant": {
        "invoices.create",
        "invoices.read",
        "invoices.update",
        "invoices.delete",
        "payments.create",
        "payments.read",
        "payments.update",
        "orders.read",
    },
    "warehouse": {
        "warehouses.read",
        "warehouses.update",
        "categories.read",
        "products.read",
        "orders.read",
        "stock_movements.create",
        "stock_movements.read",
        "stock.read",
    },
}


def role_permissions(role: str) -> set[str]:
    normalized = (role or "").strip().lower()
    overrides = settings.role_permissions or {}
    if normalized in overrides:
        return set(overrides[normalized])
    return set(DEFAULT_PERMISSION_MATRIX.get(normalized, set()))


def has_permission(*, role: str, permission: str) -> bool:
    permissions = role_permissions(role)
    if "*" in permissions:
        return True
    return permission in permissions


def require_permission(permission: str) -> Callable[[CompanyAccess], CompanyAccess]:
    normalized_permission = (permission or "").strip().lower()
    if not normalized_permission:
        raise ValueError("Permission key is required")

    def dependency(access: CompanyAccess = Depends(get_current_company_access)) -> CompanyAccess:
        if not has_permission(role=access.role, permission=normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return access

    return dependency
