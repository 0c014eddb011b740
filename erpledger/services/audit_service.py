import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from erpledger.core.observability import get_client_info
from erpledger.models.audit_log import AuditLog

AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE")


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def model_snapshot(row: Any, *fields: str) -> dict[str, Any]:
    """JSON-serializable copy of a mapped row; every column unless fields are named."""
    names = fields or tuple(column.key for column in row.__table__.columns)
    return {name: _json_safe(getattr(row, name)) for name in names}


def log_audit_event(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> AuditLog:
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unsupported audit action: {action}")

    ip_address, user_agent = get_client_info()
    event = AuditLog(
        id=str(uuid.uuid4()),
        company_id=company_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
    )
    db.add(event)
    return event
