from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ValidationError
from erpledger.core.permissions import require_permission
from erpledger.core.security_current import CompanyAccess
from erpledger.models.audit_log import AuditLog
from erpledger.schemas.audit import AuditLogListOut, AuditLogOut
from erpledger.schemas.common import pagination_meta

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get(
    "",
    response_model=AuditLogListOut,
    summary="List audit logs",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_audit_logs(
    actor_user_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("audit.read")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    conditions = [AuditLog.company_id == access.company.id]
    if actor_user_id:
        conditions.append(AuditLog.actor_user_id == actor_user_id)
    if action:
        conditions.append(AuditLog.action == action.strip().upper())
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if entity_id:
        conditions.append(AuditLog.entity_id == entity_id)
    if start_date:
        conditions.append(func.date(AuditLog.created_at) >= start_date)
    if end_date:
        conditions.append(func.date(AuditLog.created_at) <= end_date)

    total = int(db.execute(select(func.count(AuditLog.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    items = [
        AuditLogOut(
            id=row.id,
            actor_user_id=row.actor_user_id,
            action=row.action,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            old_values=row.old_values,
            new_values=row.new_values,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return AuditLogListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )
