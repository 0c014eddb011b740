from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.deps import get_db
from erpledger.core.errors import ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.permissions import require_permission
from erpledger.core.security import hash_password
from erpledger.core.security_current import CompanyAccess
from erpledger.models.company_membership import CompanyMembership
from erpledger.models.user import User
from erpledger.schemas.common import pagination_meta
from erpledger.schemas.team import TeamMemberCreateIn, TeamMemberListOut, TeamMemberOut
from erpledger.services.audit_service import log_audit_event

router = APIRouter(prefix="/team", tags=["team"])


def _member_out(membership: CompanyMembership, user: User) -> TeamMemberOut:
    return TeamMemberOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=membership.role,
        is_active=membership.is_active,
        created_at=membership.created_at,
    )


@router.post(
    "/members",
    response_model=TeamMemberOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a team member",
    description="Creates a user account inside the current company with the given role.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_team_member(
    payload: TeamMemberCreateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("team.manage")),
):
    normalized_email = payload.email.lower()
    exists = db.execute(
        select(User.id).where(func.lower(User.email) == normalized_email)
    ).scalar_one_or_none()
    if exists:
        raise ValidationError("Email already registered", field="email")

    user = User(
        email=normalized_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    membership = CompanyMembership(
        id=generate_id(),
        company_id=access.company.id,
        user_id=user.id,
        role=payload.role,
        is_active=True,
    )
    db.add(membership)
    db.flush()
    log_audit_event(
        db,
        company_id=access.company.id,
        actor_user_id=access.user.id,
        action="CREATE",
        entity_type="company_membership",
        entity_id=membership.id,
        new_values={"user_id": user.id, "email": user.email, "role": membership.role},
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, user)


@router.get(
    "/members",
    response_model=TeamMemberListOut,
    summary="List team members",
    responses=error_responses(401, 403, 422, 500),
)
def list_team_members(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_permission("team.manage")),
):
    total = int(
        db.execute(
            select(func.count(CompanyMembership.id)).where(CompanyMembership.company_id == access.company.id)
        ).scalar_one()
    )
    rows = db.execute(
        select(CompanyMembership, User)
        .join(User, User.id == CompanyMembership.user_id)
        .where(CompanyMembership.company_id == access.company.id)
        .order_by(CompanyMembership.created_at.asc(), CompanyMembership.id.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [_member_out(membership, user) for membership, user in rows]
    return TeamMemberListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )
