from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from erpledger.core.deps import get_db
from erpledger.core.security import ACCESS_TOKEN, TokenClaims, TokenValidationError, read_token
from erpledger.models.company import Company
from erpledger.models.company_membership import CompanyMembership
from erpledger.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class CompanyAccess:
    company: Company
    role: str
    membership_id: str
    user: User


def _membership_role_rank():
    return case(
        (CompanyMembership.role == "admin", 0),
        (CompanyMembership.role == "manager", 1),
        (CompanyMembership.role == "accountant", 2),
        (CompanyMembership.role == "warehouse", 3),
        else_=4,
    )


def resolve_company_access(db: Session, user: User, company_id: str | None = None) -> CompanyAccess | None:
    """Active membership of `user` in `company_id`, or in their highest-ranked company when none is given."""
    stmt = (
        select(CompanyMembership, Company)
        .join(Company, Company.id == CompanyMembership.company_id)
        .where(
            CompanyMembership.user_id == user.id,
            CompanyMembership.is_active.is_(True),
            Company.is_active.is_(True),
        )
    )
    if company_id:
        stmt = stmt.where(Company.id == company_id)
    row = db.execute(
        stmt.order_by(_membership_role_rank(), CompanyMembership.created_at.asc()).limit(1)
    ).first()
    if not row:
        return None

    membership, company = row
    role = (membership.role or "").strip().lower()
    return CompanyAccess(company=company, role=role, membership_id=membership.id, user=user)


def get_token_claims(token: str = Depends(oauth2_scheme)) -> TokenClaims:
    try:
        return read_token(token, expected_type=ACCESS_TOKEN)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_current_user(claims: TokenClaims = Depends(get_token_claims), db: Session = Depends(get_db)) -> User:
    user = db.execute(select(User).where(User.id == claims.user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_company_access(
    request: Request,
    claims: TokenClaims = Depends(get_token_claims),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CompanyAccess:
    access = resolve_company_access(db, user, claims.company_id)
    if not access:
        raise HTTPException(status_code=404, detail="Company not found")
    # Read back by the request logging middleware.
    request.state.company_id = access.company.id
    request.state.user_id = user.id
    return access
