from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erpledger.core.api_docs import error_responses
from erpledger.core.config import settings
from erpledger.core.deps import get_db
from erpledger.core.id_utils import generate_id
from erpledger.core.errors import ValidationError
from erpledger.core.security import (
    REFRESH_TOKEN,
    TokenValidationError,
    hash_password,
    issue_token_pair,
    read_token,
    verify_password,
)
from erpledger.core.security_current import CompanyAccess, get_current_company_access, resolve_company_access
from erpledger.models.company import Company
from erpledger.models.company_membership import CompanyMembership
from erpledger.models.user import User
from erpledger.schemas.auth import LoginIn, MeOut, RefreshIn, RegisterIn, TokenOut
from erpledger.services.audit_service import log_audit_event, model_snapshot

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_PAIR_RESPONSE = {
    "description": "Access and refresh tokens",
    "content": {
        "application/json": {
            "example": {
                "access_token": "access-token",
                "refresh_token": "refresh-token",
                "token_type": "bearer",
            }
        }
    },
}


def _issue_token_pair(user_id: str, company_id: str | None) -> TokenOut:
    access_token, refresh_token = issue_token_pair(user_id, company_id)
    return TokenOut(access_token=access_token, refresh_token=refresh_token)


def _login_tokens(db: Session, user: User) -> TokenOut:
    access = resolve_company_access(db, user)
    if not access:
        raise HTTPException(status_code=401, detail="User has no active company")
    return _issue_token_pair(user.id, access.company.id)


def _authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@router.post(
    "/register",
    response_model=TokenOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register a company",
    description="Creates a user, a company and an admin membership, then returns access + refresh tokens.",
    responses={201: TOKEN_PAIR_RESPONSE, **error_responses(400, 422, 500)},
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
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
    company = Company(
        id=generate_id(),
        name=payload.company_name,
        base_currency=payload.base_currency or settings.default_currency,
    )
    db.add_all([user, company])
    db.flush()

    membership = CompanyMembership(
        id=generate_id(),
        company_id=company.id,
        user_id=user.id,
        role="admin",
        is_active=True,
    )
    db.add(membership)
    db.flush()
    log_audit_event(
        db,
        company_id=company.id,
        actor_user_id=user.id,
        action="CREATE",
        entity_type="company",
        entity_id=company.id,
        new_values=model_snapshot(company, "id", "name", "base_currency"),
    )
    db.commit()
    return _issue_token_pair(user.id, company.id)


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    responses={200: TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate_user(db, payload.email, payload.password)
    return _login_tokens(db, user)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login endpoint used by Swagger Authorize. Put the email in the `username` field.",
    responses={200: TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def login_for_swagger(
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    user = _authenticate_user(db, form_data.username, form_data.password)
    return _login_tokens(db, user)


@router.post(
    "/refresh",
    response_model=TokenOut,
    summary="Refresh access token",
    description="Uses a valid refresh token to issue a fresh token pair for the same company.",
    responses={200: TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def refresh_tokens(payload: RefreshIn, db: Session = Depends(get_db)):
    try:
        claims = read_token(payload.refresh_token, expected_type=REFRESH_TOKEN)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == claims.user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Refresh token is invalid or expired")
    if not resolve_company_access(db, user, claims.company_id):
        raise HTTPException(status_code=401, detail="Membership is no longer active")
    return _issue_token_pair(user.id, claims.company_id)


@router.get(
    "/me",
    response_model=MeOut,
    summary="Current user and company",
    responses=error_responses(401, 404, 500),
)
def me(access: CompanyAccess = Depends(get_current_company_access)):
    user = access.user
    return MeOut(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        company_id=access.company.id,
        company_name=access.company.name,
        base_currency=access.company.base_currency,
        role=access.role,
        created_at=user.created_at,
    )
