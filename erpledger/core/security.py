from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt

from erpledger.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    """What a token says about its bearer: who they are and which company they act for."""

    user_id: str
    company_id: str | None
    token_type: str


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes of the utf-8 encoding.
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _encode(claims: TokenClaims, lifetime: timedelta) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": claims.user_id,
        "type": claims.token_type,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "jti": uuid4().hex,
    }
    if claims.company_id:
        payload["cid"] = claims.company_id
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def issue_token_pair(user_id: str, company_id: str | None) -> tuple[str, str]:
    """Return (access_token, refresh_token), both bound to the same company."""
    access = _encode(
        TokenClaims(user_id=user_id, company_id=company_id, token_type=ACCESS_TOKEN),
        timedelta(minutes=settings.access_token_expire_minutes),
    )
    refresh = _encode(
        TokenClaims(user_id=user_id, company_id=company_id, token_type=REFRESH_TOKEN),
        timedelta(days=settings.refresh_token_expire_days),
    )
    return access, refresh


def read_token(token: str, *, expected_type: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Token is invalid or expired") from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenValidationError("Token has no subject")
    if payload.get("type") != expected_type:
        raise TokenValidationError(f"Expected a {expected_type} token")
    return TokenClaims(user_id=str(subject), company_id=payload.get("cid"), token_type=expected_type)
