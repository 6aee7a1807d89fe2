from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from api.services.config import get_settings
from api.services.errors import ApiError

ROLES = {"admin", "manager", "sales", "warehouse", "accounting", "user"}

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str
    company_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "email": self.email, "role": self.role, "company_id": self.company_id}


class InvalidTokenError(ApiError):
    status_code = 403
    code = "AUTH_TOKEN_INVALID"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(user: CurrentUser, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expire_minutes
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "company_id": user.company_id,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> CurrentUser:
    """Validate a bearer token and return the identity it carries."""
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise InvalidTokenError("Invalid or expired token") from exc

    user_id = payload.get("sub")
    company_id = payload.get("company_id")
    if not user_id or not company_id:
        raise InvalidTokenError("Token is missing identity claims")
    return CurrentUser(
        id=str(user_id),
        email=str(payload.get("email", "")),
        role=str(payload.get("role", "user")),
        company_id=str(company_id),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise ApiError("Access token required", code="AUTH_TOKEN_MISSING", status_code=401)
    return decode_token(credentials.credentials)


def require_role(*roles: str) -> Callable[..., Any]:
    """Dependency factory: ``user = Depends(require_role("admin", "manager"))``."""
    allowed = sorted(roles)

    async def _require_role(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise ApiError(
                "Insufficient permissions",
                code="AUTH_INSUFFICIENT_PERMISSIONS",
                status_code=403,
                extra={"required_roles": allowed, "user_role": user.role},
            )
        return user

    return _require_role
