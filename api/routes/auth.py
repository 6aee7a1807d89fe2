from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.services.auth import CurrentUser, create_access_token, get_current_user, verify_password
from api.services.database import connect_db, fetchone, row_to_dict
from api.services.errors import ApiError, NotFoundError
from api.services.pagination import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


def _public(user: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in user.items() if key != "password_hash"}


@router.post("/login")
async def login(body: LoginRequest) -> dict[str, Any]:
    conn = await connect_db()
    try:
        row = await fetchone(conn, "SELECT * FROM users WHERE email = ?", (body.email.strip().lower(),))
    finally:
        await conn.close()

    user = row_to_dict(row) if row else None
    if user is None or not user["is_active"] or not verify_password(body.password, user["password_hash"]):
        logger.info("Rejected login for %s", body.email)
        raise ApiError("Invalid email or password", code="INVALID_CREDENTIALS", status_code=401)

    identity = CurrentUser(id=user["id"], email=user["email"], role=user["role"], company_id=user["company_id"])
    return envelope({"token": create_access_token(identity), "user": _public(user)})


@router.get("/profile")
async def profile(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        row = await fetchone(conn, "SELECT * FROM users WHERE id = ?", (user.id,))
    finally:
        await conn.close()
    if row is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return envelope(_public(row_to_dict(row)))


@router.post("/refresh")
async def refresh(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope({"token": create_access_token(user), "user": user.to_dict()})
