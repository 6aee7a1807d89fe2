from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.database import as_utc, utc_datetime
from api.services.pagination import envelope
from api.services.risk import GeoLocation, SecurityEvent, risk_service

router = APIRouter(prefix="/api/risk", tags=["risk"])


class LocationModel(BaseModel):
    country: str
    city: str
    latitude: float
    longitude: float


class SecurityEventRequest(BaseModel):
    user_id: str
    type: str
    ip_address: str
    success: bool = True
    user_agent: str = ""
    timestamp: Optional[datetime] = None
    location: Optional[LocationModel] = None
    device: Optional[dict[str, str]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    flagged_as_anomaly: bool = False


@router.post("/events", status_code=201)
async def record_event(
    body: SecurityEventRequest,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    timestamp = as_utc(body.timestamp) if body.timestamp else utc_datetime()
    event = SecurityEvent(
        type=body.type,
        user_id=body.user_id,
        ip_address=body.ip_address,
        timestamp=timestamp,
        success=body.success,
        user_agent=body.user_agent,
        location=GeoLocation(**body.location.model_dump()) if body.location else None,
        device=body.device,
        metadata=body.metadata,
        flagged_as_anomaly=body.flagged_as_anomaly,
    )
    event_id = await risk_service.record_event(event)
    return envelope({"id": event_id})


@router.get("/users/{user_id}")
async def user_risk(user_id: str, user: CurrentUser = Depends(require_role("admin", "manager"))) -> dict[str, Any]:
    assessment = await risk_service.calculate_user_risk(user_id)
    return envelope(assessment.to_dict())


@router.get("/users/{user_id}/history")
async def user_risk_history(
    user_id: str,
    days: int = Query(30, ge=1, le=365),
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    return envelope(await risk_service.history(user_id, days))


@router.post("/users/{user_id}/invalidate")
async def invalidate(user_id: str, user: CurrentUser = Depends(require_role("admin"))) -> dict[str, Any]:
    await risk_service.invalidate(user_id)
    return envelope({"user_id": user_id, "invalidated": True})


@router.get("/me")
async def my_risk(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    assessment = await risk_service.calculate_user_risk(user.id)
    return envelope(assessment.to_dict())
