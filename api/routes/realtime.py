from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.errors import ValidationFailed
from api.services.pagination import envelope
from api.services.realtime import EVENT_TYPES, PRIORITIES, realtime_service

router = APIRouter(prefix="/api/realtime", tags=["realtime"])


class BroadcastRequest(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: str = "medium"
    company_id: Optional[str] = None
    user_id: Optional[str] = None


@router.get("/status")
async def status(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(
        {
            "connected_clients": realtime_service.connected_clients_count(),
            "subscriptions": realtime_service.subscriptions(),
            "buffered_events": {key: len(buffer) for key, buffer in realtime_service.event_buffer.items()},
        }
    )


@router.post("/broadcast")
async def broadcast(body: BroadcastRequest, user: CurrentUser = Depends(require_role("admin"))) -> dict[str, Any]:
    if body.type not in EVENT_TYPES:
        raise ValidationFailed(f"type must be one of {', '.join(sorted(EVENT_TYPES))}", code="INVALID_EVENT_TYPE")
    if body.priority not in PRIORITIES:
        raise ValidationFailed(f"priority must be one of {', '.join(sorted(PRIORITIES))}", code="INVALID_PRIORITY")
    event = await realtime_service.emit(
        body.type,
        body.data,
        priority=body.priority,
        company_id=body.company_id or user.company_id,
        user_id=body.user_id,
    )
    return envelope(event.to_dict(), message="Event broadcast")
