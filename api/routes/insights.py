from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user
from api.services.insights import AIContext, ai_orchestrator
from api.services.pagination import envelope

router = APIRouter(prefix="/api/insights", tags=["insights"])


class InsightRequest(BaseModel):
    company_size: str = "midsize"
    industry: str = "construction"
    preferences: dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def active_insights(
    severity: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    insights = [
        insight.to_dict()
        for insight in ai_orchestrator.active_insights.values()
        if not insight.is_expired() and (severity is None or insight.severity == severity)
    ]
    return envelope(insights, count=len(insights))


@router.post("/generate")
async def generate(body: InsightRequest, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    context = AIContext.from_payload(body.model_dump(), user_role=user.role, company_id=user.company_id)
    insights = await ai_orchestrator.generate_comprehensive_insights(context)
    return envelope([insight.to_dict() for insight in insights], count=len(insights))


@router.get("/inventory-optimization")
async def inventory_optimization(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    context = AIContext(user_role=user.role, company_id=user.company_id)
    insights = await ai_orchestrator.get_inventory_optimization(context)
    return envelope([insight.to_dict() for insight in insights])
