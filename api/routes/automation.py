from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.automation import automation_service, load_inventory_context
from api.services.pagination import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation", tags=["automation"])


class TriggerModel(BaseModel):
    type: str
    config: dict[str, Any] = Field(default_factory=dict)


class ConditionModel(BaseModel):
    field: str
    operator: str
    value: Any = None
    logical_operator: Optional[str] = None


class ActionModel(BaseModel):
    type: str
    config: dict[str, Any] = Field(default_factory=dict)
    delay_ms: int = Field(default=0, ge=0)


class WorkflowRequest(BaseModel):
    name: str
    description: str = ""
    trigger: TriggerModel
    conditions: list[ConditionModel] = Field(default_factory=list)
    actions: list[ActionModel] = Field(default_factory=list)
    is_active: bool = True
    priority: int = Field(default=5, ge=1, le=10)
    id: Optional[str] = None


class ExecuteRequest(BaseModel):
    context: dict[str, Any] = Field(default_factory=dict)
    product_id: Optional[str] = None


@router.get("/workflows")
async def list_workflows(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope([workflow.to_dict() for workflow in automation_service.list_workflows()])


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(automation_service.get_workflow(workflow_id).to_dict())


@router.post("/workflows", status_code=201)
async def create_workflow(
    body: WorkflowRequest,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    workflow = automation_service.create_workflow(body.model_dump())
    return envelope(workflow.to_dict(), message="Workflow created successfully")


@router.post("/workflows/{workflow_id}/toggle")
async def toggle_workflow(
    workflow_id: str,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    is_active = automation_service.toggle_workflow(workflow_id)
    return envelope({"id": workflow_id, "is_active": is_active})


@router.post("/workflows/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    body: ExecuteRequest,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    automation_service.get_workflow(workflow_id)
    context = dict(body.context)
    if body.product_id:
        context = {**await load_inventory_context(body.product_id), **context}
    context.setdefault("company_id", user.company_id)
    context["triggered_by"] = user.id
    executed = await automation_service.execute_workflow(workflow_id, context)
    logger.info("Manual run of %s by %s: %s", workflow_id, user.id, executed, extra={"workflow_id": workflow_id})
    return envelope({"id": workflow_id, "executed": executed})


@router.get("/stats")
async def stats(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(automation_service.stats())
