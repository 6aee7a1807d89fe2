from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.contracts import contract_manager
from api.services.database import connect_db, fetchall, rows_to_dicts
from api.services.pagination import envelope

router = APIRouter(prefix="/api/contracts", tags=["contracts"])


class AnalyzeRequest(BaseModel):
    contract_text: Optional[str] = None


class NegotiationRequest(BaseModel):
    automation_level: str = "assisted"


class SupplierResponseRequest(BaseModel):
    response: str = Field(min_length=1)


class MetricsRequest(BaseModel):
    monthly_cost: float = Field(ge=0)
    benchmark_comparison: float = 0
    utilization_rate: float = Field(default=1, ge=0)
    delivery_performance: Optional[float] = None
    quality_score: Optional[float] = None
    compliance_score: Optional[float] = None
    cost_variance: Optional[float] = None
    supplier_satisfaction: Optional[float] = None


@router.get("")
async def list_contracts(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        rows = await fetchall(
            conn,
            "SELECT id, supplier_id, title, contract_type, monthly_value, start_date, end_date, status "
            "FROM contracts WHERE company_id = ? ORDER BY id",
            (user.company_id,),
        )
    finally:
        await conn.close()
    return envelope(rows_to_dicts(rows))


@router.get("/stats")
async def system_stats(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(await contract_manager.system_stats())


@router.get("/opportunities")
async def opportunities(user: CurrentUser = Depends(require_role("admin", "manager"))) -> dict[str, Any]:
    return envelope(await contract_manager.identify_cost_saving_opportunities())


@router.post("/urgent-check")
async def urgent_check(user: CurrentUser = Depends(require_role("admin", "manager"))) -> dict[str, Any]:
    urgent = await contract_manager.check_urgent_issues()
    return envelope(urgent, count=len(urgent))


@router.post("/{contract_id}/analyze")
async def analyze(
    contract_id: str,
    body: AnalyzeRequest,
    user: CurrentUser = Depends(require_role("admin", "manager", "accounting")),
) -> dict[str, Any]:
    return envelope(await contract_manager.analyze_contract(contract_id, body.contract_text))


@router.get("/{contract_id}/strategy")
async def strategy(
    contract_id: str,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    return envelope(await contract_manager.generate_negotiation_strategy(contract_id))


@router.post("/{contract_id}/negotiation")
async def start_negotiation(
    contract_id: str,
    body: NegotiationRequest,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    return envelope(await contract_manager.start_automated_negotiation(contract_id, body.automation_level))


@router.get("/{contract_id}/negotiation")
async def negotiation(contract_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        current = await contract_manager.get_negotiation(conn, contract_id)
    finally:
        await conn.close()
    return envelope(current)


@router.post("/{contract_id}/negotiation/response")
async def supplier_response(
    contract_id: str,
    body: SupplierResponseRequest,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    return envelope(await contract_manager.record_supplier_response(contract_id, body.response))


@router.put("/{contract_id}/metrics")
async def record_metrics(
    contract_id: str,
    body: MetricsRequest,
    user: CurrentUser = Depends(require_role("admin", "manager", "accounting")),
) -> dict[str, Any]:
    metrics = body.model_dump(exclude_none=True)
    return envelope(await contract_manager.record_contract_metrics(contract_id, metrics))


@router.get("/{contract_id}/report")
async def report(contract_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(await contract_manager.generate_contract_report(contract_id))
