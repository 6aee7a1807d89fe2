from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from pypdf import PdfReader

from api.services.config import get_settings
from api.services.database import (
    connect_db,
    dumps,
    fetchall,
    fetchone,
    row_to_dict,
    rows_to_dicts,
    utc_datetime,
    utc_now,
)
from api.services.errors import ApiError, ConflictError, LLMError, NotFoundError, ValidationFailed
from api.services.llm import llm_json
from api.services.realtime import RealTimeService, realtime_service

logger = logging.getLogger(__name__)

AUTOMATION_LEVELS = {"full", "assisted", "monitored"}
OPEN_NEGOTIATION_STATUSES = {"initiated", "in_progress"}
MAX_OPPORTUNITIES = 20

ANALYST_PROMPT = (
    "You are an expert contract analyst for construction-industry supplier contracts. "
    "Return one JSON object with keys riskScore (1-10), riskFactors, savingsOpportunities, "
    "complianceIssues, renewalRecommendations, negotiationPoints, summary and confidence (0-1)."
)
STRATEGY_PROMPT = (
    "You are a negotiation strategist for construction supplier contracts. "
    "Return one JSON object with keys strategy, objectives, tactics, fallbackPositions, "
    "walkawayPoint, estimatedOutcome and timeline."
)
NEGOTIATOR_PROMPT = (
    "You negotiate supplier contracts on behalf of a construction company. "
    "Return one JSON object with keys proposal, analysis, nextAction, accept (bool), "
    "escalate (bool), savingsAchieved, finalTerms and improvementsGained."
)

RISK_FACTOR_DEFAULTS = {
    "type": "operational",
    "severity": "medium",
    "description": "Risk factor identified",
    "impact": "Potential negative impact on operations",
    "mitigation": "Monitor and assess regularly",
    "probability": 0.5,
}
SAVINGS_DEFAULTS = {
    "type": "cost_reduction",
    "description": "Cost reduction opportunity",
    "estimated_savings": 0,
    "implementation_effort": "medium",
    "priority": 5,
    "action": "Review and optimize",
}
COMPLIANCE_DEFAULTS = {
    "type": "contractual",
    "severity": "moderate",
    "description": "Compliance issue identified",
    "requirement": "Contract requirement",
    "remediation": "Address compliance gap",
    "deadline": None,
}
RENEWAL_DEFAULTS = {
    "action": "renew",
    "confidence": 0.7,
    "reasoning": "Based on performance analysis",
    "suggested_terms": [],
    "estimated_benefit": 0,
    "timeline": "30 days",
}
NEGOTIATION_POINT_DEFAULTS = {
    "category": "pricing",
    "current_term": "Current term",
    "proposed_term": "Proposed improvement",
    "justification": "Market analysis supports change",
    "priority": "medium",
    "leverage": 0.5,
    "expected_resistance": 0.5,
}
OBJECTIVE_DEFAULTS = {
    "objective": "Improve contract terms",
    "priority": 5,
    "target_value": "Target improvement",
    "minimum_acceptable": "Minimum acceptable outcome",
    "measurable": True,
}
TACTIC_DEFAULTS = {
    "tactic": "Collaborative approach",
    "timing": "Early in negotiation",
    "expected_impact": "Positive outcome expected",
    "risks": [],
    "success_probability": 0.7,
}
TIMELINE_DEFAULT_DAYS = {
    "preparation": 7,
    "initial_contact": 14,
    "negotiation_start": 21,
    "negotiation_end": 45,
    "decision_deadline": 60,
    "implementation_date": 75,
}


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _pick(source: dict[str, Any], key: str) -> Any:
    """Model output may use camelCase or snake_case keys."""
    if key in source:
        return source[key]
    return source.get(_camel(key))


def parse_entries(entries: Any, defaults: dict[str, Any]) -> list[dict[str, Any]]:
    if not isinstance(entries, list):
        return []
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        item = {}
        for key, default in defaults.items():
            value = _pick(entry, key)
            item[key] = default if value in (None, "") else value
        parsed.append(item)
    return parsed


def parse_timeline(timeline: Any, now: Optional[datetime] = None) -> dict[str, str]:
    now = now or utc_datetime()
    timeline = timeline if isinstance(timeline, dict) else {}
    parsed = {}
    for key, days in TIMELINE_DEFAULT_DAYS.items():
        value = _pick(timeline, key)
        parsed[key] = str(value) if value else (now + timedelta(days=days)).date().isoformat()
    return parsed


def parse_analysis(contract_id: str, raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "contract_id": contract_id,
        "analysis_date": utc_now(),
        "risk_score": _pick(raw, "risk_score") or 5,
        "risk_factors": parse_entries(_pick(raw, "risk_factors"), RISK_FACTOR_DEFAULTS),
        "savings_opportunities": parse_entries(_pick(raw, "savings_opportunities"), SAVINGS_DEFAULTS),
        "compliance_issues": parse_entries(_pick(raw, "compliance_issues"), COMPLIANCE_DEFAULTS),
        "renewal_recommendations": parse_entries(_pick(raw, "renewal_recommendations"), RENEWAL_DEFAULTS),
        "negotiation_points": parse_entries(_pick(raw, "negotiation_points"), NEGOTIATION_POINT_DEFAULTS),
        "ai_summary": raw.get("summary") or "Contract analysis completed",
        "confidence_score": raw.get("confidence") or 0.85,
    }


def parse_strategy(contract_id: str, raw: dict[str, Any]) -> dict[str, Any]:
    fallback = _pick(raw, "fallback_positions")
    return {
        "contract_id": contract_id,
        "strategy": raw.get("strategy") or "Collaborative negotiation approach",
        "objectives": parse_entries(raw.get("objectives"), OBJECTIVE_DEFAULTS),
        "tactics": parse_entries(raw.get("tactics"), TACTIC_DEFAULTS),
        "fallback_positions": fallback if isinstance(fallback, list) else [],
        "walkaway_point": _pick(raw, "walkaway_point") or 0,
        "estimated_outcome": _pick(raw, "estimated_outcome") or "Positive outcome expected",
        "timeline": parse_timeline(raw.get("timeline")),
    }


def cost_saving_opportunities(contract_id: str, metrics: dict[str, Any]) -> list[dict[str, Any]]:
    monthly = float(metrics.get("monthly_cost", 0))
    benchmark = float(metrics.get("benchmark_comparison", 0))
    utilization = float(metrics.get("utilization_rate", 1))
    opportunities = []
    if benchmark > 0.1:
        opportunities.append(
            {
                "contract_id": contract_id,
                "type": "cost_reduction",
                "description": f"Contract {contract_id} is 10%+ above market rates",
                "estimated_savings": round(monthly * 12 * benchmark, 2),
                "implementation_effort": "medium",
                "priority": 9,
                "action": "Renegotiate pricing based on market benchmarks",
            }
        )
    if utilization < 0.6:
        opportunities.append(
            {
                "contract_id": contract_id,
                "type": "service_level",
                "description": f"Low utilization rate ({utilization * 100:.1f}%) suggests over-provisioning",
                "estimated_savings": round(monthly * 12 * (0.8 - utilization), 2),
                "implementation_effort": "low",
                "priority": 7,
                "action": "Adjust service levels to match actual usage",
            }
        )
    return opportunities


def read_contract_pdf(document_path: str) -> str:
    path = Path(document_path)
    if not path.is_absolute():
        path = get_settings().resolved_data_dir / path
    if not path.exists():
        raise NotFoundError(f"Contract document not found: {document_path}", code="DOCUMENT_NOT_FOUND")
    reader = PdfReader(path)
    return "\n".join(page.extract_text() or "" for page in reader.pages).strip()


async def _ask(prompt: str, payload: dict[str, Any], temperature: float) -> dict[str, Any]:
    try:
        return await llm_json(prompt, payload, temperature=temperature, max_tokens=2500)
    except LLMError as exc:
        logger.warning("Contract model call failed: %s", exc)
        raise ApiError(f"Contract model call failed: {exc}", code="LLM_ERROR", status_code=502) from exc


class SmartContractManager:
    def __init__(self, realtime: Optional[RealTimeService] = None) -> None:
        self.realtime = realtime or realtime_service

    async def get_contract(self, conn, contract_id: str) -> dict[str, Any]:
        row = await fetchone(conn, "SELECT * FROM contracts WHERE id = ?", (contract_id,))
        if row is None:
            raise NotFoundError("Contract not found", code="CONTRACT_NOT_FOUND")
        return row_to_dict(row)

    async def get_analysis(self, conn, contract_id: str) -> dict[str, Any]:
        row = await fetchone(conn, "SELECT payload FROM contract_analyses WHERE contract_id = ?", (contract_id,))
        if row is None:
            raise NotFoundError("Contract analysis not found. Analyze contract first.", code="ANALYSIS_NOT_FOUND")
        return row_to_dict(row)["payload"]

    async def get_negotiation(self, conn, contract_id: str) -> dict[str, Any]:
        row = await fetchone(conn, "SELECT payload FROM negotiations WHERE contract_id = ?", (contract_id,))
        if row is None:
            raise NotFoundError("Negotiation not found", code="NEGOTIATION_NOT_FOUND")
        return row_to_dict(row)["payload"]

    async def _save_negotiation(self, conn, negotiation: dict[str, Any]) -> None:
        await conn.execute(
            """
            INSERT INTO negotiations (contract_id, payload, status, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(contract_id) DO UPDATE SET
                payload = excluded.payload, status = excluded.status, updated_at = excluded.updated_at
            """,
            (negotiation["contract_id"], dumps(negotiation), negotiation["status"], utc_now()),
        )
        await conn.commit()

    async def analyze_contract(self, contract_id: str, contract_text: Optional[str] = None) -> dict[str, Any]:
        conn = await connect_db()
        try:
            contract = await self.get_contract(conn, contract_id)
            text = contract_text or contract.get("contract_text")
            if not text and contract.get("document_path"):
                text = read_contract_pdf(contract["document_path"])
            if not text:
                raise ValidationFailed("Contract has no text to analyze", code="CONTRACT_TEXT_MISSING")

            logger.info("Analyzing contract %s", contract_id)
            raw = await _ask(
                ANALYST_PROMPT,
                {"contract": {"title": contract["title"], "type": contract["contract_type"]}, "text": text},
                temperature=0.1,
            )
            analysis = parse_analysis(contract_id, raw)
            await conn.execute(
                """
                INSERT INTO contract_analyses (contract_id, payload, risk_score, confidence, analyzed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(contract_id) DO UPDATE SET
                    payload = excluded.payload, risk_score = excluded.risk_score,
                    confidence = excluded.confidence, analyzed_at = excluded.analyzed_at
                """,
                (contract_id, dumps(analysis), analysis["risk_score"], analysis["confidence_score"], analysis["analysis_date"]),
            )
            await conn.commit()
        finally:
            await conn.close()
        return analysis

    async def generate_negotiation_strategy(self, contract_id: str) -> dict[str, Any]:
        conn = await connect_db()
        try:
            analysis = await self.get_analysis(conn, contract_id)
        finally:
            await conn.close()
        raw = await _ask(STRATEGY_PROMPT, {"analysis": analysis}, temperature=0.2)
        return parse_strategy(contract_id, raw)

    async def _next_round(self, negotiation: dict[str, Any], supplier_response: Optional[str]) -> dict[str, Any]:
        return await _ask(
            NEGOTIATOR_PROMPT,
            {
                "strategy": negotiation["strategy"],
                "rounds": negotiation["negotiations"],
                "supplier_response": supplier_response,
            },
            temperature=0.2,
        )

    @staticmethod
    def _append_round(negotiation: dict[str, Any], reply: dict[str, Any]) -> None:
        negotiation["negotiations"].append(
            {
                "round_number": len(negotiation["negotiations"]) + 1,
                "ai_proposal": reply.get("proposal") or "Proposal pending review",
                "supplier_response": None,
                "analysis": reply.get("analysis") or "",
                "next_action": _pick(reply, "next_action") or "await_supplier_response",
                "timestamp": utc_now(),
            }
        )
        negotiation["status"] = "in_progress"

    async def start_automated_negotiation(self, contract_id: str, automation_level: str = "assisted") -> dict[str, Any]:
        if automation_level not in AUTOMATION_LEVELS:
            raise ValidationFailed(f"automation_level must be one of {sorted(AUTOMATION_LEVELS)}")

        strategy = await self.generate_negotiation_strategy(contract_id)
        negotiation = {
            "contract_id": contract_id,
            "status": "initiated",
            "automation_level": automation_level,
            "ai_recommendations": [objective["objective"] for objective in strategy["objectives"]],
            "human_override_required": automation_level != "full",
            "strategy": strategy,
            "negotiations": [],
            "final_outcome": None,
        }
        if automation_level == "full":
            self._append_round(negotiation, await self._next_round(negotiation, None))

        conn = await connect_db()
        try:
            await self._save_negotiation(conn, negotiation)
        finally:
            await conn.close()
        logger.info("Negotiation started for %s (%s)", contract_id, automation_level)
        return negotiation

    async def record_supplier_response(self, contract_id: str, response: str) -> dict[str, Any]:
        conn = await connect_db()
        try:
            negotiation = await self.get_negotiation(conn, contract_id)
            if negotiation["status"] not in OPEN_NEGOTIATION_STATUSES:
                raise ConflictError("Negotiation is closed", code="NEGOTIATION_CLOSED")

            rounds = negotiation["negotiations"]
            if rounds and rounds[-1]["supplier_response"] is None:
                rounds[-1]["supplier_response"] = response
            else:
                rounds.append(
                    {
                        "round_number": len(rounds) + 1,
                        "ai_proposal": None,
                        "supplier_response": response,
                        "analysis": "",
                        "next_action": "evaluate",
                        "timestamp": utc_now(),
                    }
                )

            reply = await self._next_round(negotiation, response)
            if reply.get("accept"):
                negotiation["status"] = "completed"
                negotiation["final_outcome"] = {
                    "success": True,
                    "final_terms": _pick(reply, "final_terms") or {},
                    "savings_achieved": _pick(reply, "savings_achieved") or 0,
                    "improvements_gained": _pick(reply, "improvements_gained") or [],
                    "lessons_learned": _pick(reply, "lessons_learned") or [],
                    "satisfaction_score": _pick(reply, "satisfaction_score") or 0,
                }
            elif reply.get("escalate") or len(rounds) > get_settings().max_negotiation_rounds:
                negotiation["status"] = "escalated"
                negotiation["human_override_required"] = True
            else:
                self._append_round(negotiation, reply)

            await self._save_negotiation(conn, negotiation)
        finally:
            await conn.close()
        return negotiation

    async def record_contract_metrics(self, contract_id: str, metrics: dict[str, Any]) -> dict[str, Any]:
        conn = await connect_db()
        try:
            await self.get_contract(conn, contract_id)
            payload = {"contract_id": contract_id, **metrics}
            await conn.execute(
                """
                INSERT INTO contract_metrics (contract_id, payload, recorded_at) VALUES (?, ?, ?)
                ON CONFLICT(contract_id) DO UPDATE SET payload = excluded.payload, recorded_at = excluded.recorded_at
                """,
                (contract_id, dumps(payload), utc_now()),
            )
            await conn.commit()
        finally:
            await conn.close()
        return payload

    async def _analyses(self, conn) -> list[dict[str, Any]]:
        rows = rows_to_dicts(
            await fetchall(
                conn,
                """
                SELECT a.payload, c.company_id, c.title
                FROM contract_analyses a JOIN contracts c ON c.id = a.contract_id
                ORDER BY a.contract_id
                """,
            )
        )
        return [{**row["payload"], "company_id": row["company_id"], "title": row["title"]} for row in rows]

    async def identify_cost_saving_opportunities(self) -> list[dict[str, Any]]:
        conn = await connect_db()
        try:
            rows = rows_to_dicts(
                await fetchall(
                    conn,
                    """
                    SELECT m.contract_id, m.payload
                    FROM contract_metrics m JOIN contract_analyses a ON a.contract_id = m.contract_id
                    """,
                )
            )
        finally:
            await conn.close()

        opportunities = []
        for row in rows:
            opportunities.extend(cost_saving_opportunities(row["contract_id"], row["payload"]))
        opportunities.sort(key=lambda opportunity: opportunity["estimated_savings"], reverse=True)
        return opportunities[:MAX_OPPORTUNITIES]

    async def check_urgent_issues(self) -> list[dict[str, Any]]:
        conn = await connect_db()
        try:
            analyses = await self._analyses(conn)
        finally:
            await conn.close()

        urgent = []
        for analysis in analyses:
            critical_issues = [issue for issue in analysis["compliance_issues"] if issue["severity"] == "critical"]
            critical_risks = [risk for risk in analysis["risk_factors"] if risk["severity"] == "critical"]
            if not critical_issues and not critical_risks:
                continue
            issue = {
                "contract_id": analysis["contract_id"],
                "title": analysis["title"],
                "critical_issues": critical_issues,
                "high_risk_factors": critical_risks,
                "requires_immediate_action": True,
            }
            urgent.append(issue)
            await self.realtime.emit(
                "alert",
                {"category": "contract", "severity": "critical", **issue},
                company_id=analysis["company_id"],
                priority="critical",
            )
        return urgent

    async def generate_contract_report(self, contract_id: str) -> dict[str, Any]:
        conn = await connect_db()
        try:
            analysis = await self.get_analysis(conn, contract_id)
            metrics_row = await fetchone(conn, "SELECT payload FROM contract_metrics WHERE contract_id = ?", (contract_id,))
        finally:
            await conn.close()

        savings = analysis["savings_opportunities"]
        return {
            "contract_id": contract_id,
            "analysis": analysis,
            "metrics": row_to_dict(metrics_row)["payload"] if metrics_row else None,
            "recommendations": analysis["renewal_recommendations"],
            "savings_opportunities": savings,
            "risk_summary": {
                "overall_risk": analysis["risk_score"],
                "critical_risks": sum(1 for risk in analysis["risk_factors"] if risk["severity"] == "critical"),
                "total_savings_potential": sum(float(item["estimated_savings"] or 0) for item in savings),
            },
            "generated_at": utc_now(),
        }

    async def system_stats(self) -> dict[str, Any]:
        conn = await connect_db()
        try:
            analyses = await self._analyses(conn)
            open_row = await fetchone(
                conn,
                "SELECT COUNT(*) AS total FROM negotiations WHERE status IN ('initiated', 'in_progress')",
            )
        finally:
            await conn.close()

        total = len(analyses)
        return {
            "total_contracts": total,
            "active_negotiations": open_row["total"],
            "total_savings_identified": sum(
                float(item["estimated_savings"] or 0) for analysis in analyses for item in analysis["savings_opportunities"]
            ),
            "average_risk_score": round(sum(float(a["risk_score"]) for a in analyses) / total, 2) if total else 0,
            "compliance_issues": sum(len(analysis["compliance_issues"]) for analysis in analyses),
            "upcoming_renewals": sum(
                1
                for analysis in analyses
                if any(rec["action"] == "renew" for rec in analysis["renewal_recommendations"])
            ),
        }


contract_manager = SmartContractManager()
