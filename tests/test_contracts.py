from __future__ import annotations

import asyncio

import pytest

from api.services import contracts
from api.services.contracts import SmartContractManager, cost_saving_opportunities, parse_analysis, parse_strategy
from api.services.config import get_settings
from api.services.database import connect_db
from api.services.errors import ApiError, ConflictError, LLMError, NotFoundError, ValidationFailed
from api.services.insights import AIOrchestrator
from api.services.realtime import RealTimeService

ANALYSIS_REPLY = {
    "riskScore": 7,
    "riskFactors": [{"type": "financial", "severity": "critical", "description": "Uncapped price escalation"}],
    "savingsOpportunities": [{"description": "Volume discount", "estimatedSavings": 12000}],
    "complianceIssues": [{"severity": "minor", "description": "Insurance certificate expired"}],
    "renewalRecommendations": [{"action": "renegotiate"}],
    "negotiationPoints": [{"category": "delivery", "proposedTerm": "48 hour delivery"}],
    "summary": "Pricing terms favour the supplier.",
    "confidence": 0.9,
}
STRATEGY_REPLY = {
    "strategy": "Anchor on market benchmarks",
    "objectives": [{"objective": "Cap escalation at 2%", "priority": 9}, {"objective": "Add late credits"}],
    "tactics": [{"tactic": "Share competitor quotes"}],
    "fallbackPositions": ["Accept 3% cap"],
    "walkawayPoint": 5,
}


class FakeModel:
    """Stands in for the chat model; returns queued replies in order."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def __call__(self, system_prompt, payload, *, temperature=0.1, max_tokens=1500):
        self.calls.append({"prompt": system_prompt, "payload": payload, "temperature": temperature})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def manager() -> SmartContractManager:
    return SmartContractManager(realtime=RealTimeService(orchestrator=AIOrchestrator()))


def _use_model(monkeypatch, *replies) -> FakeModel:
    model = FakeModel(*replies)
    monkeypatch.setattr(contracts, "llm_json", model)
    return model


def test_parse_analysis_accepts_camel_case_and_fills_defaults() -> None:
    analysis = parse_analysis("ctr_x", ANALYSIS_REPLY)

    assert analysis["risk_score"] == 7
    assert analysis["risk_factors"][0]["severity"] == "critical"
    assert analysis["risk_factors"][0]["mitigation"] == "Monitor and assess regularly"
    assert analysis["savings_opportunities"][0]["estimated_savings"] == 12000
    assert analysis["negotiation_points"][0]["proposed_term"] == "48 hour delivery"
    assert analysis["negotiation_points"][0]["leverage"] == 0.5
    assert analysis["ai_summary"] == "Pricing terms favour the supplier."


def test_parse_analysis_of_empty_reply() -> None:
    analysis = parse_analysis("ctr_x", {"riskFactors": "none", "savingsOpportunities": [None, 3]})

    assert analysis["risk_score"] == 5
    assert analysis["confidence_score"] == 0.85
    assert analysis["risk_factors"] == []
    assert analysis["savings_opportunities"] == []
    assert analysis["ai_summary"] == "Contract analysis completed"


def test_parse_strategy_defaults_timeline() -> None:
    strategy = parse_strategy("ctr_x", {"timeline": {"negotiationStart": "2026-05-01"}})

    assert strategy["strategy"] == "Collaborative negotiation approach"
    assert strategy["objectives"] == []
    assert strategy["fallback_positions"] == []
    assert strategy["timeline"]["negotiation_start"] == "2026-05-01"
    assert set(strategy["timeline"]) == {
        "preparation",
        "initial_contact",
        "negotiation_start",
        "negotiation_end",
        "decision_deadline",
        "implementation_date",
    }


def test_cost_saving_rules() -> None:
    opportunities = cost_saving_opportunities(
        "ctr_x", {"monthly_cost": 1000, "benchmark_comparison": 0.2, "utilization_rate": 0.5}
    )

    assert [(item["type"], item["estimated_savings"]) for item in opportunities] == [
        ("cost_reduction", 2400.0),
        ("service_level", 3600.0),
    ]
    assert cost_saving_opportunities("ctr_x", {"monthly_cost": 1000, "benchmark_comparison": 0.05}) == []


def test_analyze_inline_contract_text(seeded_db, manager, monkeypatch) -> None:
    model = _use_model(monkeypatch, ANALYSIS_REPLY)

    analysis = asyncio.run(manager.analyze_contract("ctr_002"))

    assert analysis["contract_id"] == "ctr_002"
    assert analysis["risk_score"] == 7
    assert "4% annual escalator" in model.calls[0]["payload"]["text"]
    assert model.calls[0]["temperature"] == 0.1


def test_analyze_reads_contract_pdf(seeded_db, manager, monkeypatch) -> None:
    model = _use_model(monkeypatch, {})

    analysis = asyncio.run(manager.analyze_contract("ctr_001"))

    assert "Minimum Volume" in model.calls[0]["payload"]["text"]
    assert analysis["risk_score"] == 5


def test_analyze_errors(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch, LLMError("model unavailable"))

    with pytest.raises(NotFoundError):
        asyncio.run(manager.analyze_contract("ctr_missing"))
    with pytest.raises(ApiError) as excinfo:
        asyncio.run(manager.analyze_contract("ctr_002"))
    assert excinfo.value.status_code == 502
    assert excinfo.value.code == "LLM_ERROR"


def test_missing_pdf_is_reported(seeded_db, manager, monkeypatch) -> None:
    (seeded_db.parent / "data" / "contracts" / "ctr_001.pdf").unlink()
    _use_model(monkeypatch)

    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(manager.analyze_contract("ctr_001"))
    assert excinfo.value.code == "DOCUMENT_NOT_FOUND"


def test_strategy_requires_analysis(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch)

    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(manager.generate_negotiation_strategy("ctr_002"))
    assert excinfo.value.code == "ANALYSIS_NOT_FOUND"


def test_assisted_negotiation_waits_for_a_human(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch, ANALYSIS_REPLY, STRATEGY_REPLY)

    async def _run():
        await manager.analyze_contract("ctr_002")
        return await manager.start_automated_negotiation("ctr_002", "assisted")

    negotiation = asyncio.run(_run())

    assert negotiation["status"] == "initiated"
    assert negotiation["human_override_required"] is True
    assert negotiation["ai_recommendations"] == ["Cap escalation at 2%", "Add late credits"]
    assert negotiation["negotiations"] == []

    with pytest.raises(ValidationFailed):
        asyncio.run(manager.start_automated_negotiation("ctr_002", "autopilot"))


def test_full_negotiation_runs_until_accepted(seeded_db, manager, monkeypatch) -> None:
    _use_model(
        monkeypatch,
        ANALYSIS_REPLY,
        STRATEGY_REPLY,
        {"proposal": "2% escalation cap", "nextAction": "await_supplier_response"},
        {"proposal": "2.5% cap with late credits", "analysis": "Supplier moved on price"},
        {"accept": True, "savingsAchieved": 8400, "finalTerms": {"escalation_cap": 0.025}},
    )

    async def _run():
        await manager.analyze_contract("ctr_002")
        started = await manager.start_automated_negotiation("ctr_002", "full")
        countered = await manager.record_supplier_response("ctr_002", "We can do 3%")
        accepted = await manager.record_supplier_response("ctr_002", "Agreed at 2.5%")
        return started, countered, accepted

    started, countered, accepted = asyncio.run(_run())

    assert started["status"] == "in_progress"
    assert started["human_override_required"] is False
    assert started["negotiations"][0]["ai_proposal"] == "2% escalation cap"

    assert [round_["supplier_response"] for round_ in countered["negotiations"]] == ["We can do 3%", None]
    assert countered["negotiations"][1]["round_number"] == 2

    assert accepted["status"] == "completed"
    assert accepted["final_outcome"]["savings_achieved"] == 8400
    assert accepted["final_outcome"]["final_terms"] == {"escalation_cap": 0.025}

    async def _stored():
        conn = await connect_db()
        try:
            return await manager.get_negotiation(conn, "ctr_002")
        finally:
            await conn.close()

    assert asyncio.run(_stored())["status"] == "completed"

    with pytest.raises(ConflictError):
        asyncio.run(manager.record_supplier_response("ctr_002", "One more thing"))


def test_negotiation_escalates_on_request(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch, ANALYSIS_REPLY, STRATEGY_REPLY, {"escalate": True})

    async def _run():
        await manager.analyze_contract("ctr_002")
        await manager.start_automated_negotiation("ctr_002", "monitored")
        return await manager.record_supplier_response("ctr_002", "Take it or leave it")

    negotiation = asyncio.run(_run())

    assert negotiation["status"] == "escalated"
    assert negotiation["human_override_required"] is True
    assert negotiation["negotiations"][0]["ai_proposal"] is None


def test_response_without_negotiation(seeded_db, manager) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(manager.record_supplier_response("ctr_002", "Hello"))
    assert excinfo.value.code == "NEGOTIATION_NOT_FOUND"


def test_opportunities_only_for_analyzed_contracts(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch, ANALYSIS_REPLY)

    async def _run():
        await manager.analyze_contract("ctr_002")
        await manager.record_contract_metrics(
            "ctr_002", {"monthly_cost": 15400, "benchmark_comparison": 0.15, "utilization_rate": 0.5}
        )
        await manager.record_contract_metrics("ctr_001", {"monthly_cost": 7600, "benchmark_comparison": 0.5})
        return await manager.identify_cost_saving_opportunities()

    opportunities = asyncio.run(_run())

    assert [(item["contract_id"], item["type"]) for item in opportunities] == [
        ("ctr_002", "service_level"),
        ("ctr_002", "cost_reduction"),
    ]
    assert opportunities[1]["estimated_savings"] == 27720.0


def test_metrics_for_unknown_contract(seeded_db, manager) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(manager.record_contract_metrics("ctr_missing", {"monthly_cost": 1}))


def test_urgent_issues_are_broadcast(seeded_db, manager, monkeypatch) -> None:
    _use_model(monkeypatch, ANALYSIS_REPLY)

    async def _run():
        await manager.analyze_contract("ctr_002")
        return await manager.check_urgent_issues()

    urgent = asyncio.run(_run())

    assert [issue["contract_id"] for issue in urgent] == ["ctr_002"]
    assert urgent[0]["title"] == "Lumber Master Supply Agreement"
    (event,) = manager.realtime.event_buffer["comp_001"]
    assert event.type == "alert"
    assert event.priority == "critical"
    assert event.data["category"] == "contract"


def test_report_and_stats(seeded_db, manager, monkeypatch) -> None:
    empty = asyncio.run(manager.system_stats())
    assert empty["total_contracts"] == 0
    assert empty["average_risk_score"] == 0

    _use_model(monkeypatch, ANALYSIS_REPLY, {**ANALYSIS_REPLY, "riskScore": 4, "renewalRecommendations": [{}]})

    async def _run():
        await manager.analyze_contract("ctr_002")
        await manager.analyze_contract("ctr_001")
        return await manager.generate_contract_report("ctr_002"), await manager.system_stats()

    report, stats = asyncio.run(_run())

    assert report["metrics"] is None
    assert report["risk_summary"] == {"overall_risk": 7, "critical_risks": 1, "total_savings_potential": 12000.0}
    assert stats["total_contracts"] == 2
    assert stats["average_risk_score"] == 5.5
    assert stats["total_savings_identified"] == 24000.0
    assert stats["compliance_issues"] == 2
    assert stats["upcoming_renewals"] == 1
    assert stats["active_negotiations"] == 0


def test_negotiation_escalates_only_past_the_round_limit(seeded_db, manager, monkeypatch) -> None:
    limit = get_settings().max_negotiation_rounds
    counters = [{"proposal": f"Counter {index}"} for index in range(1, limit + 2)]
    _use_model(monkeypatch, ANALYSIS_REPLY, STRATEGY_REPLY, *counters)

    async def _run():
        await manager.analyze_contract("ctr_002")
        await manager.start_automated_negotiation("ctr_002", "monitored")
        states = []
        for index in range(1, limit + 2):
            negotiation = await manager.record_supplier_response("ctr_002", f"Response {index}")
            states.append(negotiation["status"])
        return negotiation, states

    negotiation, states = asyncio.run(_run())

    assert states == ["in_progress"] * limit + ["escalated"]
    assert len(negotiation["negotiations"]) == limit + 1
    assert negotiation["negotiations"][-1]["supplier_response"] == f"Response {limit + 1}"
    assert negotiation["human_override_required"] is True
