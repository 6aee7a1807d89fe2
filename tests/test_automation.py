from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from api.services import automation as automation_module
from api.services.automation import (
    AutomationService,
    WorkflowAction,
    WorkflowCondition,
    WorkflowTrigger,
    calculate_due_date,
    evaluate_condition,
    evaluate_conditions,
    is_schedule_due,
    load_inventory_context,
    matches_trigger,
)
from api.services.config import get_settings
from api.services.errors import NotFoundError, ValidationFailed
from api.services.insights import AIOrchestrator, Insight
from api.services.realtime import RealTimeEvent, RealTimeService

MARCH_4_0800 = datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc)


def _service(load_defaults: bool = True) -> tuple[AutomationService, RealTimeService]:
    realtime = RealTimeService(orchestrator=AIOrchestrator())
    return AutomationService(realtime=realtime, orchestrator=realtime.orchestrator, load_defaults=load_defaults), realtime


def _cond(field, operator, value=None, logical_operator=None) -> WorkflowCondition:
    return WorkflowCondition(field=field, operator=operator, value=value, logical_operator=logical_operator)


def _rows(db_path, query, params=()):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        return [dict(row) for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()


def test_conditions_fold_left_with_previous_operator() -> None:
    context = {"a": 1, "b": 2}
    yes = _cond("a", "equals", 1)
    no = _cond("b", "equals", 99)

    assert evaluate_conditions([], context)
    assert not evaluate_conditions([yes, no], context)
    assert evaluate_conditions([_cond("b", "equals", 99, "OR"), yes], context)
    # (true OR false) AND true
    assert evaluate_conditions([_cond("a", "equals", 1, "OR"), no, yes], context)
    # (false OR true) AND false
    assert not evaluate_conditions([_cond("b", "equals", 99, "OR"), yes, no], context)


def test_condition_value_can_reference_context_field() -> None:
    context = {"new_quantity": 10, "reorder_point": 20, "supplier": {"is_active": True}}

    assert evaluate_condition(_cond("new_quantity", "less_than", "reorder_point"), context)
    assert not evaluate_condition(_cond("new_quantity", "greater_than", "reorder_point"), context)
    assert evaluate_condition(_cond("supplier.is_active", "equals", True), context)
    assert evaluate_condition(_cond("supplier.name", "equals", None), context)


def test_contains_is_case_insensitive_and_accepts_lists() -> None:
    context = {"category": "Lumber & Framing"}

    assert evaluate_condition(_cond("category", "contains", "lumber"), context)
    assert evaluate_condition(_cond("category", "contains", ["concrete", "FRAMING"]), context)
    assert not evaluate_condition(_cond("category", "contains", ["roofing"]), context)
    assert not evaluate_condition(_cond("missing", "contains", "x"), context)


def test_comparisons_on_missing_or_incomparable_values_are_false() -> None:
    context = {"name": "drywall", "count": 3, "blank": ""}

    assert not evaluate_condition(_cond("missing", "greater_than", 1), context)
    assert not evaluate_condition(_cond("name", "less_than", 5), context)
    assert evaluate_condition(_cond("count", "not_empty"), context)
    assert not evaluate_condition(_cond("blank", "not_empty"), context)
    assert not evaluate_condition(_cond("missing", "not_empty"), context)


def test_due_dates() -> None:
    now = datetime(2026, 3, 4, 12, 0)

    assert calculate_due_date("3_days", now) == now + timedelta(days=3)
    assert calculate_due_date("1_day", now) == now + timedelta(days=1)
    assert calculate_due_date("1_week", now) == now + timedelta(weeks=1)
    assert calculate_due_date("6_hours", now) == now + timedelta(hours=6)
    assert calculate_due_date("soon", now) == now + timedelta(days=1)
    assert calculate_due_date(None, now) == now + timedelta(days=1)


def test_trigger_matching() -> None:
    assert matches_trigger(WorkflowTrigger("inventory_low"), "inventory_update", {"quantity_change": -4})
    assert not matches_trigger(WorkflowTrigger("inventory_low"), "inventory_update", {"quantity_change": 4})
    assert matches_trigger(WorkflowTrigger("customer_order"), "order_created", {"type": "sales_order"})
    assert not matches_trigger(WorkflowTrigger("customer_order"), "order_created", {"type": "purchase_order"})
    assert matches_trigger(WorkflowTrigger("price_change"), "market_update", {})
    assert matches_trigger(WorkflowTrigger("ai_insight"), "ai_insight", {})

    delay = WorkflowTrigger("supplier_delay", {"delay_threshold": 2})
    assert matches_trigger(delay, "alert", {"category": "supplier_delay", "days_late": 3})
    assert not matches_trigger(delay, "alert", {"category": "supplier_delay", "days_late": 1})
    assert not matches_trigger(delay, "alert", {"category": "pricing", "days_late": 5})

    assert not matches_trigger(WorkflowTrigger("manual"), "alert", {})
    assert not matches_trigger(WorkflowTrigger("scheduled", {"schedule": "* * * * *"}), "alert", {})


def test_schedule_due_uses_next_fire_after_last_run() -> None:
    assert is_schedule_due("0 9 * * *", MARCH_4_0800, MARCH_4_0800.replace(hour=9))
    assert not is_schedule_due("0 9 * * *", MARCH_4_0800, MARCH_4_0800.replace(minute=59))
    assert not is_schedule_due("0 0 1 */3 *", MARCH_4_0800, MARCH_4_0800 + timedelta(days=20))


def test_create_workflow_validates_and_generates_ids() -> None:
    service, _ = _service(load_defaults=False)

    workflow = service.create_workflow(
        {"name": "Notify", "trigger": {"type": "manual"}, "actions": [{"type": "send_email", "config": {}}]}
    )
    assert workflow.id.startswith("wf_")
    assert workflow.execution_count == 0

    with pytest.raises(ValidationFailed):
        service.create_workflow({"name": "Bad", "trigger": {"type": "sometimes"}})
    with pytest.raises(ValidationFailed):
        service.create_workflow({"name": "Bad", "trigger": {"type": "scheduled", "config": {"schedule": "every day"}}})
    with pytest.raises(ValidationFailed):
        service.create_workflow(
            {"name": "Bad", "trigger": {"type": "manual"}, "conditions": [{"field": "a", "operator": "roughly"}]}
        )


def test_registry_toggle_and_stats() -> None:
    service, _ = _service()

    assert len(service.list_workflows()) == 5
    assert service.toggle_workflow("dynamic-pricing") is False
    assert service.stats() == {
        "total_workflows": 5,
        "active_workflows": 4,
        "total_executions": 0,
        "queue_size": 0,
        "average_executions_per_workflow": 0,
    }
    with pytest.raises(NotFoundError):
        service.toggle_workflow("nope")

    empty, _ = _service(load_defaults=False)
    assert empty.stats()["average_executions_per_workflow"] == 0


def test_churn_workflow_creates_alert_and_task(seeded_db) -> None:
    service, realtime = _service()
    context = {"customer_id": "cust_001", "churn_risk": 0.85, "lifetime_value": 25000, "company_id": "comp_001"}

    executed = asyncio.run(service.execute_workflow("churn-prevention", context))

    assert executed is True
    workflow = service.get_workflow("churn-prevention")
    assert workflow.execution_count == 1
    assert workflow.last_executed is not None

    alerts = _rows(seeded_db, "SELECT * FROM alerts WHERE workflow_id = 'churn-prevention'")
    tasks = _rows(seeded_db, "SELECT * FROM internal_tasks WHERE workflow_id = 'churn-prevention'")
    assert alerts[0]["title"] == "High-Value Customer Churn Risk"
    assert tasks[0]["description"] == "retention_call"

    buffered = list(realtime.event_buffer["comp_001"])
    assert [event.type for event in buffered] == ["alert"]
    assert buffered[0].priority == "high"


def test_unmet_conditions_and_inactive_workflows_do_not_run(seeded_db) -> None:
    service, _ = _service()

    low_risk = {"churn_risk": 0.2, "lifetime_value": 50000}
    assert asyncio.run(service.execute_workflow("churn-prevention", low_risk)) is False
    assert asyncio.run(service.execute_workflow("missing", {})) is False

    service.toggle_workflow("churn-prevention")
    assert asyncio.run(service.execute_workflow("churn-prevention", {"churn_risk": 0.9, "lifetime_value": 20000})) is False
    assert _rows(seeded_db, "SELECT * FROM alerts") == []


def test_failing_action_fires_error_hook() -> None:
    service, _ = _service(load_defaults=False)
    errors = []

    async def on_error(payload):
        errors.append(payload)

    service.on("workflow_error", on_error)
    workflow = service.create_workflow(
        {"name": "Webhook", "trigger": {"type": "manual"}, "actions": [{"type": "call_webhook", "config": {}}]}
    )

    assert asyncio.run(service.execute_workflow(workflow.id, {})) is False
    assert errors and errors[0]["workflow_id"] == workflow.id
    assert workflow.execution_count == 0


def test_inventory_reorder_creates_purchase_order(seeded_db) -> None:
    service, realtime = _service()

    async def _run():
        context = await load_inventory_context("item_concrete_mix")
        return await service.execute_workflow("smart-inventory-reorder", context)

    assert asyncio.run(_run()) is True

    orders = _rows(seeded_db, "SELECT * FROM purchase_orders WHERE item_id = 'item_concrete_mix'")
    assert len(orders) == 1
    assert orders[0]["status"] == "draft"
    assert orders[0]["source"] == "workflow:smart-inventory-reorder"
    assert orders[0]["supplier_id"] == "sup_002"
    assert orders[0]["quantity"] > 0

    types = [event.type for event in realtime.event_buffer["comp_001"]]
    assert types == ["order_created", "alert"]


def test_inventory_event_is_queued_with_item_context(seeded_db) -> None:
    service, _ = _service()
    event = RealTimeEvent(
        type="inventory_update",
        data={"product_id": "item_concrete_mix", "quantity_change": -5, "new_quantity": 30},
        company_id="comp_001",
    )

    async def _run():
        await service.on_realtime_event(event)
        queued = list(service.execution_queue)
        processed = await service.process_queue()
        return queued, processed

    queued, processed = asyncio.run(_run())

    assert [workflow_id for workflow_id, _ in queued] == ["smart-inventory-reorder"]
    context = queued[0][1]
    assert context["reorder_point"] == 100
    assert context["new_quantity"] == 30
    assert context["event_type"] == "inventory_update"
    assert processed == 1
    assert service.execution_queue == []
    assert len(_rows(seeded_db, "SELECT * FROM purchase_orders")) == 1


def test_insights_queue_matching_workflows() -> None:
    service, _ = _service()
    churn = Insight(
        type="customer_churn",
        title="Churn risk",
        description="",
        severity="warning",
        confidence=0.8,
        action="Call",
        data={"customer_id": "cust_002", "churn_risk": 0.9, "lifetime_value": 40000},
    )
    forecast = Insight(type="demand_forecast", title="", description="", severity="info", confidence=0.5, action="")

    asyncio.run(service.on_insights([churn, forecast]))

    assert [workflow_id for workflow_id, _ in service.execution_queue] == ["churn-prevention"]
    assert service.execution_queue[0][1]["churn_risk"] == 0.9


def test_scheduled_workflows_fan_out_per_item(seeded_db) -> None:
    service, _ = _service()
    for workflow in service.list_workflows():
        workflow.created_at = MARCH_4_0800
    now = MARCH_4_0800 + timedelta(hours=1, minutes=30)

    due = asyncio.run(service.check_scheduled_workflows(now))

    assert due == ["dynamic-pricing"]
    assert len(service.execution_queue) == 8
    assert all(context["scheduled_execution"] for _, context in service.execution_queue)
    assert service.get_workflow("dynamic-pricing").last_executed == now
    assert asyncio.run(service.check_scheduled_workflows(now)) == []


def test_review_flags_high_frequency_workflows() -> None:
    service, _ = _service()
    now = datetime.now(timezone.utc)
    workflow = service.get_workflow("dynamic-pricing")
    workflow.created_at = now - timedelta(days=1)
    workflow.execution_count = 150
    workflow.last_executed = now

    flagged = asyncio.run(service.review_workflows(now))

    assert [notice["workflow_id"] for notice in flagged] == ["dynamic-pricing"]


def test_price_updates_are_clamped(seeded_db) -> None:
    service, realtime = _service()
    pricing = service.get_workflow("dynamic-pricing")
    seasonal = service.get_workflow("seasonal-adjustment")

    async def _run():
        approval = await service.execute_action(
            pricing.actions[1],
            {"product_id": "item_pvc", "product_name": "PVC Pipe", "current_price": 100.0, "recommended_price": 150.0,
             "company_id": "comp_001"},
            pricing,
        )
        applied = await service.execute_action(
            seasonal.actions[1],
            {"product_id": "item_pvc", "current_price": 10.0, "recommended_price": 5.0},
            seasonal,
        )
        return approval, applied

    approval, applied = asyncio.run(_run())

    assert approval["new_price"] == 110.0
    assert approval["approved"] is False
    assert [event.type for event in realtime.event_buffer["comp_001"]] == ["alert"]
    assert applied["new_price"] == 8.5
    assert applied["approved"] is True
    assert _rows(seeded_db, "SELECT price FROM inventory_items WHERE id = 'item_pvc'")[0]["price"] == 8.5


def test_unknown_action_type_is_rejected() -> None:
    service, _ = _service(load_defaults=False)
    workflow = service.create_workflow({"name": "Noop", "trigger": {"type": "manual"}})

    with pytest.raises(ValueError):
        asyncio.run(service.execute_action(WorkflowAction(type="teleport"), {}, workflow))


def _mock_http(monkeypatch, handler) -> None:
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(automation_module.httpx, "AsyncClient", client_factory)


def test_queue_is_drained_in_batches() -> None:
    service, _ = _service(load_defaults=False)
    workflow = service.create_workflow({"name": "Tally", "trigger": {"type": "manual"}})
    batch_size = get_settings().workflow_batch_size
    for index in range(batch_size + 2):
        service.enqueue(workflow.id, {"index": index})

    assert asyncio.run(service.process_queue()) == batch_size
    assert [context["index"] for _, context in service.execution_queue] == [batch_size, batch_size + 1]
    assert workflow.execution_count == batch_size

    assert asyncio.run(service.process_queue()) == 2
    assert service.execution_queue == []
    assert asyncio.run(service.process_queue()) == 0


def test_queue_processing_is_not_reentered(seeded_db) -> None:
    service, _ = _service(load_defaults=False)
    workflow = service.create_workflow(
        {"name": "Slow", "description": "Queued notice", "trigger": {"type": "manual"},
         "actions": [{"type": "send_email", "config": {}, "delay_ms": 20}]}
    )
    service.enqueue(workflow.id, {})
    service.enqueue(workflow.id, {})

    async def _run():
        return await asyncio.gather(service.process_queue(), service.process_queue())

    assert asyncio.run(_run()) == [2, 0]
    assert workflow.execution_count == 2
    assert service._processing is False


def test_webhook_posts_workflow_context(monkeypatch) -> None:
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(202, json={"ok": True})

    _mock_http(monkeypatch, handler)
    service, _ = _service(load_defaults=False)
    workflow = service.create_workflow({"name": "Hook", "trigger": {"type": "manual"}})
    action = WorkflowAction(type="call_webhook", config={"url": "https://hooks.example/erp", "headers": {"X-Token": "abc"}})

    result = asyncio.run(service.execute_action(action, {"order_id": "ord_7"}, workflow))

    assert result["called"] is True
    assert result["status_code"] == 202
    (request,) = sent
    assert request.headers["X-Token"] == "abc"
    body = json.loads(request.content)
    assert body["workflow_id"] == workflow.id
    assert body["context"] == {"order_id": "ord_7"}


def test_webhook_failures_are_recorded_without_failing_the_workflow(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.example":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(503)

    _mock_http(monkeypatch, handler)
    service, _ = _service(load_defaults=False)
    errors = []

    async def on_error(payload):
        errors.append(payload)

    service.on("workflow_error", on_error)
    workflow = service.create_workflow(
        {"name": "Hook", "trigger": {"type": "manual"}, "actions": [{"type": "call_webhook", "config": {"url": "https://down.example/x"}}]}
    )

    async def _run():
        unreachable = await service.execute_action(workflow.actions[0], {}, workflow)
        unavailable = await service.execute_action(
            WorkflowAction(type="call_webhook", config={"url": "https://busy.example/x"}), {}, workflow
        )
        executed = await service.execute_workflow(workflow.id, {})
        return unreachable, unavailable, executed

    unreachable, unavailable, executed = asyncio.run(_run())

    assert unreachable["called"] is False
    assert "connection refused" in unreachable["error"]
    assert unavailable == {"called": False, "status_code": 503, "timestamp": unavailable["timestamp"]}
    assert executed is True
    assert errors == []
