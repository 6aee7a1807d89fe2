from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from string import Template
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

import httpx
from apscheduler.triggers.cron import CronTrigger

from api.services.config import get_settings
from api.services.database import (
    connect_db,
    fetchall,
    fetchone,
    insert_row,
    iso_z,
    rows_to_dicts,
    update_row,
    utc_datetime,
    utc_now,
)
from api.services.errors import NotFoundError, ValidationFailed
from api.services.insights import AIContext, AIOrchestrator, Insight, ai_orchestrator
from api.services.realtime import PRIORITIES, RealTimeEvent, RealTimeService, realtime_service
from api.services.supply_chain import insert_purchase_order

logger = logging.getLogger(__name__)

TRIGGER_TYPES = {"inventory_low", "customer_order", "supplier_delay", "price_change", "ai_insight", "scheduled", "manual"}
OPERATORS = {"equals", "not_equals", "greater_than", "less_than", "contains", "not_empty"}
ACTION_TYPES = {"create_po", "send_email", "update_price", "create_alert", "schedule_task", "call_webhook", "ai_analysis"}
CRITICAL_WORKFLOW_PRIORITY = 8
HIGH_FREQUENCY_MIN_EXECUTIONS = 100
HIGH_FREQUENCY_PER_DAY = 50
DUE_DATE_PATTERN = re.compile(r"^(\d+)_(hour|day|week)s?$")
WEBHOOK_TIMEOUT_SECONDS = 10.0

Hook = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class WorkflowTrigger:
    type: str
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowCondition:
    field: str
    operator: str
    value: Any = None
    logical_operator: Optional[str] = None


@dataclass
class WorkflowAction:
    type: str
    config: dict[str, Any] = field(default_factory=dict)
    delay_ms: int = 0


@dataclass
class WorkflowRule:
    id: str
    name: str
    description: str
    trigger: WorkflowTrigger
    conditions: list[WorkflowCondition] = field(default_factory=list)
    actions: list[WorkflowAction] = field(default_factory=list)
    is_active: bool = True
    priority: int = 5
    execution_count: int = 0
    last_executed: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "WorkflowRule":
        trigger = WorkflowTrigger(**payload["trigger"])
        if trigger.type not in TRIGGER_TYPES:
            raise ValidationFailed(f"Unknown trigger type: {trigger.type}")
        conditions = [WorkflowCondition(**condition) for condition in payload.get("conditions", [])]
        for condition in conditions:
            if condition.operator not in OPERATORS:
                raise ValidationFailed(f"Unknown condition operator: {condition.operator}")
            if condition.logical_operator not in (None, "AND", "OR"):
                raise ValidationFailed(f"Unknown logical operator: {condition.logical_operator}")
        actions = [WorkflowAction(**action) for action in payload.get("actions", [])]
        for action in actions:
            if action.type not in ACTION_TYPES:
                raise ValidationFailed(f"Unknown action type: {action.type}")
        if trigger.type == "scheduled":
            schedule = trigger.config.get("schedule", "")
            try:
                CronTrigger.from_crontab(schedule, timezone=timezone.utc)
            except ValueError as exc:
                raise ValidationFailed(f"Invalid schedule expression: {schedule!r}") from exc
        return cls(
            id=payload.get("id") or f"wf_{uuid4().hex[:12]}",
            name=payload["name"],
            description=payload.get("description", ""),
            trigger=trigger,
            conditions=conditions,
            actions=actions,
            is_active=payload.get("is_active", True),
            priority=int(payload.get("priority", 5)),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["last_executed"] = self.last_executed.isoformat() if self.last_executed else None
        payload["created_at"] = self.created_at.isoformat()
        return payload


DEFAULT_WORKFLOWS: list[dict[str, Any]] = [
    {
        "id": "smart-inventory-reorder",
        "name": "Smart Inventory Reordering",
        "description": "Automatically create purchase orders when inventory falls below optimal levels",
        "trigger": {"type": "inventory_low", "config": {}},
        "conditions": [
            {"field": "new_quantity", "operator": "less_than", "value": "reorder_point"},
            {"field": "supplier.is_active", "operator": "equals", "value": True},
        ],
        "actions": [
            {"type": "ai_analysis", "config": {"analysis_type": "optimal_order_quantity"}},
            {
                "type": "create_po",
                "config": {"auto_approve": False, "notify_purchasing": True, "include_ai_recommendations": True},
            },
        ],
        "priority": 8,
    },
    {
        "id": "dynamic-pricing",
        "name": "AI-Powered Dynamic Pricing",
        "description": "Adjust prices based on market conditions, demand, and competition",
        "trigger": {"type": "scheduled", "config": {"schedule": "0 9 * * *", "scope": "inventory"}},
        "conditions": [
            {"field": "category", "operator": "not_empty"},
            {"field": "is_active", "operator": "equals", "value": True},
        ],
        "actions": [
            {"type": "ai_analysis", "config": {"analysis_type": "market_pricing_analysis"}},
            {"type": "update_price", "config": {"require_approval": True, "max_increase": 0.1, "max_decrease": 0.05}},
        ],
        "priority": 6,
    },
    {
        "id": "churn-prevention",
        "name": "Customer Churn Prevention",
        "description": "Proactively engage customers at risk of churning",
        "trigger": {"type": "ai_insight", "config": {"insight_type": "customer_churn"}},
        "conditions": [
            {"field": "churn_risk", "operator": "greater_than", "value": 0.7},
            {"field": "lifetime_value", "operator": "greater_than", "value": 10000},
        ],
        "actions": [
            {
                "type": "create_alert",
                "config": {"title": "High-Value Customer Churn Risk", "assign_to": "account_manager", "priority": "high"},
            },
            {
                "type": "schedule_task",
                "config": {"task_type": "customer_outreach", "due_date": "3_days", "template": "retention_call"},
            },
        ],
        "priority": 9,
    },
    {
        "id": "supplier-performance",
        "name": "Supplier Performance Monitoring",
        "description": "Monitor and act on supplier performance issues",
        "trigger": {"type": "supplier_delay", "config": {"delay_threshold": 2}},
        "conditions": [
            {"field": "on_time_delivery_rate", "operator": "less_than", "value": 0.85},
            {"field": "is_preferred_supplier", "operator": "equals", "value": True},
        ],
        "actions": [
            {"type": "ai_analysis", "config": {"analysis_type": "supplier_risk_assessment"}},
            {
                "type": "create_alert",
                "config": {
                    "title": "Preferred Supplier Performance Issue",
                    "assign_to": "procurement_team",
                    "include_recommendations": True,
                },
            },
            {"type": "schedule_task", "config": {"task_type": "supplier_review", "due_date": "1_week"}},
        ],
        "priority": 7,
    },
    {
        "id": "seasonal-adjustment",
        "name": "Seasonal Inventory Adjustment",
        "description": "Adjust inventory levels based on seasonal construction patterns",
        "trigger": {"type": "scheduled", "config": {"schedule": "0 0 1 */3 *", "scope": "inventory"}},
        "conditions": [{"field": "category", "operator": "contains", "value": ["lumber", "concrete", "roofing"]}],
        "actions": [
            {"type": "ai_analysis", "config": {"analysis_type": "seasonal_demand_forecast", "horizon": 90}},
            {
                "type": "update_price",
                "config": {"adjustment_type": "seasonal", "require_approval": False, "max_adjustment": 0.15},
            },
        ],
        "priority": 5,
    },
]


def get_field_value(path: str, context: Any) -> Any:
    value = context
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _resolve_expected(value: Any, context: dict[str, Any]) -> Any:
    """A string value naming a context field compares against that field."""
    if isinstance(value, str):
        referenced = get_field_value(value, context)
        if referenced is not None:
            return referenced
    return value


def evaluate_condition(condition: WorkflowCondition, context: dict[str, Any]) -> bool:
    actual = get_field_value(condition.field, context)
    operator = condition.operator

    if operator == "not_empty":
        return actual is not None and actual != ""
    if operator == "contains":
        if actual is None:
            return False
        haystack = str(actual).lower()
        expected = condition.value if isinstance(condition.value, list) else [condition.value]
        return any(str(value).lower() in haystack for value in expected if value is not None)

    expected = _resolve_expected(condition.value, context)
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if actual is None or expected is None:
        return False
    try:
        if operator == "greater_than":
            return actual > expected
        if operator == "less_than":
            return actual < expected
    except TypeError:
        return False
    return False


def evaluate_conditions(conditions: list[WorkflowCondition], context: dict[str, Any]) -> bool:
    """Fold left to right; each result joins with the previous condition's operator."""
    result = True
    pending = "AND"
    for condition in conditions:
        outcome = evaluate_condition(condition, context)
        result = (result and outcome) if pending == "AND" else (result or outcome)
        pending = condition.logical_operator or "AND"
    return result


def matches_trigger(trigger: WorkflowTrigger, event_type: str, data: dict[str, Any]) -> bool:
    if trigger.type == "inventory_low":
        change = data.get("quantity_change")
        return event_type == "inventory_update" and isinstance(change, (int, float)) and change < 0
    if trigger.type == "customer_order":
        return event_type == "order_created" and data.get("type") == "sales_order"
    if trigger.type == "price_change":
        return event_type == "market_update"
    if trigger.type == "ai_insight":
        return event_type == "ai_insight"
    if trigger.type == "supplier_delay":
        threshold = trigger.config.get("delay_threshold", 0)
        days_late = data.get("days_late")
        return (
            event_type == "alert"
            and data.get("category") == "supplier_delay"
            and isinstance(days_late, (int, float))
            and days_late >= threshold
        )
    return False


def calculate_due_date(due: Optional[str], now: Optional[datetime] = None) -> datetime:
    now = now or utc_datetime()
    match = DUE_DATE_PATTERN.match(due or "")
    if not match:
        return now + timedelta(days=1)
    amount, unit = int(match.group(1)), match.group(2)
    return now + timedelta(**{f"{unit}s": amount})


def is_schedule_due(schedule: str, since: datetime, now: datetime) -> bool:
    trigger = CronTrigger.from_crontab(schedule, timezone=timezone.utc)
    next_fire = trigger.get_next_fire_time(since, now)
    return next_fire is not None and next_fire <= now


def _render(template: str, context: dict[str, Any]) -> str:
    flat = {key: value for key, value in context.items() if not isinstance(value, (dict, list))}
    return Template(template).safe_substitute(flat)


class AutomationService:
    def __init__(
        self,
        realtime: Optional[RealTimeService] = None,
        orchestrator: Optional[AIOrchestrator] = None,
        load_defaults: bool = True,
    ) -> None:
        self.realtime = realtime or realtime_service
        self.orchestrator = orchestrator or ai_orchestrator
        self.workflows: dict[str, WorkflowRule] = {}
        self.execution_queue: list[tuple[str, dict[str, Any]]] = []
        self._processing = False
        self._hooks: dict[str, list[Hook]] = defaultdict(list)
        if load_defaults:
            for payload in DEFAULT_WORKFLOWS:
                self.create_workflow(payload)

    # Hooks

    def on(self, name: str, hook: Hook) -> None:
        self._hooks[name].append(hook)

    async def _fire(self, name: str, payload: dict[str, Any]) -> None:
        for hook in list(self._hooks.get(name, [])):
            try:
                await hook(payload)
            except Exception:
                logger.exception("Automation hook %s failed", name)

    # Registry

    def create_workflow(self, payload: dict[str, Any]) -> WorkflowRule:
        workflow = WorkflowRule.from_dict(payload)
        self.workflows[workflow.id] = workflow
        logger.info("Workflow registered: %s", workflow.id, extra={"workflow_id": workflow.id})
        return workflow

    def list_workflows(self) -> list[WorkflowRule]:
        return list(self.workflows.values())

    def get_workflow(self, workflow_id: str) -> WorkflowRule:
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow not found", code="WORKFLOW_NOT_FOUND")
        return workflow

    def toggle_workflow(self, workflow_id: str) -> bool:
        workflow = self.get_workflow(workflow_id)
        workflow.is_active = not workflow.is_active
        logger.info("Workflow %s active=%s", workflow_id, workflow.is_active, extra={"workflow_id": workflow_id})
        return workflow.is_active

    def stats(self) -> dict[str, Any]:
        workflows = list(self.workflows.values())
        total_executions = sum(workflow.execution_count for workflow in workflows)
        return {
            "total_workflows": len(workflows),
            "active_workflows": sum(1 for workflow in workflows if workflow.is_active),
            "total_executions": total_executions,
            "queue_size": len(self.execution_queue),
            "average_executions_per_workflow": round(total_executions / len(workflows)) if workflows else 0,
        }

    # Execution

    async def execute_workflow(self, workflow_id: str, context: Optional[dict[str, Any]] = None) -> bool:
        workflow = self.workflows.get(workflow_id)
        if workflow is None or not workflow.is_active:
            return False

        context = dict(context or {})
        context.setdefault("workflow_id", workflow_id)
        if not evaluate_conditions(workflow.conditions, context):
            return False

        try:
            for action in workflow.actions:
                result = await self.execute_action(action, context, workflow)
                context.setdefault("results", []).append({"action": action.type, "result": result})
                if action.delay_ms:
                    await asyncio.sleep(action.delay_ms / 1000)
        except Exception as exc:
            logger.exception("Workflow execution error for %s", workflow_id, extra={"workflow_id": workflow_id})
            await self._fire("workflow_error", {"workflow_id": workflow_id, "error": str(exc)})
            return False

        workflow.execution_count += 1
        workflow.last_executed = utc_datetime()
        await self._fire("workflow_executed", {"workflow_id": workflow_id, "success": True})
        return True

    async def execute_action(self, action: WorkflowAction, context: dict[str, Any], workflow: WorkflowRule) -> Any:
        handlers = {
            "create_po": self._create_po,
            "send_email": self._send_email,
            "update_price": self._update_price,
            "create_alert": self._create_alert,
            "schedule_task": self._schedule_task,
            "call_webhook": self._call_webhook,
            "ai_analysis": self._ai_analysis,
        }
        handler = handlers.get(action.type)
        if handler is None:
            raise ValueError(f"Unknown action type: {action.type}")
        return await handler(action.config, context, workflow)

    async def _recommended_quantity(self, product_id: str) -> Optional[int]:
        for insight in await self.orchestrator.get_inventory_optimization(AIContext(user_role="system")):
            if insight.data.get("product_id") == product_id:
                return insight.data.get("optimal_order_quantity")
        return None

    async def _create_po(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        product_id = context.get("product_id")
        quantity = context.get("suggested_quantity") or context.get("reorder_quantity")
        if config.get("include_ai_recommendations") and product_id:
            quantity = await self._recommended_quantity(product_id) or quantity
        if not quantity:
            raise ValueError("No order quantity available for purchase order")

        conn = await connect_db()
        try:
            po = await insert_purchase_order(
                conn,
                item_id=product_id,
                supplier_id=context.get("supplier_id") or get_field_value("supplier.id", context),
                quantity=int(quantity),
                unit_cost=float(context.get("unit_cost") or 0),
                source=f"workflow:{workflow.id}",
                status="approved" if config.get("auto_approve") else "draft",
                company_id=context.get("company_id"),
            )
            await conn.commit()
        finally:
            await conn.close()

        company_id = context.get("company_id")
        await self.realtime.emit(
            "order_created",
            {"type": "purchase_order", "auto_generated": True, "workflow_id": workflow.id, **po},
            company_id=company_id,
        )
        if config.get("notify_purchasing"):
            await self.realtime.emit(
                "alert",
                {
                    "title": "Automatic Purchase Order Created",
                    "message": f"PO {po['po_number']} created for {context.get('product_name') or product_id}",
                    "severity": "info",
                    "category": "procurement",
                },
                company_id=company_id,
            )
        return po

    async def _send_email(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        recipient = config.get("to") or context.get("email") or "operations@company.local"
        subject = _render(config.get("subject", f"Automated notice: {workflow.name}"), context)
        body = _render(config.get("body", workflow.description), context)
        conn = await connect_db()
        try:
            await insert_row(
                conn,
                "communications",
                {
                    "workflow_id": workflow.id,
                    "recipient": recipient,
                    "subject": subject,
                    "body": body,
                    "channel": "email",
                    "created_at": utc_now(),
                },
            )
            await conn.commit()
        finally:
            await conn.close()
        return {"sent": True, "recipient": recipient, "timestamp": utc_now()}

    async def _update_price(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        current = context.get("current_price")
        recommended = context.get("recommended_price")
        if current is not None and recommended is not None:
            if "max_adjustment" in config:
                limit = float(config["max_adjustment"])
                recommended = min(max(recommended, current * (1 - limit)), current * (1 + limit))
            else:
                recommended = min(recommended, current * (1 + float(config.get("max_increase", 1))))
                recommended = max(recommended, current * (1 - float(config.get("max_decrease", 1))))
            recommended = round(recommended, 2)

        requires_approval = bool(config.get("require_approval"))
        if requires_approval:
            await self.realtime.emit(
                "alert",
                {
                    "title": "Price Change Approval Required",
                    "message": (
                        f"Recommended price change for {context.get('product_name')}: "
                        f"${current} -> ${recommended}"
                    ),
                    "severity": "info",
                    "category": "pricing",
                    "action_required": True,
                },
                company_id=context.get("company_id"),
            )
        elif recommended is not None and context.get("product_id"):
            conn = await connect_db()
            try:
                await update_row(
                    conn, "inventory_items", "id", context["product_id"], {"price": recommended, "updated_at": utc_now()}
                )
                await conn.commit()
            finally:
                await conn.close()

        return {
            "product_id": context.get("product_id"),
            "old_price": current,
            "new_price": recommended,
            "approved": not requires_approval,
            "timestamp": utc_now(),
        }

    async def _create_alert(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        alert = {
            "title": config.get("title", workflow.name),
            "message": context.get("alert_message") or config.get("message") or workflow.description,
            "severity": config.get("severity", "info"),
            "assign_to": config.get("assign_to"),
            "category": config.get("category", "general"),
            "workflow_id": workflow.id,
        }
        conn = await connect_db()
        try:
            alert["id"] = await insert_row(
                conn,
                "alerts",
                {
                    "workflow_id": workflow.id,
                    "title": alert["title"],
                    "message": alert["message"],
                    "severity": alert["severity"],
                    "category": alert["category"],
                    "company_id": context.get("company_id"),
                    "created_at": utc_now(),
                },
            )
            await conn.commit()
        finally:
            await conn.close()

        priority = config.get("priority", "medium")
        await self.realtime.emit(
            "alert",
            alert,
            company_id=context.get("company_id"),
            priority=priority if priority in PRIORITIES else "medium",
        )
        return alert

    async def _schedule_task(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        task_type = config.get("task_type", "follow_up")
        task = {
            "title": config.get("title") or f"Automated task: {task_type}",
            "description": config.get("template") or workflow.description,
            "assignee": config.get("assign_to", "unassigned"),
            "priority": config.get("priority", "medium"),
            "due_date": iso_z(calculate_due_date(config.get("due_date"))),
        }
        conn = await connect_db()
        try:
            task["id"] = await insert_row(
                conn,
                "internal_tasks",
                {**task, "workflow_id": workflow.id, "status": "open", "created_at": utc_now()},
            )
            await conn.commit()
        finally:
            await conn.close()
        await self._fire("task_scheduled", {"workflow_id": workflow.id, "task": task})
        return task

    async def _call_webhook(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ValueError("call_webhook requires a url")
        body = {"workflow_id": workflow.id, "context": context, "sent_at": utc_now()}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(WEBHOOK_TIMEOUT_SECONDS)) as client:
                response = await client.post(url, json=body, headers=config.get("headers") or {})
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s failed: %s", url, exc, extra={"workflow_id": workflow.id})
            return {"called": False, "error": str(exc), "timestamp": utc_now()}
        return {"called": response.is_success, "status_code": response.status_code, "timestamp": utc_now()}

    async def _ai_analysis(self, config: dict[str, Any], context: dict[str, Any], workflow: WorkflowRule) -> list[dict[str, Any]]:
        analysis_type = config.get("analysis_type")
        ai_context = AIContext(user_role="system", preferences={"analysis_type": analysis_type}, company_id=context.get("company_id"))
        if analysis_type == "optimal_order_quantity":
            insights = await self.orchestrator.get_inventory_optimization(ai_context)
            product_id = context.get("product_id")
            insights = [insight for insight in insights if insight.data.get("product_id") == product_id] or insights
            if insights and product_id:
                context["suggested_quantity"] = insights[0].data.get("optimal_order_quantity")
        elif analysis_type == "market_pricing_analysis":
            insights = await self.orchestrator.get_market_intelligence(ai_context)
        elif analysis_type == "supplier_risk_assessment":
            insights = await self.orchestrator.get_supply_chain_optimization(ai_context)
        elif analysis_type == "seasonal_demand_forecast":
            insights = await self.orchestrator.get_demand_forecasts(ai_context)
        else:
            insights = await self.orchestrator.generate_comprehensive_insights(ai_context)
        return [insight.to_dict() for insight in insights]

    # Triggers

    def enqueue(self, workflow_id: str, context: dict[str, Any]) -> None:
        self.execution_queue.append((workflow_id, context))

    async def on_realtime_event(self, event: RealTimeEvent) -> None:
        matched = [
            workflow
            for workflow in self.workflows.values()
            if workflow.is_active and matches_trigger(workflow.trigger, event.type, event.data)
        ]
        if not matched:
            return
        context = {**event.data, "event_type": event.type, "company_id": event.company_id}
        if event.type == "inventory_update" and event.data.get("product_id"):
            try:
                item_context = await load_inventory_context(event.data["product_id"])
            except NotFoundError:
                logger.warning("Inventory event for unknown product %s", event.data["product_id"])
            else:
                context = {**item_context, **context}
        for workflow in matched:
            self.enqueue(workflow.id, dict(context))

    async def on_insights(self, insights: list[Insight]) -> None:
        for insight in insights:
            for workflow in self.workflows.values():
                if (
                    workflow.is_active
                    and workflow.trigger.type == "ai_insight"
                    and workflow.trigger.config.get("insight_type") == insight.type
                ):
                    self.enqueue(workflow.id, {**insight.data, "insight": insight.to_dict()})

    async def on_critical_alerts(self, insights: list[Insight]) -> None:
        for insight in insights:
            alert = insight.to_dict()
            for workflow in list(self.workflows.values()):
                if (
                    workflow.is_active
                    and workflow.priority >= CRITICAL_WORKFLOW_PRIORITY
                    and matches_trigger(workflow.trigger, "alert", alert.get("data", {}))
                ):
                    await self.execute_workflow(workflow.id, {**alert.get("data", {}), "alert": alert})

    async def process_queue(self) -> int:
        if self._processing or not self.execution_queue:
            return 0
        self._processing = True
        try:
            batch_size = get_settings().workflow_batch_size
            batch, self.execution_queue = self.execution_queue[:batch_size], self.execution_queue[batch_size:]
            await asyncio.gather(*(self.execute_workflow(workflow_id, context) for workflow_id, context in batch))
            return len(batch)
        finally:
            self._processing = False

    async def _scheduled_contexts(self, workflow: WorkflowRule) -> list[dict[str, Any]]:
        if workflow.trigger.config.get("scope") != "inventory":
            return [{"scheduled_execution": True}]
        conn = await connect_db()
        try:
            items = rows_to_dicts(await fetchall(conn, "SELECT * FROM inventory_items WHERE is_active = 1"))
        finally:
            await conn.close()
        return [
            {
                "scheduled_execution": True,
                "product_id": item["id"],
                "product_name": item["name"],
                "category": item["category"],
                "is_active": item["is_active"],
                "current_price": item["price"],
                "company_id": item["company_id"],
            }
            for item in items
        ]

    async def check_scheduled_workflows(self, now: Optional[datetime] = None) -> list[str]:
        now = now or datetime.now(timezone.utc)
        due = []
        for workflow in self.workflows.values():
            if not workflow.is_active or workflow.trigger.type != "scheduled":
                continue
            since = workflow.last_executed or workflow.created_at
            if not is_schedule_due(workflow.trigger.config["schedule"], since, now):
                continue
            due.append(workflow.id)
            # claims this fire time
            workflow.last_executed = now
            for context in await self._scheduled_contexts(workflow):
                self.enqueue(workflow.id, context)
        return due

    async def review_workflows(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        flagged = []
        for workflow in self.workflows.values():
            if workflow.execution_count <= HIGH_FREQUENCY_MIN_EXECUTIONS or workflow.last_executed is None:
                continue
            days = max((now - workflow.created_at).total_seconds() / 86400, 1 / 86400)
            if workflow.execution_count / days > HIGH_FREQUENCY_PER_DAY:
                notice = {
                    "workflow_id": workflow.id,
                    "reason": "high_frequency",
                    "suggestion": "Consider batching executions",
                }
                logger.warning("Workflow %s runs at high frequency", workflow.id, extra={"workflow_id": workflow.id})
                await self._fire("workflow_optimization_needed", notice)
                flagged.append(notice)
        return flagged


async def load_inventory_context(product_id: str) -> dict[str, Any]:
    """Context for a manual inventory-driven run: the item plus its supplier."""
    conn = await connect_db()
    try:
        row = await fetchone(
            conn,
            """
            SELECT i.*, s.id AS s_id, s.name AS s_name, s.is_active AS s_active
            FROM inventory_items i
            LEFT JOIN suppliers s ON s.id = i.supplier_id
            WHERE i.id = ?
            """,
            (product_id,),
        )
    finally:
        await conn.close()
    if row is None:
        raise NotFoundError("Inventory item not found", code="ITEM_NOT_FOUND")
    item = dict(row)
    return {
        "product_id": item["id"],
        "product_name": item["name"],
        "category": item["category"],
        "new_quantity": item["stock"],
        "reorder_point": item["reorder_point"],
        "reorder_quantity": item["reorder_quantity"],
        "unit_cost": item["cost"],
        "current_price": item["price"],
        "is_active": bool(item["is_active"]),
        "supplier_id": item["supplier_id"],
        "supplier": {"id": item["s_id"], "name": item["s_name"], "is_active": bool(item["s_active"])},
        "company_id": item["company_id"],
    }


automation_service = AutomationService()
