from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from api.services.database import connect_db, fetchall, iso_z, rows_to_dicts, utc_datetime, utc_now
from api.services.errors import LLMError
from api.services.llm import llm_enabled, llm_json
from api.services.supply_chain import SupplyChainOptimizer

logger = logging.getLogger(__name__)

SEVERITY_WEIGHT = {"critical": 100, "warning": 70, "info": 40}
DEFAULT_TYPE_PRIORITY = 20
TYPE_PRIORITY = {
    "small": {
        "inventory_optimization": 50,
        "cash_flow_prediction": 45,
        "demand_forecast": 40,
        "customer_churn": 35,
        "supplier_risk": 30,
        "price_opportunity": 25,
    },
    "midsize": {
        "demand_forecast": 50,
        "supplier_risk": 45,
        "inventory_optimization": 40,
        "customer_churn": 35,
        "price_opportunity": 30,
        "seasonal_trend": 25,
    },
    "enterprise": {
        "supplier_risk": 50,
        "demand_forecast": 45,
        "seasonal_trend": 40,
        "price_opportunity": 35,
        "inventory_optimization": 30,
        "customer_churn": 25,
    },
}
MAX_INSIGHTS = 20
HISTORY_DAYS = 90
INSIGHT_TTL = timedelta(hours=24)

SYSTEM_PROMPT = (
    "You are an expert construction-industry business analyst. "
    "Return strict JSON only, no markdown, no commentary."
)

InsightListener = Callable[[list["Insight"]], Awaitable[None]]


@dataclass
class AIContext:
    user_role: str = "user"
    company_size: str = "midsize"
    industry: str = "construction"
    preferences: dict[str, Any] = field(default_factory=dict)
    company_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Optional[dict[str, Any]], *, user_role: str, company_id: Optional[str]) -> "AIContext":
        payload = payload or {}
        size = payload.get("company_size", "midsize")
        if size not in TYPE_PRIORITY:
            size = "midsize"
        return cls(
            user_role=user_role,
            company_size=size,
            industry=payload.get("industry", "construction"),
            preferences=dict(payload.get("preferences") or {}),
            company_id=company_id,
        )


@dataclass
class Insight:
    type: str
    title: str
    description: str
    severity: str
    confidence: float
    action: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"insight-{uuid4().hex[:12]}")
    created_at: str = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utc_datetime())

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["expires_at"] = iso_z(self.expires_at) if self.expires_at else None
        return payload


def severity_from(confidence: float, impact: float) -> str:
    risk = confidence * impact
    if risk > 0.8:
        return "critical"
    if risk > 0.5:
        return "warning"
    return "info"


def insight_score(insight: Insight, context: AIContext) -> float:
    score = float(SEVERITY_WEIGHT.get(insight.severity, 0))
    score += (insight.confidence or 0) * 50
    score += TYPE_PRIORITY.get(context.company_size, {}).get(insight.type, DEFAULT_TYPE_PRIORITY)
    return score


def prioritize_insights(insights: list[Insight], context: AIContext) -> list[Insight]:
    ranked = sorted(insights, key=lambda insight: insight_score(insight, context), reverse=True)
    return ranked[:MAX_INSIGHTS]


def _clamp_confidence(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _number(value: Any, default: float = 0.0) -> float:
    """Read a model-supplied number, tolerating strings such as ``"12%"``."""
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _text(value: Any, default: str) -> str:
    return str(value) if value not in (None, "") else default


def _first(values: Any, default: str) -> str:
    if isinstance(values, list) and values:
        return str(values[0])
    return default


class AIOrchestrator:
    def __init__(self, optimizer: Optional[SupplyChainOptimizer] = None) -> None:
        self.optimizer = optimizer or SupplyChainOptimizer()
        self.active_insights: dict[str, Insight] = {}
        self._alerted: set[str] = set()
        self._listeners: dict[str, list[InsightListener]] = defaultdict(list)

    def on(self, event_name: str, listener: InsightListener) -> None:
        self._listeners[event_name].append(listener)

    async def _notify(self, event_name: str, insights: list[Insight]) -> None:
        for listener in list(self._listeners.get(event_name, [])):
            try:
                await listener(insights)
            except Exception:
                logger.exception("Insight listener failed for %s", event_name)

    async def _ask_model(self, kind: str, list_key: str, objective: str, context: AIContext, summary: Any) -> list[dict[str, Any]]:
        if not llm_enabled():
            logger.warning("LLM disabled, skipping %s insights", kind)
            return []
        payload = {
            "objective": objective,
            "return_format": {list_key: "array of objects"},
            "company_size": context.company_size,
            "industry": context.industry,
            "preferences": context.preferences,
            "data": summary,
        }
        try:
            result = await llm_json(SYSTEM_PROMPT, payload, temperature=0.1, max_tokens=2000)
        except LLMError as exc:
            logger.warning("%s insights unavailable: %s", kind, exc)
            return []
        entries = result.get(list_key, [])
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, dict)]

    async def get_demand_forecasts(self, context: AIContext) -> list[Insight]:
        conn = await connect_db()
        try:
            orders = rows_to_dicts(
                await fetchall(
                    conn,
                    "SELECT items, order_date FROM orders WHERE status != 'CANCELLED' AND order_date >= ?",
                    ((utc_datetime() - timedelta(days=HISTORY_DAYS)).date().isoformat(),),
                )
            )
        finally:
            await conn.close()

        demand: dict[str, int] = defaultdict(int)
        for order in orders:
            for item in order["items"]:
                demand[item.get("product_name", "unknown")] += int(item.get("quantity", 0))

        entries = await self._ask_model(
            "demand",
            "forecasts",
            "Forecast product demand trends. Each forecast: product_name, trend (percent), horizon (days), "
            "confidence (0-1), impact (0-1), recommendations (list of strings).",
            context,
            {"units_sold_last_90_days": demand},
        )
        insights = []
        for entry in entries:
            trend = _number(entry.get("trend"))
            horizon = int(_number(entry.get("horizon"), 30))
            confidence = _clamp_confidence(entry.get("confidence"))
            impact = _clamp_confidence(entry.get("impact"))
            name = _text(entry.get("product_name"), "Unknown product")
            insights.append(
                Insight(
                    type="demand_forecast",
                    title=f"Demand Forecast: {name}",
                    description=(
                        f"Predicted {'increase' if trend > 0 else 'decrease'} of {abs(trend)}% "
                        f"in next {horizon} days"
                    ),
                    severity=severity_from(confidence, impact),
                    confidence=confidence,
                    action=_first(entry.get("recommendations"), "Review demand patterns"),
                    data={"product_name": name, "trend": trend, "horizon": horizon},
                )
            )
        return insights

    async def get_inventory_optimization(self, context: AIContext) -> list[Insight]:
        insights = []
        for recommendation in await self.optimizer.reorder_candidates():
            item = recommendation["item"]
            reorder = recommendation["reorder"]
            out_of_stock = recommendation["priority"] == "critical"
            insights.append(
                Insight(
                    type="inventory_optimization",
                    title=f"{'Out of stock' if out_of_stock else 'Low stock'}: {item['name']}",
                    description=(
                        f"Stock {item['stock']} is at or below the reorder point. "
                        f"Optimal reorder point is {reorder['reorder_point']}."
                    ),
                    severity="critical" if out_of_stock else "warning",
                    confidence=0.9,
                    action=f"Order {reorder['optimal_order_quantity']} units",
                    data={
                        "product_id": item["id"],
                        "sku": item["sku"],
                        "current_stock": item["stock"],
                        "reorder_point": reorder["reorder_point"],
                        "optimal_order_quantity": reorder["optimal_order_quantity"],
                        "suggested_supplier": reorder["suggested_supplier"],
                    },
                )
            )
        return insights

    async def get_customer_intelligence(self, context: AIContext) -> list[Insight]:
        conn = await connect_db()
        try:
            rows = await fetchall(
                conn,
                """
                SELECT customer_id, customer_name, COUNT(*) AS order_count,
                       SUM(total_amount) AS lifetime_value, MAX(order_date) AS last_order_date,
                       SUM(CASE WHEN payment_status = 'OVERDUE' THEN 1 ELSE 0 END) AS overdue_orders
                FROM orders
                GROUP BY customer_id, customer_name
                ORDER BY lifetime_value DESC
                LIMIT 50
                """,
            )
        finally:
            await conn.close()

        entries = await self._ask_model(
            "customer",
            "customers",
            "Identify customers at risk of churning. Each entry: customer_id, title, description, "
            "churn_risk (0-1), confidence (0-1), retention_strategies (list of strings).",
            context,
            [dict(row) for row in rows],
        )
        lifetime_values = {row["customer_id"]: row["lifetime_value"] or 0 for row in rows}
        insights = []
        for entry in entries:
            churn_risk = _clamp_confidence(entry.get("churn_risk"), 0.0)
            customer_id = entry.get("customer_id")
            insights.append(
                Insight(
                    type="customer_churn",
                    title=_text(entry.get("title"), "Customer churn risk"),
                    description=_text(entry.get("description"), ""),
                    severity="critical" if churn_risk > 0.7 else "warning" if churn_risk > 0.4 else "info",
                    confidence=_clamp_confidence(entry.get("confidence")),
                    action=_first(entry.get("retention_strategies"), "Review customer relationship"),
                    data={
                        "customer_id": customer_id,
                        "churn_risk": churn_risk,
                        "lifetime_value": _number(lifetime_values.get(customer_id, entry.get("lifetime_value"))),
                    },
                )
            )
        return insights

    async def get_supply_chain_optimization(self, context: AIContext) -> list[Insight]:
        conn = await connect_db()
        try:
            suppliers = rows_to_dicts(
                await fetchall(
                    conn,
                    """
                    SELECT s.id, s.name, s.reliability, s.price_competitiveness, s.on_time_delivery_rate,
                           s.total_spend, COUNT(i.id) AS items_supplied, i.category
                    FROM suppliers s
                    LEFT JOIN inventory_items i ON i.supplier_id = s.id
                    WHERE s.is_active = 1
                    GROUP BY s.id, i.category
                    """,
                )
            )
        finally:
            await conn.close()

        entries = await self._ask_model(
            "supply chain",
            "risks",
            "Identify supplier concentration and reliability risks. Each entry: title, description, "
            "risk_level (critical|warning|info), confidence (0-1), mitigation_strategies (list), category.",
            context,
            suppliers,
        )
        insights = []
        for entry in entries:
            level = entry.get("risk_level", "info")
            insights.append(
                Insight(
                    type="supplier_risk",
                    title=_text(entry.get("title"), "Supplier risk"),
                    description=_text(entry.get("description"), ""),
                    severity=level if level in SEVERITY_WEIGHT else "info",
                    confidence=_clamp_confidence(entry.get("confidence")),
                    action=_first(entry.get("mitigation_strategies"), "Review supplier relationships"),
                    data={"category": entry.get("category")},
                )
            )
        return insights

    async def get_project_intelligence(self, context: AIContext) -> list[Insight]:
        conn = await connect_db()
        try:
            projects = rows_to_dicts(
                await fetchall(
                    conn,
                    "SELECT name, status, budget, start_date, end_date, location FROM projects WHERE is_active = 1",
                )
            )
        finally:
            await conn.close()

        entries = await self._ask_model(
            "project",
            "insights",
            "Identify seasonal demand or scheduling trends implied by the project pipeline. Each entry: "
            "title, description, severity (critical|warning|info), confidence (0-1), recommendations (list).",
            context,
            projects,
        )
        insights = []
        for entry in entries:
            severity = entry.get("severity", "info")
            insights.append(
                Insight(
                    type="seasonal_trend",
                    title=_text(entry.get("title"), "Project pipeline trend"),
                    description=_text(entry.get("description"), ""),
                    severity=severity if severity in SEVERITY_WEIGHT else "info",
                    confidence=_clamp_confidence(entry.get("confidence")),
                    action=_first(entry.get("recommendations"), "Review project pipeline"),
                )
            )
        return insights

    async def get_market_intelligence(self, context: AIContext) -> list[Insight]:
        if not llm_enabled():
            logger.warning("LLM disabled, skipping market insights")
            return []
        payload = {
            "objective": (
                f"Analyze the construction materials market for a {context.company_size} company. "
                "Return summary (string) and recommendations (list of strings)."
            ),
            "industry": context.industry,
        }
        try:
            analysis = await llm_json(SYSTEM_PROMPT, payload, temperature=0.1, max_tokens=2000)
        except LLMError as exc:
            logger.warning("market insights unavailable: %s", exc)
            return []
        return [
            Insight(
                type="price_opportunity",
                title="Market Intelligence Update",
                description=_text(analysis.get("summary"), "Current market conditions analysis"),
                severity="info",
                confidence=0.8,
                action=_first(analysis.get("recommendations"), "Review market conditions"),
            )
        ]

    async def _collect(
        self, name: str, producer: Callable[[AIContext], Awaitable[list[Insight]]], context: AIContext
    ) -> list[Insight]:
        try:
            return await producer(context)
        except Exception:
            logger.warning("%s insights failed, skipping", name, exc_info=True)
            return []

    async def generate_comprehensive_insights(self, context: AIContext) -> list[Insight]:
        producers = {
            "demand": self.get_demand_forecasts,
            "inventory": self.get_inventory_optimization,
            "customer": self.get_customer_intelligence,
            "supply chain": self.get_supply_chain_optimization,
            "project": self.get_project_intelligence,
            "market": self.get_market_intelligence,
        }
        groups = await asyncio.gather(*(self._collect(name, producer, context) for name, producer in producers.items()))
        insights = prioritize_insights([insight for group in groups for insight in group], context)
        expires_at = utc_datetime() + INSIGHT_TTL
        for insight in insights:
            insight.expires_at = insight.expires_at or expires_at
        self.active_insights = {insight.id: insight for insight in insights}
        self._alerted.intersection_update(self.active_insights)
        await self._notify("insights_updated", insights)
        return insights

    async def refresh(self) -> list[Insight]:
        """Periodic refresh with a default admin context."""
        return await self.generate_comprehensive_insights(AIContext(user_role="admin"))

    async def check_critical_alerts(self, now: Optional[datetime] = None) -> list[Insight]:
        for insight_id in [key for key, insight in self.active_insights.items() if insight.is_expired(now)]:
            del self.active_insights[insight_id]
            self._alerted.discard(insight_id)

        critical = [
            insight
            for insight in self.active_insights.values()
            if insight.severity == "critical" and insight.id not in self._alerted
        ]
        if critical:
            self._alerted.update(insight.id for insight in critical)
            await self._notify("critical_alerts", critical)
        return critical


ai_orchestrator = AIOrchestrator()
