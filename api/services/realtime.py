from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import uuid4

from api.services.auth import decode_token
from api.services.config import get_settings
from api.services.customers import change_status
from api.services.database import connect_db, fetchone, iso_z, row_to_dict, update_row, utc_datetime, utc_now
from api.services.errors import ApiError, ForbiddenError, NotFoundError
from api.services.insights import AIContext, AIOrchestrator, ai_orchestrator
from api.services.supply_chain import insert_purchase_order

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "inventory_update",
    "order_created",
    "ai_insight",
    "alert",
    "market_update",
    "system_notification",
}
PRIORITIES = {"low", "medium", "high", "critical"}
GLOBAL_BUFFER = "global"
OBJECT_EVENTS = ("authenticate", "ai_query", "action_request")
# Same roles as the matching REST endpoints.
ACTION_ROLES = {
    "reorder_product": ("admin", "manager"),
    "update_price": ("admin", "manager"),
    "update_customer_status": ("admin", "manager", "sales"),
}
# Actions that broadcast their own system_notification.
SELF_ANNOUNCING_ACTIONS = {"update_customer_status"}


class ClientSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass
class RealTimeEvent:
    type: str
    data: dict[str, Any]
    priority: str = "medium"
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_datetime)

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type}")
        if self.priority not in PRIORITIES:
            raise ValueError(f"Unknown event priority: {self.priority}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": self.data,
            "timestamp": iso_z(self.timestamp),
            "user_id": self.user_id,
            "company_id": self.company_id,
            "priority": self.priority,
        }


@dataclass
class ClientState:
    connection_id: str
    socket: ClientSocket
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


EventListener = Callable[[RealTimeEvent], Awaitable[None]]


async def send(client: ClientState, event_name: str, data: Any) -> None:
    await client.socket.send_json({"event": event_name, "data": data})


class RealTimeService:
    def __init__(
        self,
        orchestrator: Optional[AIOrchestrator] = None,
        buffer_size: Optional[int] = None,
        replay_limit: Optional[int] = None,
        retention_hours: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.orchestrator = orchestrator or ai_orchestrator
        self.buffer_size = buffer_size or settings.event_buffer_size
        self.replay_limit = replay_limit or settings.event_replay_limit
        self.retention = timedelta(hours=retention_hours or settings.event_retention_hours)
        self.clients: dict[str, ClientState] = {}
        self.user_subscriptions: dict[str, set[str]] = {}
        self.event_buffer: dict[str, deque[RealTimeEvent]] = {}
        self._listeners: list[EventListener] = []
        self._lock = asyncio.Lock()

    # Connections

    async def connect(self, socket: ClientSocket) -> ClientState:
        async with self._lock:
            client = ClientState(connection_id=str(uuid4()), socket=socket)
            self.clients[client.connection_id] = client
        logger.info("Client connected: %s", client.connection_id)
        return client

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self.clients.pop(connection_id, None)
        logger.info("Client disconnected: %s", connection_id)

    def connected_clients_count(self) -> int:
        return len(self.clients)

    def subscriptions(self) -> dict[str, list[str]]:
        return {user_id: sorted(types) for user_id, types in self.user_subscriptions.items()}

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    # Inbound messages

    async def handle_message(self, client: ClientState, message: dict[str, Any]) -> None:
        event_name = message.get("event")
        data = message.get("data")
        if event_name in OBJECT_EVENTS and not isinstance(data, dict):
            await send(client, "error", {"message": f"{event_name} expects an object payload"})
            return

        if event_name == "authenticate":
            await self.authenticate(client, data)
        elif event_name in ("subscribe", "unsubscribe"):
            event_types = await self._requested_event_types(client, event_name, data)
            if event_types is None:
                return
            if event_name == "subscribe":
                self.subscribe(client, event_types)
            else:
                self.unsubscribe(client, event_types)
        elif event_name == "ai_query":
            await self.handle_ai_query(client, data)
        elif event_name == "action_request":
            await self.handle_action_request(client, data)
        else:
            await send(client, "error", {"message": f"Unknown event: {event_name}"})

    async def _requested_event_types(self, client: ClientState, event_name: str, data: Any) -> Optional[list[str]]:
        if not isinstance(data, list) or not all(isinstance(value, str) for value in data):
            await send(client, "error", {"message": f"{event_name} expects a list of event types"})
            return None
        unknown = sorted(set(data) - EVENT_TYPES)
        if unknown:
            await send(client, "error", {"message": f"Unknown event types: {', '.join(unknown)}"})
            return None
        return data

    async def authenticate(self, client: ClientState, data: dict[str, Any]) -> None:
        try:
            user = decode_token(str(data.get("token", "")))
        except ApiError as exc:
            await send(client, "error", {"message": exc.message, "code": exc.code})
            return

        client.user_id = user.id
        client.company_id = user.company_id
        client.role = user.role
        logger.info("User authenticated: %s (%s)", user.id, user.role)
        await send(client, "authenticated", user.to_dict())
        await self.send_buffered_events(client)

    def subscribe(self, client: ClientState, event_types: list[str]) -> None:
        if not client.authenticated:
            return
        self.user_subscriptions.setdefault(client.user_id, set()).update(event_types)

    def unsubscribe(self, client: ClientState, event_types: list[str]) -> None:
        if not client.authenticated or client.user_id not in self.user_subscriptions:
            return
        self.user_subscriptions[client.user_id].difference_update(event_types)

    # Delivery

    def should_receive(self, client: ClientState, event: RealTimeEvent) -> bool:
        if not client.authenticated:
            return False
        if event.company_id and client.company_id != event.company_id:
            return False
        if event.user_id and client.user_id != event.user_id:
            return False
        subscribed = self.user_subscriptions.get(client.user_id)
        if subscribed and event.type not in subscribed:
            return False
        return True

    def buffer_event(self, event: RealTimeEvent) -> None:
        key = event.company_id or GLOBAL_BUFFER
        buffer = self.event_buffer.get(key)
        if buffer is None:
            buffer = self.event_buffer[key] = deque(maxlen=self.buffer_size)
        buffer.append(event)

    async def broadcast(self, event: RealTimeEvent) -> None:
        self.buffer_event(event)

        async with self._lock:
            recipients = [client for client in self.clients.values() if self.should_receive(client, event)]

        payload = event.to_dict()
        for client in recipients:
            try:
                await send(client, "realtime_event", payload)
            except Exception:
                logger.warning("Dropping client %s after failed send", client.connection_id, exc_info=True)
                await self.disconnect(client.connection_id)

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Real-time listener failed for %s", event.type)

    async def emit(
        self,
        event_type: str,
        data: dict[str, Any],
        *,
        priority: str = "medium",
        company_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> RealTimeEvent:
        event = RealTimeEvent(type=event_type, data=data, priority=priority, company_id=company_id, user_id=user_id)
        await self.broadcast(event)
        return event

    async def send_buffered_events(self, client: ClientState) -> None:
        buffer = self.event_buffer.get(client.company_id or "") or self.event_buffer.get(GLOBAL_BUFFER) or deque()
        recent = [event for event in buffer if self.should_receive(client, event)][-self.replay_limit :]
        if recent:
            await send(client, "buffered_events", [event.to_dict() for event in recent])

    def cleanup_buffers(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utc_datetime()) - self.retention
        removed = 0
        for key, buffer in list(self.event_buffer.items()):
            kept = [event for event in buffer if event.timestamp > cutoff]
            removed += len(buffer) - len(kept)
            self.event_buffer[key] = deque(kept, maxlen=self.buffer_size)
        if removed:
            logger.info("Purged %d expired buffered events", removed)
        return removed

    # AI queries

    async def handle_ai_query(self, client: ClientState, query: dict[str, Any]) -> None:
        try:
            result = await self.run_ai_query(client, query)
        except Exception as exc:
            logger.warning("AI query failed: %s", exc)
            await send(client, "ai_response", {"success": False, "error": str(exc)})
            return
        await send(client, "ai_response", {"success": True, "data": [insight.to_dict() for insight in result]})

    async def run_ai_query(self, client: ClientState, query: dict[str, Any]) -> list[Any]:
        context = AIContext.from_payload(query.get("context"), user_role=client.role or "user", company_id=client.company_id)
        query_type = query.get("type")
        if query_type == "demand_forecast":
            return await self.orchestrator.get_demand_forecasts(context)
        if query_type == "inventory_optimization":
            return await self.orchestrator.get_inventory_optimization(context)
        if query_type == "customer_intelligence":
            return await self.orchestrator.get_customer_intelligence(context)
        if query_type == "comprehensive_insights":
            return await self.orchestrator.generate_comprehensive_insights(context)
        raise ValueError("Unknown AI query type")

    # Actions

    async def handle_action_request(self, client: ClientState, action: dict[str, Any]) -> None:
        if not client.authenticated:
            await send(client, "action_response", {"success": False, "error": "Not authenticated"})
            return
        action_type = action.get("type")
        payload = action.get("payload") or {}
        try:
            if not isinstance(payload, dict):
                raise ValueError("payload must be an object")
            result = await self.run_action(client, action_type, payload)
        except (ValueError, TypeError, KeyError, ApiError) as exc:
            response = {"success": False, "error": exc.message if isinstance(exc, ApiError) else str(exc)}
            if isinstance(exc, ApiError):
                response["code"] = exc.code
            await send(client, "action_response", response)
            return

        await send(client, "action_response", {"success": True, "data": result})
        if action_type not in SELF_ANNOUNCING_ACTIONS:
            await self.emit(
                "system_notification",
                {"action": action_type, "result": result, "user": client.user_id},
                company_id=client.company_id,
            )

    async def run_action(self, client: ClientState, action_type: Optional[str], payload: dict[str, Any]) -> dict[str, Any]:
        allowed = ACTION_ROLES.get(action_type or "")
        if allowed is not None and client.role not in allowed:
            raise ForbiddenError("Insufficient permissions for this action", code="AUTH_INSUFFICIENT_PERMISSIONS")
        if action_type == "reorder_product":
            return await self._reorder_product(client, payload)
        if action_type == "update_price":
            return await self._update_price(client, payload)
        if action_type == "send_alert":
            return await self._send_alert(client, payload)
        if action_type == "update_customer_status":
            return await self._update_customer_status(client, payload)
        raise ValueError("Unknown action type")

    async def _company_item(self, conn, client: ClientState, product_id: Any) -> dict[str, Any]:
        row = await fetchone(
            conn,
            "SELECT * FROM inventory_items WHERE id = ? AND (company_id = ? OR company_id IS NULL)",
            (str(product_id), client.company_id),
        )
        if row is None:
            raise NotFoundError("Product not found", code="ITEM_NOT_FOUND")
        return row_to_dict(row)

    async def _reorder_product(self, client: ClientState, payload: dict[str, Any]) -> dict[str, Any]:
        quantity = int(payload["quantity"])
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        unit_cost = float(payload.get("unit_cost", 0))

        conn = await connect_db()
        try:
            item = await self._company_item(conn, client, payload["product_id"])
            po = await insert_purchase_order(
                conn,
                item_id=item["id"],
                supplier_id=payload.get("supplier_id") or item.get("supplier_id"),
                quantity=quantity,
                unit_cost=unit_cost or item["cost"],
                source="realtime_action",
                company_id=client.company_id,
            )
            await conn.commit()
        finally:
            await conn.close()

        result = {
            "product_id": item["id"],
            "quantity": quantity,
            "supplier": po["supplier_id"],
            "estimated_cost": po["estimated_cost"],
            "estimated_delivery": po["expected_delivery"],
            "po_number": po["po_number"],
            "status": po["status"],
        }
        await self.emit("order_created", {"type": "purchase_order", **result}, company_id=client.company_id)
        return result

    async def _update_price(self, client: ClientState, payload: dict[str, Any]) -> dict[str, Any]:
        new_price = float(payload["new_price"])
        if new_price < 0:
            raise ValueError("new_price must not be negative")

        conn = await connect_db()
        try:
            item = await self._company_item(conn, client, payload["product_id"])
            await update_row(conn, "inventory_items", "id", item["id"], {"price": new_price, "updated_at": utc_now()})
            await conn.commit()
        finally:
            await conn.close()

        logger.info("Price for %s changed %.2f -> %.2f by %s", item["id"], item["price"], new_price, client.user_id)
        return {
            "product_id": item["id"],
            "old_price": item["price"],
            "new_price": new_price,
            "reason": payload.get("reason"),
            "effective_date": payload.get("effective_date") or utc_now(),
            "updated_by": client.user_id,
        }

    async def _send_alert(self, client: ClientState, payload: dict[str, Any]) -> dict[str, Any]:
        severity = payload.get("severity", "info")
        await self.emit(
            "alert",
            {
                "title": payload.get("title"),
                "message": payload.get("message"),
                "severity": severity,
                "sender": client.user_id,
            },
            company_id=client.company_id,
            priority="critical" if severity == "critical" else "medium",
        )
        return {"sent": True, "timestamp": utc_now()}

    async def _update_customer_status(self, client: ClientState, payload: dict[str, Any]) -> dict[str, Any]:
        conn = await connect_db()
        try:
            result = await change_status(
                conn,
                str(payload["customer_id"]),
                client.company_id,
                str(payload["new_status"]),
                reason=payload.get("reason"),
                updated_by=client.user_id,
            )
            await conn.commit()
        finally:
            await conn.close()

        await self.emit(
            "system_notification",
            {"type": "customer_status_changed", **result},
            company_id=client.company_id,
        )
        return result

    # Orchestrator hooks

    async def on_insights_updated(self, insights: list[Any]) -> None:
        await self.emit("ai_insight", {"insights": [insight.to_dict() for insight in insights], "type": "batch_update"})

    async def on_critical_alerts(self, insights: list[Any]) -> None:
        await self.emit(
            "alert",
            {"alerts": [insight.to_dict() for insight in insights], "severity": "critical"},
            priority="critical",
        )


realtime_service = RealTimeService()
