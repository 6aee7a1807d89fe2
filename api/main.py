from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes.auth import router as auth_router
from api.routes.automation import router as automation_router
from api.routes.contracts import router as contracts_router
from api.routes.customers import router as customers_router
from api.routes.insights import router as insights_router
from api.routes.inventory import router as inventory_router
from api.routes.orders import router as orders_router
from api.routes.projects import router as projects_router
from api.routes.realtime import router as realtime_router
from api.routes.risk import router as risk_router
from api.routes.supply_chain import router as supply_chain_router
from api.services.automation import automation_service
from api.services.config import get_settings
from api.services.contracts import contract_manager
from api.services.database import init_db
from api.services.errors import ApiError
from api.services.insights import ai_orchestrator
from api.services.llm import llm_enabled
from api.services.logging_config import setup_logging
from api.services.realtime import realtime_service, send

logger = logging.getLogger(__name__)

settings = get_settings()

CONTRACT_REVIEW_HOURS = 24


def register_listeners() -> None:
    """Route broadcasts and insight updates into the automation engine."""
    realtime_service.add_listener(automation_service.on_realtime_event)
    ai_orchestrator.on("insights_updated", realtime_service.on_insights_updated)
    ai_orchestrator.on("insights_updated", automation_service.on_insights)
    ai_orchestrator.on("critical_alerts", realtime_service.on_critical_alerts)
    ai_orchestrator.on("critical_alerts", automation_service.on_critical_alerts)


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(realtime_service.cleanup_buffers, "interval", seconds=settings.buffer_cleanup_seconds, id="buffer-cleanup")
    scheduler.add_job(
        automation_service.process_queue,
        "interval",
        seconds=settings.workflow_queue_seconds,
        id="workflow-queue",
        max_instances=1,
    )
    scheduler.add_job(
        automation_service.check_scheduled_workflows,
        "interval",
        seconds=settings.schedule_check_seconds,
        id="scheduled-workflows",
    )
    scheduler.add_job(
        automation_service.review_workflows,
        "interval",
        seconds=settings.workflow_review_seconds,
        id="workflow-review",
    )
    scheduler.add_job(
        ai_orchestrator.check_critical_alerts,
        "interval",
        seconds=settings.critical_alert_seconds,
        id="critical-alerts",
    )
    scheduler.add_job(contract_manager.check_urgent_issues, "interval", hours=CONTRACT_REVIEW_HOURS, id="contract-review")
    if settings.insight_refresh_seconds > 0 and llm_enabled():
        scheduler.add_job(
            ai_orchestrator.refresh,
            "interval",
            seconds=settings.insight_refresh_seconds,
            id="insight-refresh",
            max_instances=1,
        )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging(settings)
    await init_db()
    scheduler = build_scheduler()
    scheduler.start()
    logger.info("ERP API started (real LLM %s)", "enabled" if llm_enabled() else "disabled")
    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        logger.info("ERP API stopped")


register_listeners()

app = FastAPI(title="Construction ERP API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://127.0.0.1:3000", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(inventory_router)
app.include_router(customers_router)
app.include_router(orders_router)
app.include_router(realtime_router)
app.include_router(automation_router)
app.include_router(contracts_router)
app.include_router(supply_chain_router)
app.include_router(insights_router)
app.include_router(risk_router)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = {
        "success": False,
        "error": "Validation failed",
        "code": "VALIDATION_ERROR",
        "details": json.loads(json.dumps(exc.errors(), default=str)),
    }
    return JSONResponse(status_code=400, content=body)


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "real_llm_enabled": llm_enabled(),
        "connected_clients": realtime_service.connected_clients_count(),
    }


@app.websocket("/ws/realtime")
async def ws_realtime(websocket: WebSocket) -> None:
    await websocket.accept()
    client = await realtime_service.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await send(client, "error", {"message": "Messages must be JSON"})
                continue
            if not isinstance(message, dict):
                await send(client, "error", {"message": "Messages must be JSON objects"})
                continue
            try:
                await realtime_service.handle_message(client, message)
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("Failed to handle %s message from %s", message.get("event"), client.connection_id)
                await send(client, "error", {"message": "Could not process message"})
    except WebSocketDisconnect:
        pass
    finally:
        await realtime_service.disconnect(client.connection_id)
