from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.database import connect_db, fetchall, fetchone, insert_row, row_to_dict, rows_to_dicts, update_row, utc_now
from api.services.errors import ForbiddenError, NotFoundError, ValidationFailed
from api.services.pagination import envelope, paginate
from api.services.realtime import realtime_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])

PROJECT_STATUSES = ("planning", "in-progress", "completed", "on-hold", "cancelled")


class ProjectCreate(BaseModel):
    name: str
    client_name: str
    budget: float
    start_date: str
    location: Any
    description: Optional[str] = None
    status: str = "planning"
    end_date: Optional[str] = None
    manager_id: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    client_name: Optional[str] = None
    budget: Optional[float] = None
    start_date: Optional[str] = None
    location: Any = None
    description: Optional[str] = None
    status: Optional[str] = None
    end_date: Optional[str] = None
    manager_id: Optional[str] = None
    is_active: Optional[bool] = None


def _check_fields(values: dict[str, Any]) -> None:
    if "status" in values and values["status"] not in PROJECT_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(PROJECT_STATUSES)}", code="INVALID_STATUS")
    if "budget" in values and values["budget"] is not None and values["budget"] <= 0:
        raise ValidationFailed("Budget must be greater than 0", code="INVALID_BUDGET")


async def _load(conn, project_id: str, user: CurrentUser) -> dict[str, Any]:
    row = await fetchone(
        conn, "SELECT * FROM projects WHERE id = ? AND company_id = ?", (project_id, user.company_id)
    )
    if row is None:
        raise NotFoundError("Project not found", code="PROJECT_NOT_FOUND")
    project = row_to_dict(row)
    if user.role == "manager" and project["manager_id"] != user.id:
        raise ForbiddenError("Access denied to this project")
    return project


@router.get("")
async def list_projects(
    page: int = Query(1),
    limit: int = Query(10),
    status: Optional[str] = None,
    manager_id: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    query = "SELECT * FROM projects WHERE company_id = ?"
    params: list[Any] = [user.company_id]
    if user.role == "manager":
        query += " AND manager_id = ?"
        params.append(user.id)
    elif manager_id and user.role == "admin":
        query += " AND manager_id = ?"
        params.append(manager_id)
    if status:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY created_at DESC, id"

    conn = await connect_db()
    try:
        projects = rows_to_dicts(await fetchall(conn, query, tuple(params)))
    finally:
        await conn.close()
    data, pagination = paginate(projects, page, limit)
    return envelope(data, pagination)


@router.get("/{project_id}")
async def get_project(project_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        project = await _load(conn, project_id, user)
    finally:
        await conn.close()
    return envelope(project)


@router.post("", status_code=201)
async def create_project(
    body: ProjectCreate,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    values = body.model_dump()
    _check_fields(values)
    now = utc_now()
    project = {
        **values,
        "id": f"proj_{uuid4().hex[:12]}",
        "manager_id": values["manager_id"] or user.id,
        "company_id": user.company_id,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }

    conn = await connect_db()
    try:
        await insert_row(conn, "projects", project)
        await conn.commit()
    finally:
        await conn.close()

    logger.info("Project %s created by %s", project["id"], user.id)
    await realtime_service.emit(
        "system_notification",
        {"message": f"Project {project['name']} created", "project_id": project["id"]},
        company_id=user.company_id,
        priority="low",
    )
    return envelope(project, message="Project created successfully")


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    _check_fields(changes)
    changes["updated_at"] = utc_now()

    conn = await connect_db()
    try:
        project = await _load(conn, project_id, user)
        await update_row(conn, "projects", "id", project_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    return envelope({**project, **changes}, message="Project updated successfully")


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(require_role("admin")),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        await _load(conn, project_id, user)
        await conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        await conn.commit()
    finally:
        await conn.close()
    logger.info("Project %s deleted by %s", project_id, user.id)
    return envelope({"id": project_id}, message="Project deleted successfully")
