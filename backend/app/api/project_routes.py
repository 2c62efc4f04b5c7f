"""Project governance routes — soft delete, restore, archive, purge and the recycle bin."""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from app.db import get_db
from app.api.deps import require_admin, require_role
from app.models.orm_models import User
from app.services import governance
from app.services.errors import SolarOpsError

router = APIRouter(prefix="/api/v1/projects", tags=["Project Governance"])
logger = logging.getLogger("solarops-api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class ProjectSummary(BaseModel):
    id: str
    project_code: str
    project_name: str
    site_code_display: Optional[str] = None
    district: Optional[str] = None
    status: str
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    delete_reason: Optional[str] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None

    model_config = {"from_attributes": True}


# ─── Routes ──────────────────────────────────────────────────────────────────

@router.get("/recycle-bin", response_model=list[ProjectSummary])
async def recycle_bin(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    """Soft-deleted projects, most recently deleted first."""
    return await governance.list_recycle_bin(db, limit=limit, offset=offset)


@router.post("/{project_id}/delete", response_model=ProjectSummary)
async def delete_project(
    project_id: str,
    payload: ReasonRequest,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await governance.soft_delete_project(db, project_id, actor_user_id=user.id, reason=payload.reason)
    except SolarOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{project_id}/restore", response_model=ProjectSummary)
async def restore_project(
    project_id: str,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await governance.restore_project(db, project_id, actor_user_id=user.id)
    except SolarOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{project_id}/archive", response_model=ProjectSummary)
async def archive_project(
    project_id: str,
    payload: ReasonRequest,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await governance.archive_project(db, project_id, actor_user_id=user.id, reason=payload.reason)
    except SolarOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{project_id}/unarchive", response_model=ProjectSummary)
async def unarchive_project(
    project_id: str,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await governance.unarchive_project(db, project_id, actor_user_id=user.id)
    except SolarOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.delete("/{project_id}")
async def purge_project(
    project_id: str,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Permanently remove a project that is already in the recycle bin."""
    try:
        await governance.purge_project(db, project_id, actor_user_id=user.id)
    except SolarOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"status": "purged", "project_id": project_id}
