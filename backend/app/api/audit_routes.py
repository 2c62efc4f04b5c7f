"""Audit log routes — read-only trail of governance and dedup actions."""
from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from app.db import get_db
from app.api.deps import require_role
from app.models.orm_models import User
from app.services.audit import list_audit_logs

router = APIRouter(prefix="/api/v1/audit-logs", tags=["Audit"])


class AuditLogOut(BaseModel):
    id: str
    table_name: str
    record_id: str
    action: str
    actor_user_id: Optional[str] = None
    reason: Optional[str] = None
    old_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


@router.get("", response_model=list[AuditLogOut])
async def get_audit_logs(
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    reason_prefix: Optional[str] = Query(None, description="e.g. DEDUP_ for all duplicate resolutions"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    return await list_audit_logs(
        db,
        table_name=table_name,
        record_id=record_id,
        reason_prefix=reason_prefix,
        limit=limit,
        offset=offset,
    )
