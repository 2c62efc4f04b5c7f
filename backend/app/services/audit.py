"""Audit trail helpers — every governance and dedup write records one row here."""
import logging
from typing import Any, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orm_models import AuditLog

logger = logging.getLogger("solarops-audit")

AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE", "RESTORE", "PURGE", "ARCHIVE", "UNARCHIVE")


async def log_audit_action(
    db: AsyncSession,
    table_name: str,
    record_id: str,
    action: str,
    actor_user_id: Optional[str] = None,
    reason: Optional[str] = None,
    old_data: Optional[dict[str, Any]] = None,
    new_data: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's session; the caller owns the commit."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    entry = AuditLog(
        table_name=table_name,
        record_id=str(record_id),
        action=action,
        actor_user_id=actor_user_id,
        reason=reason,
        old_data=old_data,
        new_data=new_data,
    )
    db.add(entry)
    await db.flush()
    logger.debug(f"audit {action} {table_name}/{record_id} by {actor_user_id}: {reason}")
    return entry


async def list_audit_logs(
    db: AsyncSession,
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    reason_prefix: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Sequence[AuditLog]:
    query = select(AuditLog)
    if table_name:
        query = query.where(AuditLog.table_name == table_name)
    if record_id:
        query = query.where(AuditLog.record_id == record_id)
    if reason_prefix:
        query = query.where(AuditLog.reason.startswith(reason_prefix, autoescape=True))
    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id).offset(offset).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()
