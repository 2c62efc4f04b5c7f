"""
Project governance — soft delete, restore, archive, unarchive and purge.

Every state change writes one audit row in the same commit.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orm_models import (
    Document,
    DuplicateIgnorePair,
    DuplicateReview,
    Project,
    ProjectStatusHistory,
)
from app.services.audit import log_audit_action
from app.services.errors import (
    InvalidResolutionError,
    ProjectAlreadyDeletedError,
    ProjectNotFoundError,
)

logger = logging.getLogger("solarops-governance")


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(select(Project).where(Project.id == project_id))).scalar_one_or_none()
    if not project:
        raise ProjectNotFoundError(project_id)
    return project


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def soft_delete_project(
    db: AsyncSession, project_id: str, actor_user_id: Optional[str], reason: Optional[str] = None
) -> Project:
    project = await _get_project(db, project_id)
    if project.is_deleted:
        raise ProjectAlreadyDeletedError(project_id)
    project.is_deleted = True
    project.deleted_at = datetime.now(timezone.utc)
    project.deleted_by = actor_user_id
    project.delete_reason = reason
    await log_audit_action(db, "projects", project_id, "DELETE", actor_user_id=actor_user_id, reason=reason)
    await _commit(db)
    logger.info(f"Project {project_id} soft-deleted by {actor_user_id}")
    return project


async def restore_project(db: AsyncSession, project_id: str, actor_user_id: Optional[str]) -> Project:
    project = await _get_project(db, project_id)
    if not project.is_deleted:
        raise InvalidResolutionError(f"Project {project_id} is not deleted")
    project.is_deleted = False
    project.deleted_at = None
    project.deleted_by = None
    project.delete_reason = None
    await log_audit_action(db, "projects", project_id, "RESTORE", actor_user_id=actor_user_id)
    await _commit(db)
    logger.info(f"Project {project_id} restored by {actor_user_id}")
    return project


async def archive_project(
    db: AsyncSession, project_id: str, actor_user_id: Optional[str], reason: Optional[str] = None
) -> Project:
    project = await _get_project(db, project_id)
    if project.is_archived:
        raise InvalidResolutionError(f"Project {project_id} is already archived")
    project.is_archived = True
    project.archived_at = datetime.now(timezone.utc)
    project.archived_by = actor_user_id
    project.archive_reason = reason
    await log_audit_action(db, "projects", project_id, "ARCHIVE", actor_user_id=actor_user_id, reason=reason)
    await _commit(db)
    return project


async def unarchive_project(db: AsyncSession, project_id: str, actor_user_id: Optional[str]) -> Project:
    project = await _get_project(db, project_id)
    if not project.is_archived:
        raise InvalidResolutionError(f"Project {project_id} is not archived")
    project.is_archived = False
    project.archived_at = None
    project.archived_by = None
    project.archive_reason = None
    await log_audit_action(db, "projects", project_id, "UNARCHIVE", actor_user_id=actor_user_id)
    await _commit(db)
    return project


async def purge_project(db: AsyncSession, project_id: str, actor_user_id: Optional[str]) -> None:
    """
    Permanently remove a soft-deleted project together with its documents,
    status history and any duplicate review rows that reference it.
    """
    project = await _get_project(db, project_id)
    if not project.is_deleted:
        raise InvalidResolutionError("Only projects in the recycle bin can be purged")
    snapshot = {
        "project_code": project.project_code,
        "project_name": project.project_name,
        "site_code_display": project.site_code_display,
        "delete_reason": project.delete_reason,
    }
    try:
        await db.execute(delete(Document).where(Document.project_id == project_id))
        await db.execute(delete(ProjectStatusHistory).where(ProjectStatusHistory.project_id == project_id))
        for model in (DuplicateReview, DuplicateIgnorePair):
            await db.execute(
                delete(model).where((model.project_id_a == project_id) | (model.project_id_b == project_id))
            )
        await db.delete(project)
        await log_audit_action(
            db, "projects", project_id, "PURGE", actor_user_id=actor_user_id, old_data=snapshot,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.warning(f"Project {project_id} purged by {actor_user_id}")


async def list_recycle_bin(db: AsyncSession, limit: int = 100, offset: int = 0) -> Sequence[Project]:
    result = await db.execute(
        select(Project)
        .where(Project.is_deleted.is_(True))
        .order_by(Project.deleted_at.desc(), Project.id)
        .offset(offset)
        .limit(limit)
    )
    return result.scalars().all()
