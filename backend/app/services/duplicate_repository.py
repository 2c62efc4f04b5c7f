"""
duplicate_repository.py — Database access for the duplicate scanner.

Reads:
  - in-scope project snapshot (not deleted, not archived) with investor and child counts
  - reviewed pair keys from duplicate_reviews plus the legacy duplicate_ignore_pairs list
  - persisted scanner threshold overrides

Writes (each action is one unit of work: commit on success, rollback on any failure):
  - dismiss: C(N,2) review rows upserted on the normalized pair key
  - confirm: soft-delete the duplicate + one review row
  - merge:   move documents / status history, soft-delete, one review row
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.dedup_schema import ProjectForComparison, ScannerSettings
from app.models.orm_models import (
    AppSetting,
    Document,
    DuplicateIgnorePair,
    DuplicateReview,
    Investor,
    Project,
    ProjectStatusHistory,
    gen_uuid,
)
from app.services import dedup_config as cfg
from app.services.audit import log_audit_action
from app.services.duplicate_scanner import PairKey, normalize_pair, pair_keys
from app.services.perf_monitor import timed_async
from app.services.errors import (
    InvalidResolutionError,
    ProjectAlreadyDeletedError,
    ProjectNotFoundError,
    ReviewNotFoundError,
)

logger = logging.getLogger("solarops-dedup.repository")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT construct supporting ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported on dialect {dialect}")
    return insert


# ─── Reads ────────────────────────────────────────────────────────────────────

@timed_async
async def load_projects_for_comparison(db: AsyncSession) -> List[ProjectForComparison]:
    """Snapshot every active project, newest first."""
    result = await db.execute(
        select(Project, Investor.investor_code, Investor.company_name)
        .outerjoin(Investor, Project.investor_id == Investor.id)
        .where(Project.is_deleted.is_(False), Project.is_archived.is_(False))
        .order_by(Project.created_at.desc(), Project.id)
    )
    rows = result.all()
    project_ids = [p.id for p, _, _ in rows]
    if not project_ids:
        return []

    doc_counts: Dict[str, int] = dict(
        (await db.execute(
            select(Document.project_id, func.count(Document.id))
            .where(Document.is_deleted.is_(False), Document.project_id.in_(project_ids))
            .group_by(Document.project_id)
        )).all()
    )
    history_counts: Dict[str, int] = dict(
        (await db.execute(
            select(ProjectStatusHistory.project_id, func.count(ProjectStatusHistory.id))
            .where(ProjectStatusHistory.project_id.in_(project_ids))
            .group_by(ProjectStatusHistory.project_id)
        )).all()
    )

    return [
        ProjectForComparison(
            id=p.id,
            project_code=p.project_code,
            project_name=p.project_name,
            site_code_display=p.site_code_display,
            investor_id=p.investor_id,
            investor_code=investor_code,
            investor_name=company_name,
            address=p.address,
            city=p.city,
            district=p.district,
            capacity_kwp=float(p.capacity_kwp) if p.capacity_kwp is not None else None,
            intake_year=p.intake_year,
            seq=p.seq,
            created_at=p.created_at,
            status=p.status or "",
            document_count=doc_counts.get(p.id, 0),
            status_history_count=history_counts.get(p.id, 0),
        )
        for p, investor_code, company_name in rows
    ]


@timed_async
async def load_reviewed_pairs(db: AsyncSession) -> Dict[PairKey, str]:
    """
    Normalized pair key → decision. Legacy ignore pairs not already reviewed
    count as dismissed.
    """
    pairs: Dict[PairKey, str] = {}
    reviews = await db.execute(
        select(DuplicateReview.project_id_a, DuplicateReview.project_id_b, DuplicateReview.decision)
    )
    for a, b, decision in reviews.all():
        pairs[normalize_pair(a, b)] = decision

    ignored = await db.execute(
        select(DuplicateIgnorePair.project_id_a, DuplicateIgnorePair.project_id_b)
    )
    for a, b in ignored.all():
        pairs.setdefault(normalize_pair(a, b), cfg.DECISION_DISMISS)
    return pairs


async def list_reviews(
    db: AsyncSession, decision: Optional[str] = None, limit: int = 200, offset: int = 0
) -> Sequence[DuplicateReview]:
    query = select(DuplicateReview)
    if decision:
        query = query.where(DuplicateReview.decision == decision)
    query = query.order_by(DuplicateReview.reviewed_at.desc(), DuplicateReview.id).offset(offset).limit(limit)
    return (await db.execute(query)).scalars().all()


async def delete_review(db: AsyncSession, review_id: str, actor_user_id: Optional[str]) -> None:
    """Remove a review so the pair becomes eligible for scanning again."""
    review = (await db.execute(
        select(DuplicateReview).where(DuplicateReview.id == review_id)
    )).scalar_one_or_none()
    if not review:
        raise ReviewNotFoundError(review_id)
    try:
        snapshot = _review_snapshot(review)
        await db.delete(review)
        await log_audit_action(
            db, "duplicate_reviews", review.project_id_a, "PURGE",
            actor_user_id=actor_user_id,
            reason=f"DEDUP_REOPEN: review {review_id} removed",
            old_data=snapshot,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(f"Review {review_id} deleted by {actor_user_id}")


# ─── Writes ───────────────────────────────────────────────────────────────────

def _review_snapshot(review: DuplicateReview) -> Dict[str, Any]:
    return {
        "project_id_a": review.project_id_a,
        "project_id_b": review.project_id_b,
        "decision": review.decision,
        "reason": review.reason,
        "reviewed_by": review.reviewed_by,
    }


async def _upsert_reviews(db: AsyncSession, rows: List[Dict[str, Any]]) -> None:
    if not rows:
        return
    insert = _insert_for(db)
    stmt = insert(DuplicateReview).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=[DuplicateReview.project_id_a, DuplicateReview.project_id_b],
        set_={
            "decision": stmt.excluded.decision,
            "reason": stmt.excluded.reason,
            "reviewed_by": stmt.excluded.reviewed_by,
            "reviewed_at": stmt.excluded.reviewed_at,
        },
    )
    await db.execute(stmt)


def _review_row(pair: PairKey, decision: str, reason: str, actor_user_id: Optional[str]) -> Dict[str, Any]:
    return {
        "id": gen_uuid(),
        "project_id_a": pair[0],
        "project_id_b": pair[1],
        "decision": decision,
        "reason": reason,
        "reviewed_by": actor_user_id,
        "reviewed_at": _utcnow(),
    }


async def _get_active_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(
        select(Project).where(Project.id == project_id)
    )).scalar_one_or_none()
    if not project:
        raise ProjectNotFoundError(project_id)
    if project.is_deleted:
        raise ProjectAlreadyDeletedError(project_id)
    return project


def _soft_delete(project: Project, actor_user_id: Optional[str], reason: str) -> None:
    project.is_deleted = True
    project.deleted_at = _utcnow()
    project.deleted_by = actor_user_id
    project.delete_reason = reason


@timed_async
async def dismiss_pairs(
    db: AsyncSession,
    project_ids: Sequence[str],
    actor_user_id: Optional[str],
    reason: Optional[str] = None,
) -> List[PairKey]:
    """
    Mark every pair among ``project_ids`` as not-duplicate.
    Writes C(N,2) review rows (upsert, so repeating the call is harmless)
    and one audit entry per pair.
    """
    ids = list(dict.fromkeys(project_ids))
    if len(ids) < 2:
        raise InvalidResolutionError("At least two distinct project ids are required")
    reason_text = reason or cfg.DEFAULT_DISMISS_REASON
    pairs = pair_keys(ids)
    rows = [_review_row(pair, cfg.DECISION_DISMISS, reason_text, actor_user_id) for pair in pairs]

    try:
        found = set((await db.execute(
            select(Project.id).where(Project.id.in_(ids))
        )).scalars().all())
        missing = [pid for pid in ids if pid not in found]
        if missing:
            raise ProjectNotFoundError(missing[0])

        await _upsert_reviews(db, rows)
        for row in rows:
            await log_audit_action(
                db, "duplicate_reviews", row["project_id_a"], "CREATE",
                actor_user_id=actor_user_id,
                reason=f"{cfg.AUDIT_PREFIX_DISMISS}: {reason_text}",
                new_data={
                    "project_id_a": row["project_id_a"],
                    "project_id_b": row["project_id_b"],
                    "decision": row["decision"],
                    "reason": row["reason"],
                },
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Dismissed {len(pairs)} pair(s) across {len(ids)} projects by {actor_user_id}")
    return pairs


@timed_async
async def confirm_and_delete(
    db: AsyncSession,
    keep_project_id: str,
    delete_project_id: str,
    actor_user_id: Optional[str],
    reason: Optional[str] = None,
) -> PairKey:
    """Soft-delete the duplicate and record a single 'confirm' review for the pair."""
    if keep_project_id == delete_project_id:
        raise InvalidResolutionError("Keep and delete project must differ")

    try:
        await _get_active_project(db, keep_project_id)
        duplicate = await _get_active_project(db, delete_project_id)

        _soft_delete(duplicate, actor_user_id, reason or cfg.DEFAULT_CONFIRM_REASON)
        pair = normalize_pair(keep_project_id, delete_project_id)
        await _upsert_reviews(db, [_review_row(
            pair,
            cfg.DECISION_CONFIRM,
            reason or f"Kept {keep_project_id}, deleted {delete_project_id}",
            actor_user_id,
        )])
        await log_audit_action(
            db, "projects", delete_project_id, "DELETE",
            actor_user_id=actor_user_id,
            reason=f"{cfg.AUDIT_PREFIX_CONFIRM}: confirmed duplicate, kept project {keep_project_id}",
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Confirmed duplicate {delete_project_id} (kept {keep_project_id}) by {actor_user_id}")
    return pair


@timed_async
async def merge_projects(
    db: AsyncSession,
    keep_project_id: str,
    merge_project_id: str,
    actor_user_id: Optional[str],
    merge_documents: bool = True,
    merge_status_history: bool = True,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Fold ``merge_project_id`` into ``keep_project_id``.

    Reassignment, soft delete, review row and audit entry commit together;
    a failure at any step rolls all of them back.
    """
    if keep_project_id == merge_project_id:
        raise InvalidResolutionError("Keep and merge project must differ")

    documents_moved = history_moved = 0
    try:
        await _get_active_project(db, keep_project_id)
        merged = await _get_active_project(db, merge_project_id)

        if merge_documents:
            result = await db.execute(
                update(Document)
                .where(Document.project_id == merge_project_id, Document.is_deleted.is_(False))
                .values(project_id=keep_project_id)
            )
            documents_moved = result.rowcount or 0

        if merge_status_history:
            result = await db.execute(
                update(ProjectStatusHistory)
                .where(ProjectStatusHistory.project_id == merge_project_id)
                .values(project_id=keep_project_id)
            )
            history_moved = result.rowcount or 0

        _soft_delete(merged, actor_user_id, f"Merged into project {keep_project_id}")
        pair = normalize_pair(keep_project_id, merge_project_id)
        await _upsert_reviews(db, [_review_row(
            pair,
            cfg.DECISION_MERGED,
            reason or f"Merged into {keep_project_id}",
            actor_user_id,
        )])

        detail = ""
        if merge_documents:
            detail += ", with documents"
        if merge_status_history:
            detail += ", with status history"
        await log_audit_action(
            db, "projects", merge_project_id, "UPDATE",
            actor_user_id=actor_user_id,
            reason=f"{cfg.AUDIT_PREFIX_MERGE}: merged into project {keep_project_id}{detail}",
            new_data={
                "merged_into": keep_project_id,
                "documents_moved": documents_moved,
                "status_history_moved": history_moved,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.warning(f"Merge of {merge_project_id} into {keep_project_id} rolled back")
        raise

    logger.info(
        f"Merged {merge_project_id} into {keep_project_id} by {actor_user_id} "
        f"(documents={documents_moved}, status_history={history_moved})"
    )
    return {
        "keep_project_id": keep_project_id,
        "merge_project_id": merge_project_id,
        "documents_moved": documents_moved,
        "status_history_moved": history_moved,
        "pair": list(pair),
    }


# ─── Scanner settings ─────────────────────────────────────────────────────────

async def get_scanner_settings(db: AsyncSession) -> ScannerSettings:
    """Environment defaults with any persisted overrides applied."""
    row = (await db.execute(
        select(AppSetting).where(AppSetting.key == cfg.SETTINGS_KEY)
    )).scalar_one_or_none()
    return ScannerSettings().with_overrides(row.value if row else None)


async def save_scanner_settings(
    db: AsyncSession, overrides: Dict[str, Any], actor_user_id: Optional[str]
) -> ScannerSettings:
    current = await get_scanner_settings(db)
    updated = current.with_overrides(overrides)
    row = (await db.execute(
        select(AppSetting).where(AppSetting.key == cfg.SETTINGS_KEY)
    )).scalar_one_or_none()
    if row is None:
        row = AppSetting(key=cfg.SETTINGS_KEY, value=updated.model_dump(), updated_by=actor_user_id)
        db.add(row)
    else:
        row.value = updated.model_dump()
        row.updated_by = actor_user_id
    await db.commit()
    logger.info(f"Scanner settings updated by {actor_user_id}: {overrides}")
    return updated


async def reset_scanner_settings(db: AsyncSession, actor_user_id: Optional[str]) -> ScannerSettings:
    row = (await db.execute(
        select(AppSetting).where(AppSetting.key == cfg.SETTINGS_KEY)
    )).scalar_one_or_none()
    if row is not None:
        await db.delete(row)
        await db.commit()
    logger.info(f"Scanner settings reset to defaults by {actor_user_id}")
    return ScannerSettings()
