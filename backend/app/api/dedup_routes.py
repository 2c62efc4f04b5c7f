"""Duplicate-project routes — scan, warnings, review history, resolution actions, scanner settings."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.db import get_db
from app.api.deps import get_current_user, require_admin, require_role
from app.models.dedup_schema import (
    ConfirmRequest,
    DismissRequest,
    MergeRequest,
    ReviewDecision,
    ReviewOut,
    ScannerSettings,
    ScannerSettingsUpdate,
    ScanResponse,
)
from app.models.orm_models import User
from app.services import duplicate_repository as repo
from app.services.duplicate_scanner import DuplicateScanner
from app.services.errors import SolarOpsError
from app.services.perf_monitor import tracker

router = APIRouter(prefix="/api/v1/duplicates", tags=["Duplicate Projects"])
logger = logging.getLogger("solarops-api")


def _http_error(exc: SolarOpsError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


# ─── Scan ────────────────────────────────────────────────────────────────────

@router.get("/scan", response_model=ScanResponse)
async def scan_duplicates(
    request: Request,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    """Run a full duplicate scan over all active projects."""
    try:
        settings = await repo.get_scanner_settings(db)
        projects = await repo.load_projects_for_comparison(db)
        reviewed = await repo.load_reviewed_pairs(db)
        result = DuplicateScanner(settings).scan(projects, reviewed.keys())
    except Exception:
        tracker.record_error("scan")
        logger.exception("Duplicate scan failed", extra={"request_id": _request_id(request)})
        raise

    stats = result.stats
    tracker.record_scan(
        stats.duration_ms,
        stats.pairs_compared,
        {"high": stats.high, "medium": stats.medium, "low": stats.low},
    )
    return ScanResponse(stats=stats, groups=result.groups)


@router.get("/warnings")
async def duplicate_warnings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Per-project badges for list views: high and medium matches only."""
    settings = await repo.get_scanner_settings(db)
    projects = await repo.load_projects_for_comparison(db)
    warnings = DuplicateScanner(settings).duplicate_warnings(projects)
    return {pid: w.model_dump() for pid, w in warnings.items()}


# ─── Review history ──────────────────────────────────────────────────────────

@router.get("/reviews", response_model=list[ReviewOut])
async def list_reviews(
    decision: Optional[ReviewDecision] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await repo.list_reviews(db, decision=decision, limit=limit, offset=offset)


@router.delete("/reviews/{review_id}")
async def reopen_review(
    review_id: str,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a review so the pair is scanned again."""
    try:
        await repo.delete_review(db, review_id, actor_user_id=user.id)
    except SolarOpsError as e:
        raise _http_error(e)
    return {"status": "deleted", "review_id": review_id}


# ─── Resolution actions ──────────────────────────────────────────────────────

@router.post("/dismiss")
async def dismiss_group(
    payload: DismissRequest,
    request: Request,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    """Mark every pair among the selected projects as not-duplicate."""
    try:
        pairs = await repo.dismiss_pairs(db, payload.project_ids, actor_user_id=user.id, reason=payload.reason)
    except SolarOpsError as e:
        tracker.record_error("dismiss")
        raise _http_error(e)
    except Exception:
        tracker.record_error("dismiss")
        raise
    tracker.record_resolution("dismiss")
    logger.info(
        f"Dismiss by {user.id}: {len(payload.project_ids)} projects, {len(pairs)} pairs",
        extra={"request_id": _request_id(request)},
    )
    return {"status": "dismissed", "pairs_written": len(pairs), "pairs": [list(p) for p in pairs]}


@router.post("/confirm")
async def confirm_duplicate(
    payload: ConfirmRequest,
    request: Request,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    """Keep one project, soft-delete the other."""
    try:
        pair = await repo.confirm_and_delete(
            db,
            payload.keep_project_id,
            payload.delete_project_id,
            actor_user_id=user.id,
            reason=payload.reason,
        )
    except SolarOpsError as e:
        tracker.record_error("confirm")
        raise _http_error(e)
    except Exception:
        tracker.record_error("confirm")
        raise
    tracker.record_resolution("confirm")
    logger.info(
        f"Confirm by {user.id}: kept {payload.keep_project_id}, deleted {payload.delete_project_id}",
        extra={"request_id": _request_id(request), "project_id": payload.delete_project_id},
    )
    return {
        "status": "confirmed",
        "keep_project_id": payload.keep_project_id,
        "deleted_project_id": payload.delete_project_id,
        "pair": list(pair),
    }


@router.post("/merge")
async def merge_duplicate(
    payload: MergeRequest,
    request: Request,
    user: User = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
):
    """Move child records into the kept project and soft-delete the other, atomically."""
    try:
        result = await repo.merge_projects(
            db,
            payload.keep_project_id,
            payload.merge_project_id,
            actor_user_id=user.id,
            merge_documents=payload.merge_documents,
            merge_status_history=payload.merge_status_history,
            reason=payload.reason,
        )
    except SolarOpsError as e:
        tracker.record_error("merge")
        raise _http_error(e)
    except Exception:
        tracker.record_error("merge")
        raise
    tracker.record_resolution("merge")
    logger.info(
        f"Merge by {user.id}: {payload.merge_project_id} -> {payload.keep_project_id}",
        extra={"request_id": _request_id(request), "project_id": payload.merge_project_id},
    )
    return {"status": "merged", **result}


# ─── Scanner settings ────────────────────────────────────────────────────────

@router.get("/settings", response_model=ScannerSettings)
async def get_settings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await repo.get_scanner_settings(db)


@router.put("/settings", response_model=ScannerSettings)
async def update_settings(
    payload: ScannerSettingsUpdate,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Persist threshold overrides; omitted fields keep their current value."""
    return await repo.save_scanner_settings(db, payload.model_dump(exclude_none=True), actor_user_id=user.id)


@router.delete("/settings", response_model=ScannerSettings)
async def reset_settings(
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Drop persisted overrides and fall back to the environment defaults."""
    return await repo.reset_scanner_settings(db, actor_user_id=user.id)
