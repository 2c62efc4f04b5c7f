"""
Pydantic models for the duplicate scanner.

ProjectForComparison is the read-only snapshot the scanner works on;
DuplicateGroup is the ephemeral scan output. Neither is persisted.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from app.services import dedup_config as cfg

ConfidenceLevel = Literal["high", "medium", "low"]
ReviewDecision = Literal["dismiss", "confirm", "merged"]


class ProjectForComparison(BaseModel):
    id: str
    project_code: str
    project_name: str
    site_code_display: Optional[str] = None
    investor_id: Optional[str] = None
    investor_code: Optional[str] = None
    investor_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    capacity_kwp: Optional[float] = None
    intake_year: Optional[int] = None
    seq: Optional[int] = None
    created_at: Optional[datetime] = None
    status: str = ""
    document_count: int = 0
    status_history_count: int = 0

    model_config = {"frozen": True}


class MatchCriterion(BaseModel):
    name: str
    matched: bool
    value: Optional[str] = None
    score: Optional[int] = None


class DuplicateGroup(BaseModel):
    id: str
    confidence_level: ConfidenceLevel
    matched_criteria: list[MatchCriterion] = []
    unmatched_criteria: list[MatchCriterion] = []
    projects: list[ProjectForComparison] = []
    address_similarity: float = 0.0     # percent, 0–100
    name_similarity: float = 0.0        # percent, 0–100
    address_token_overlap: float = 0.0  # ratio, 0–1

    def project_ids(self) -> list[str]:
        return [p.id for p in self.projects]


class ScanStats(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0
    projects_scanned: int = 0
    pairs_compared: int = 0
    pairs_skipped_reviewed: int = 0
    pairs_excluded: int = 0
    pairs_unclassified: int = 0
    duration_ms: float = 0.0


class ScanResponse(BaseModel):
    stats: ScanStats
    groups: list[DuplicateGroup]


class DuplicateWarning(BaseModel):
    project_id: str
    has_potential_duplicates: bool = True
    duplicate_project_ids: list[str] = []
    reason: str = ""


class ScannerSettings(BaseModel):
    """Scanner thresholds, all in percent. Defaults come from dedup_config."""
    min_address_similarity: float = Field(cfg.MIN_ADDRESS_SIMILARITY, ge=0, le=100)
    min_name_similarity: float = Field(cfg.MIN_NAME_SIMILARITY, ge=0, le=100)
    max_capacity_difference: float = Field(cfg.MAX_CAPACITY_DIFFERENCE, ge=0, le=100)
    medium_address_threshold: float = Field(cfg.MEDIUM_ADDRESS_THRESHOLD, ge=0, le=100)
    medium_name_threshold: float = Field(cfg.MEDIUM_NAME_THRESHOLD, ge=0, le=100)
    max_low_capacity_difference: float = Field(cfg.MAX_LOW_CAPACITY_DIFFERENCE, ge=0, le=100)
    min_address_token_overlap: float = Field(cfg.MIN_ADDRESS_TOKEN_OVERLAP, ge=0, le=100)

    def with_overrides(self, overrides: Optional[dict]) -> "ScannerSettings":
        """Return a copy with known keys from ``overrides`` applied; unknown keys are ignored."""
        if not overrides:
            return self
        known = {k: v for k, v in overrides.items() if k in type(self).model_fields and v is not None}
        return type(self).model_validate({**self.model_dump(), **known})


class ScannerSettingsUpdate(BaseModel):
    min_address_similarity: Optional[float] = Field(None, ge=0, le=100)
    min_name_similarity: Optional[float] = Field(None, ge=0, le=100)
    max_capacity_difference: Optional[float] = Field(None, ge=0, le=100)
    medium_address_threshold: Optional[float] = Field(None, ge=0, le=100)
    medium_name_threshold: Optional[float] = Field(None, ge=0, le=100)
    max_low_capacity_difference: Optional[float] = Field(None, ge=0, le=100)
    min_address_token_overlap: Optional[float] = Field(None, ge=0, le=100)


# ── Resolution requests ──────────────────────────────────────────────────────

class DismissRequest(BaseModel):
    project_ids: list[str] = Field(..., min_length=2)
    reason: Optional[str] = None

    @field_validator("project_ids")
    @classmethod
    def _distinct_ids(cls, v: list[str]) -> list[str]:
        # Keep first-seen order, drop repeats
        seen: list[str] = []
        for pid in v:
            if pid not in seen:
                seen.append(pid)
        if len(seen) < 2:
            raise ValueError("At least two distinct project ids are required")
        return seen


class ConfirmRequest(BaseModel):
    keep_project_id: str
    delete_project_id: str
    reason: Optional[str] = None


class MergeRequest(BaseModel):
    keep_project_id: str
    merge_project_id: str
    merge_documents: bool = True
    merge_status_history: bool = True
    reason: Optional[str] = None


class ReviewOut(BaseModel):
    id: str
    project_id_a: str
    project_id_b: str
    decision: ReviewDecision
    reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
