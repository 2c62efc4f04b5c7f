"""ORM Models for the solar project back office — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    JSON, String, Text, Boolean, Integer, Numeric, DateTime,
    ForeignKey, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── AUTH ──────────────────────────────────────────────────────────────────────
class User(Base):
    """
    Mirror of the hosted auth provider's user profile.
    Passwords and sessions live with the provider; only identity and role are kept here.
    """
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="viewer")  # admin | staff | viewer
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── INVESTORS ─────────────────────────────────────────────────────────────────
class Investor(Base):
    __tablename__ = "investors"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    investor_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_id: Mapped[Optional[str]] = mapped_column(String(20))
    contact_person: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    projects: Mapped[list["Project"]] = relationship("Project", back_populates="investor")


# ── PROJECTS ──────────────────────────────────────────────────────────────────
class Project(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_code: Mapped[str] = mapped_column(String(100), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Display code: investor code + intake year + sequence, e.g. "INV01-2024-003"
    site_code_display: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    investor_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("investors.id"))
    intake_year: Mapped[Optional[int]] = mapped_column(Integer)
    seq: Mapped[Optional[int]] = mapped_column(Integer)
    address: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[Optional[str]] = mapped_column(String(50))
    district: Mapped[Optional[str]] = mapped_column(String(50))
    capacity_kwp: Mapped[Optional[float]] = mapped_column(Numeric(12, 3))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="開發中")
    note: Mapped[Optional[str]] = mapped_column(Text)
    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    delete_reason: Mapped[Optional[str]] = mapped_column(Text)
    # Archive
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archived_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    archive_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    investor: Mapped[Optional["Investor"]] = relationship("Investor", back_populates="projects")
    documents: Mapped[list["Document"]] = relationship(
        "Document", back_populates="project", passive_deletes=True
    )
    status_history: Mapped[list["ProjectStatusHistory"]] = relationship(
        "ProjectStatusHistory", back_populates="project", passive_deletes=True
    )


class Document(Base):
    """Document metadata only; file bytes and versions live in the cloud drive."""
    __tablename__ = "documents"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    doc_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    doc_status: Mapped[str] = mapped_column(String(20), nullable=False, default="未開始")
    version: Mapped[Optional[int]] = mapped_column(Integer, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)
    drive_file_id: Mapped[Optional[str]] = mapped_column(String(255))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    project: Mapped["Project"] = relationship("Project", back_populates="documents")


class ProjectStatusHistory(Base):
    __tablename__ = "project_status_history"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    changed_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    project: Mapped["Project"] = relationship("Project", back_populates="status_history")


# ── DUPLICATE REVIEW STATE ───────────────────────────────────────────────────
class DuplicateReview(Base):
    """
    Operator decision on a candidate-duplicate pair.
    project_id_a is always the lexicographically smaller id, so the pair key is unordered.
    A reviewed pair never shows up in scan output again unless its row is deleted.
    """
    __tablename__ = "duplicate_reviews"
    __table_args__ = (
        UniqueConstraint("project_id_a", "project_id_b", name="uq_duplicate_reviews_pair"),
        CheckConstraint("decision IN ('dismiss', 'confirm', 'merged')", name="ck_duplicate_reviews_decision"),
    )
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_id_a: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("projects.id"), nullable=False)
    project_id_b: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("projects.id"), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)  # dismiss | confirm | merged
    reason: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DuplicateIgnorePair(Base):
    """Legacy ignore list, read-only. Pairs here count as dismissed."""
    __tablename__ = "duplicate_ignore_pairs"
    __table_args__ = (
        UniqueConstraint("project_id_a", "project_id_b", name="uq_duplicate_ignore_pairs_pair"),
    )
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_id_a: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("projects.id"), nullable=False)
    project_id_b: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("projects.id"), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── GOVERNANCE ────────────────────────────────────────────────────────────────
class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_table_record", "table_name", "record_id"),
    )
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    record_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # CREATE | UPDATE | DELETE | RESTORE | PURGE | ARCHIVE | UNARCHIVE
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_user_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    reason: Mapped[Optional[str]] = mapped_column(Text)
    old_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class AppSetting(Base):
    __tablename__ = "app_settings"
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSONType, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
