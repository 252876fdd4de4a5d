"""
Audit and derived tables written by the sync engine.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class SyncRunStatus(str, enum.Enum):
    """Lifecycle states for a sync run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncRun(BaseModel):
    """Audit record of one engine invocation for one tab."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    data_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("data_sources.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tab_mapping_id: Mapped[int | None] = mapped_column(
        ForeignKey("tab_mappings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[SyncRunStatus] = mapped_column(
        Enum(SyncRunStatus, name="sync_run_status_enum"),
        nullable=False,
        default=SyncRunStatus.RUNNING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    rows_processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_created: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_skipped: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    weekly_created: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    weekly_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    data_source = relationship("DataSource")
    tab_mapping = relationship("TabMapping")

    __table_args__ = (Index("idx_sync_runs_tab_status", "tab_mapping_id", "status"),)


class FieldLineage(BaseModel):
    """Which source last wrote a field, and what it replaced."""

    __tablename__ = "field_lineage"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    field_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    source_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    source_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    source_ref: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    previous_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    sync_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    changed_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)

    sync_run = relationship("SyncRun")

    __table_args__ = (Index("idx_field_lineage_entity_field", "entity_type", "entity_id", "field_name"),)


class WeeklyStatus(BaseModel):
    """One status cell per partner per week, pivoted from date-named columns."""

    __tablename__ = "weekly_statuses"

    id: Mapped[int] = mapped_column(primary_key=True)
    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    week_start_date: Mapped[date] = mapped_column(db.Date, nullable=False)
    week_number: Mapped[int] = mapped_column(db.Integer, nullable=False)
    year: Mapped[int] = mapped_column(db.Integer, nullable=False)
    status: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    partner = relationship("Partner", back_populates="weekly_statuses")

    __table_args__ = (UniqueConstraint("partner_id", "week_start_date", name="uq_weekly_statuses_partner_week"),)
