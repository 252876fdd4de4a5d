"""
Source configuration tables.

Data sources, their tabs, and the column wiring the sync engine reads. These
rows are managed by operators; the engine only reads them (apart from the
``last_synced_at`` bookkeeping columns).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class DataSourceStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    ARCHIVED = "archived"


class TabStatus(str, enum.Enum):
    ACTIVE = "active"
    REFERENCE = "reference"
    HIDDEN = "hidden"
    FLAGGED = "flagged"


class ColumnCategory(str, enum.Enum):
    """How a source column participates in a sync."""

    PARTNER = "partner"
    STAFF = "staff"
    ASIN = "asin"
    WEEKLY = "weekly"
    COMPUTED = "computed"
    SKIP = "skip"


class ColumnAuthority(str, enum.Enum):
    SOURCE_OF_TRUTH = "source_of_truth"
    REFERENCE = "reference"


class DataSource(BaseModel):
    """An external system instance such as one spreadsheet or one warehouse dataset."""

    __tablename__ = "data_sources"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    connection_config: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[DataSourceStatus] = mapped_column(
        Enum(DataSourceStatus, name="data_source_status_enum"),
        nullable=False,
        default=DataSourceStatus.ACTIVE,
        index=True,
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    tabs = relationship("TabMapping", back_populates="data_source", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<DataSource {self.name} ({self.type})>"


class TabMapping(BaseModel):
    """One tab or view of a data source wired into the sync pipeline."""

    __tablename__ = "tab_mappings"

    id: Mapped[int] = mapped_column(primary_key=True)
    data_source_id: Mapped[int] = mapped_column(
        ForeignKey("data_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tab_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    header_row: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    primary_entity: Mapped[str] = mapped_column(db.String(50), nullable=False)
    status: Mapped[TabStatus] = mapped_column(
        Enum(TabStatus, name="tab_status_enum"),
        nullable=False,
        default=TabStatus.ACTIVE,
    )
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_sync_row_count: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    data_source = relationship("DataSource", back_populates="tabs")
    columns = relationship(
        "ColumnMapping",
        back_populates="tab_mapping",
        cascade="all, delete-orphan",
        order_by="ColumnMapping.source_column_index",
    )

    __table_args__ = (UniqueConstraint("data_source_id", "tab_name", name="uq_tab_mappings_source_tab"),)


class ColumnMapping(BaseModel):
    """Wiring of one source column to one target entity field."""

    __tablename__ = "column_mappings"

    id: Mapped[int] = mapped_column(primary_key=True)
    tab_mapping_id: Mapped[int] = mapped_column(
        ForeignKey("tab_mappings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_column: Mapped[str] = mapped_column(db.String(255), nullable=False)
    source_column_index: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    category: Mapped[ColumnCategory] = mapped_column(
        Enum(ColumnCategory, name="column_category_enum"),
        nullable=False,
    )
    target_field: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    authority: Mapped[ColumnAuthority] = mapped_column(
        Enum(ColumnAuthority, name="column_authority_enum"),
        nullable=False,
        default=ColumnAuthority.SOURCE_OF_TRUTH,
    )
    transform_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default="none")
    transform_config: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    is_key: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    tab_mapping = relationship("TabMapping", back_populates="columns")

    __table_args__ = (UniqueConstraint("tab_mapping_id", "source_column", name="uq_column_mappings_tab_column"),)


class ColumnPattern(BaseModel):
    """
    Declarative rule matching a family of columns.

    ``match_config`` keys: ``contains``, ``starts_with`` (lists of strings),
    ``matches_regex`` (string), ``matches_date`` (bool) and ``after_column``
    (header name the matched columns must follow). A null ``tab_mapping_id``
    makes the pattern apply to every tab.
    """

    __tablename__ = "column_patterns"

    id: Mapped[int] = mapped_column(primary_key=True)
    tab_mapping_id: Mapped[int | None] = mapped_column(
        ForeignKey("tab_mappings.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    pattern_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    category: Mapped[str] = mapped_column(db.String(50), nullable=False)
    match_config: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    target_table: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    target_field: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    priority: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_column_patterns_active_priority", "is_active", "priority"),)
