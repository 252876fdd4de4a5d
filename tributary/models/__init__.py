# tributary/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .entities import ENTITY_MODELS, Asin, Partner, PartnerAssignment, Staff
from .sources import (
    ColumnAuthority,
    ColumnCategory,
    ColumnMapping,
    ColumnPattern,
    DataSource,
    DataSourceStatus,
    TabMapping,
    TabStatus,
)
from .sync import FieldLineage, SyncRun, SyncRunStatus, WeeklyStatus

__all__ = [
    "db",
    "BaseModel",
    "ENTITY_MODELS",
    "Asin",
    "ColumnAuthority",
    "ColumnCategory",
    "ColumnMapping",
    "ColumnPattern",
    "DataSource",
    "DataSourceStatus",
    "FieldLineage",
    "Partner",
    "PartnerAssignment",
    "Staff",
    "SyncRun",
    "SyncRunStatus",
    "TabMapping",
    "TabStatus",
    "WeeklyStatus",
]
