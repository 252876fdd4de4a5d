"""Option, change and result types passed in and out of the sync engine."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Mapping

ChangeType = Literal["create", "update", "skip"]
Severity = Literal["warning", "error"]


@dataclass
class SyncOptions:
    dry_run: bool = False
    force_overwrite: bool = False
    row_limit: int | None = None
    triggered_by: str | None = None
    cancel_event: threading.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class SyncError:
    row: int
    message: str
    severity: Severity = "error"
    column: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"row": self.row, "message": self.message, "severity": self.severity}
        if self.column:
            payload["column"] = self.column
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass
class EntityChange:
    """Per-row intent computed by the engine; lives only for the duration of a run."""

    entity: str
    key_field: str
    key_value: str
    type: ChangeType
    row_number: int
    fields: Dict[str, Any] = field(default_factory=dict)
    source_data: Dict[str, str] = field(default_factory=dict)
    existing: Dict[str, Any] | None = None
    existing_id: int | None = None
    skip_reason: str | None = None
    entity_id: int | None = None

    def downgrade(self, reason: str) -> None:
        self.type = "skip"
        self.skip_reason = reason
        self.entity_id = self.existing_id

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "entity": self.entity,
            "key_field": self.key_field,
            "key_value": self.key_value,
            "type": self.type,
            "row": self.row_number,
            "fields": {name: _jsonable(value) for name, value in self.fields.items()},
        }
        if self.existing is not None:
            payload["existing"] = {name: _jsonable(value) for name, value in self.existing.items()}
        if self.skip_reason:
            payload["skip_reason"] = self.skip_reason
        if self.entity_id is not None:
            payload["entity_id"] = self.entity_id
        return payload


@dataclass
class SyncStats:
    rows_processed: int = 0
    rows_created: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    weekly_created: int = 0
    weekly_updated: int = 0
    errors: List[SyncError] = field(default_factory=list)

    @property
    def warnings(self) -> List[SyncError]:
        return [error for error in self.errors if error.severity == "warning"]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rows_processed": self.rows_processed,
            "rows_created": self.rows_created,
            "rows_updated": self.rows_updated,
            "rows_skipped": self.rows_skipped,
            "weekly_created": self.weekly_created,
            "weekly_updated": self.weekly_updated,
            "errors": [error.as_dict() for error in self.errors],
        }


@dataclass
class SyncResult:
    success: bool
    sync_run_id: int | None
    stats: SyncStats
    duration_ms: int
    changes: List[EntityChange] | None = None
    cancelled: bool = False
    tab_mapping_id: int | None = None

    def as_dict(self) -> Mapping[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "sync_run_id": self.sync_run_id,
            "tab_mapping_id": self.tab_mapping_id,
            "stats": self.stats.as_dict(),
            "duration_ms": self.duration_ms,
            "cancelled": self.cancelled,
        }
        if self.changes is not None:
            payload["changes"] = [change.as_dict() for change in self.changes]
        return payload
