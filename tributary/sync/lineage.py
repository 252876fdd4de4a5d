"""Field-level lineage records for applied creates and updates."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, List, Mapping

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tributary.models import FieldLineage

from .results import EntityChange


def lineage_table_available(session: Session) -> bool:
    """Whether the ``field_lineage`` table exists on the session's bind."""
    try:
        return inspect(session.get_bind()).has_table(FieldLineage.__tablename__)
    except SQLAlchemyError:
        return False


def serialize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_lineage_entries(
    changes: Iterable[EntityChange],
    *,
    entity: str,
    source_type: str,
    source_id: int | None,
    source_name: str,
    tab_name: str,
    columns_by_field: Mapping[str, str],
    sync_run_id: int,
    changed_by: str | None,
    changed_at: datetime,
) -> List[FieldLineage]:
    entries: List[FieldLineage] = []
    for change in changes:
        if change.type not in ("create", "update") or change.entity_id is None:
            continue
        previous = change.existing or {}
        for field_name, value in change.fields.items():
            column = columns_by_field.get(field_name, field_name)
            entries.append(
                FieldLineage(
                    entity_type=entity,
                    entity_id=change.entity_id,
                    field_name=field_name,
                    source_type=source_type,
                    source_id=source_id,
                    source_ref=f"{source_name} → {tab_name} → {column}",
                    previous_value=None if change.type == "create" else serialize_value(previous.get(field_name)),
                    new_value=serialize_value(value),
                    sync_run_id=sync_run_id,
                    changed_by=changed_by,
                    changed_at=changed_at,
                )
            )
    return entries
