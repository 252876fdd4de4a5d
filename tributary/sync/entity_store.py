"""
Entity persistence helpers for the sync engine.

Looks entities up by key (case-insensitively, memoized per run), snapshots
current field values for diffing, coerces transformed values to column types,
and writes plain and reference fields.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping

from sqlalchemy import func
from sqlalchemy.orm import Session

from tributary.models import ENTITY_MODELS, PartnerAssignment

from .entity_fields import EntityFieldRegistry, FieldDefinition
from .errors import SyncConfigurationError

PARTNER_ASSIGNMENTS_TABLE = "partner_assignments"


def resolve_entity_model(entity: str):
    try:
        return ENTITY_MODELS[entity]
    except KeyError:
        raise SyncConfigurationError(
            f"Unknown entity kind '{entity}'. Expected one of: {', '.join(sorted(ENTITY_MODELS))}"
        ) from None


def _normalize_key(value: Any) -> str:
    return str(value).strip().lower()


class EntityStore:
    """Per-run view over one entity table."""

    def __init__(self, session: Session, entity: str, field_registry: EntityFieldRegistry) -> None:
        self.session = session
        self.entity = entity
        self.model = resolve_entity_model(entity)
        self.field_registry = field_registry
        self.key_field = field_registry.get_key_field(entity).name
        self._columns = self.model.__table__.columns
        self._ids: Dict[str, int | None] = {}
        self._reference_ids: Dict[tuple, int | None] = {}

    # Lookup ----------------------------------------------------------------------

    def find(self, key_value: str):
        lowered = _normalize_key(key_value)
        if lowered in self._ids:
            entity_id = self._ids[lowered]
            return self.session.get(self.model, entity_id) if entity_id is not None else None
        key_column = getattr(self.model, self.key_field)
        instance = (
            self.session.query(self.model)
            .filter(func.lower(key_column) == lowered)
            .order_by(self.model.id)
            .first()
        )
        self._ids[lowered] = instance.id if instance is not None else None
        return instance

    def find_id(self, key_value: str) -> int | None:
        lowered = _normalize_key(key_value)
        if lowered not in self._ids:
            self.find(key_value)
        return self._ids.get(lowered)

    def remember(self, key_value: str, entity_id: int) -> None:
        self._ids[_normalize_key(key_value)] = entity_id

    def forget(self, key_value: str) -> None:
        self._ids.pop(_normalize_key(key_value), None)

    def _resolve_reference_id(self, definition: FieldDefinition, value: Any) -> int | None:
        reference = definition.reference
        cache_key = (reference.entity, reference.match_field, _normalize_key(value))
        if cache_key not in self._reference_ids:
            target = resolve_entity_model(reference.entity)
            match_column = getattr(target, reference.match_field)
            row = (
                self.session.query(target.id)
                .filter(func.lower(match_column) == cache_key[2])
                .order_by(target.id)
                .first()
            )
            self._reference_ids[cache_key] = row[0] if row is not None else None
        return self._reference_ids[cache_key]

    # Snapshot and comparison -----------------------------------------------------

    def _definition(self, field_name: str) -> FieldDefinition | None:
        return self.field_registry.get_field_definition(self.entity, field_name)

    def _reference_value(self, instance, definition: FieldDefinition) -> Any:
        reference = definition.reference
        target = resolve_entity_model(reference.entity)
        if reference.storage == "direct":
            target_id = getattr(instance, reference.fk_column, None)
            if target_id is None:
                return None
            related = self.session.get(target, target_id)
            return getattr(related, reference.match_field, None) if related is not None else None
        if reference.junction_table != PARTNER_ASSIGNMENTS_TABLE or instance.id is None:
            return None
        names = [
            getattr(assignment.staff, reference.match_field, None)
            for assignment in (
                self.session.query(PartnerAssignment)
                .filter_by(partner_id=instance.id, assignment_role=reference.junction_role)
                .order_by(PartnerAssignment.id)
            )
        ]
        return names[0] if names else None

    def snapshot(self, instance, field_names: Iterable[str]) -> Dict[str, Any]:
        """Current values of ``field_names``, with references rendered by their match field."""
        values: Dict[str, Any] = {}
        for name in field_names:
            definition = self._definition(name)
            if definition is not None and definition.reference is not None:
                values[name] = self._reference_value(instance, definition)
            else:
                values[name] = getattr(instance, name, None)
        return values

    def values_equal(self, field_name: str, current: Any, incoming: Any) -> bool:
        if current is None or incoming is None:
            return current is None and incoming is None
        definition = self._definition(field_name)
        if definition is not None and definition.reference is not None:
            return _normalize_key(current) == _normalize_key(incoming)
        if isinstance(current, (int, float)) and isinstance(incoming, (int, float)):
            return abs(float(current) - float(incoming)) < 1e-9
        return current == incoming

    # Coercion --------------------------------------------------------------------

    def coerce(self, field_name: str, value: Any) -> Any:
        """Convert a transformed value to the Python type of the target column."""
        if value is None:
            return None
        column = self._columns.get(field_name)
        if column is None or self.is_reference(field_name):
            # Reference fields carry the raw match value.
            return str(value).strip() if isinstance(value, str) else value
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value

        if python_type is date:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value)[:10])
        if python_type is bool:
            if isinstance(value, bool):
                return value
            raise ValueError(f"Expected a boolean for {field_name}, got {value!r}")
        if python_type is int:
            if isinstance(value, bool):
                return int(value)
            number = float(value)
            if not number.is_integer():
                raise ValueError(f"Expected a whole number for {field_name}, got {value!r}")
            return int(number)
        if python_type is float:
            return float(value)
        if python_type is str:
            if isinstance(value, bool):
                return "TRUE" if value else "FALSE"
            if isinstance(value, (date, datetime)):
                return value.isoformat()
            if isinstance(value, float) and value.is_integer():
                return str(int(value))
            return str(value)
        return value

    # Writes ----------------------------------------------------------------------

    def is_reference(self, field_name: str) -> bool:
        definition = self._definition(field_name)
        return definition is not None and definition.reference is not None

    def build(self, fields: Mapping[str, Any], source_key: str, tab_name: str, source_data: Mapping[str, str]):
        """New, unsaved instance carrying the plain (non-reference) fields."""
        attributes = {
            name: value for name, value in fields.items() if name in self._columns and not self.is_reference(name)
        }
        instance = self.model(**attributes)
        instance.source_data = {source_key: {tab_name: dict(source_data)}}
        return instance

    def apply_fields(self, instance, fields: Mapping[str, Any]) -> List[str]:
        """Write plain and reference fields; returns warnings for unresolved references."""
        warnings: List[str] = []
        for name, value in fields.items():
            if self.is_reference(name):
                warning = self.apply_reference(instance, name, value)
                if warning:
                    warnings.append(warning)
            elif name in self._columns:
                setattr(instance, name, value)
        return warnings

    def apply_references(self, instance, fields: Mapping[str, Any]) -> List[str]:
        warnings: List[str] = []
        for name, value in fields.items():
            if self.is_reference(name):
                warning = self.apply_reference(instance, name, value)
                if warning:
                    warnings.append(warning)
        return warnings

    def check_reference(self, field_name: str, value: Any) -> str | None:
        """Warning text when ``value`` cannot be written to reference ``field_name``, else None."""
        definition = self._definition(field_name)
        reference = definition.reference
        if reference.storage == "junction" and reference.junction_table != PARTNER_ASSIGNMENTS_TABLE:
            return f"Unsupported junction table '{reference.junction_table}' for {field_name}"
        if self._resolve_reference_id(definition, value) is None:
            return f"No {reference.entity} record matches '{value}' for {field_name}"
        return None

    def apply_reference(self, instance, field_name: str, value: Any) -> str | None:
        problem = self.check_reference(field_name, value)
        if problem:
            return problem
        definition = self._definition(field_name)
        reference = definition.reference
        target_id = self._resolve_reference_id(definition, value)

        if reference.storage == "direct":
            setattr(instance, reference.fk_column, target_id)
            return None

        current = (
            self.session.query(PartnerAssignment)
            .filter_by(partner_id=instance.id, assignment_role=reference.junction_role)
            .all()
        )
        if any(assignment.staff_id == target_id for assignment in current):
            return None
        for assignment in current:
            self.session.delete(assignment)
        self.session.add(
            PartnerAssignment(partner_id=instance.id, staff_id=target_id, assignment_role=reference.junction_role)
        )
        return None

    @staticmethod
    def merge_source_data(instance, source_key: str, tab_name: str, snapshot: Mapping[str, str]) -> None:
        """Replace the ``[source_key][tab_name]`` slot of ``source_data``, keeping other slots."""
        merged = {kind: dict(tabs or {}) for kind, tabs in (instance.source_data or {}).items()}
        merged.setdefault(source_key, {})[tab_name] = dict(snapshot)
        instance.source_data = merged
