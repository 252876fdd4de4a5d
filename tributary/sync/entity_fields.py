"""
Entity field registry.

Field definitions live in ``entity_fields.yaml`` so new fields and entity
kinds can be added without touching engine code. The YAML is validated into
frozen dataclasses on first use and cached per path.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Sequence, Tuple

import yaml
from flask import current_app, has_app_context

from .errors import EntityFieldRegistryError
from .transforms import is_valid_transform

DEFAULT_FIELDS_PATH = Path(__file__).with_name("entity_fields.yaml")

FieldType = Literal["text", "number", "date", "boolean", "reference", "array"]
FIELD_TYPES: Tuple[str, ...] = ("text", "number", "date", "boolean", "reference", "array")
STORAGE_KINDS: Tuple[str, ...] = ("direct", "junction")


@dataclass(frozen=True)
class ReferenceConfig:
    entity: str
    match_field: str
    storage: Literal["direct", "junction"]
    junction_table: str | None = None
    junction_role: str | None = None
    fk_column: str | None = None


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    label: str
    type: FieldType
    group: str
    description: str | None = None
    is_key: bool = False
    reference: ReferenceConfig | None = None
    suggested_transform: str | None = None
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EntitySchema:
    entity: str
    label: str
    fields: Tuple[FieldDefinition, ...]

    @property
    def key_field(self) -> FieldDefinition:
        return next(field for field in self.fields if field.is_key)


class EntityFieldRegistry:
    """Lookup helpers over the validated entity schemas."""

    def __init__(self, schemas: Mapping[str, EntitySchema]):
        self._schemas: Dict[str, EntitySchema] = OrderedDict(schemas)

    def entity_kinds(self) -> Tuple[str, ...]:
        return tuple(self._schemas)

    def get_entity_schema(self, entity: str) -> EntitySchema:
        try:
            return self._schemas[entity]
        except KeyError:
            raise EntityFieldRegistryError(f"Unknown entity kind '{entity}'.") from None

    def get_fields_for_entity(self, entity: str) -> Tuple[FieldDefinition, ...]:
        return self.get_entity_schema(entity).fields

    def get_field_names(self, entity: str) -> Tuple[str, ...]:
        return tuple(field.name for field in self.get_fields_for_entity(entity))

    def get_grouped_fields(self, entity: str) -> Dict[str, list[FieldDefinition]]:
        grouped: Dict[str, list[FieldDefinition]] = OrderedDict()
        for field in self.get_fields_for_entity(entity):
            grouped.setdefault(field.group, []).append(field)
        return grouped

    def get_key_field(self, entity: str) -> FieldDefinition:
        return self.get_entity_schema(entity).key_field

    def get_field_definition(self, entity: str, field_name: str) -> FieldDefinition | None:
        for field in self.get_fields_for_entity(entity):
            if field.name == field_name:
                return field
        return None

    def get_reference_fields(self, entity: str) -> Tuple[FieldDefinition, ...]:
        return tuple(field for field in self.get_fields_for_entity(entity) if field.reference is not None)

    def get_referenced_entities(self, entity: str) -> Tuple[str, ...]:
        seen: list[str] = []
        for field in self.get_reference_fields(entity):
            if field.reference.entity not in seen:
                seen.append(field.reference.entity)
        return tuple(seen)

    def get_schema_description(self, entities: Sequence[str] | None = None) -> str:
        """Compact plain-text description of the schemas, one field per line."""
        lines: list[str] = []
        for entity in entities or self.entity_kinds():
            schema = self.get_entity_schema(entity)
            lines.append(f"{schema.label} ({entity}), key: {schema.key_field.name}")
            for group, fields in self.get_grouped_fields(entity).items():
                lines.append(f"  [{group}]")
                for field in fields:
                    detail = field.type
                    if field.reference is not None:
                        detail = f"reference -> {field.reference.entity}.{field.reference.match_field}"
                    suffix = f" ({', '.join(field.aliases)})" if field.aliases else ""
                    lines.append(f"    {field.name}: {detail}{suffix}")
        return "\n".join(lines)


def _parse_reference(entity: str, name: str, payload: Any) -> ReferenceConfig:
    if not isinstance(payload, Mapping):
        raise EntityFieldRegistryError(f"{entity}.{name}: reference must be a mapping")
    try:
        reference = ReferenceConfig(
            entity=str(payload["entity"]),
            match_field=str(payload["match_field"]),
            storage=str(payload.get("storage", "direct")),  # type: ignore[arg-type]
            junction_table=payload.get("junction_table"),
            junction_role=payload.get("junction_role"),
            fk_column=payload.get("fk_column"),
        )
    except KeyError as exc:
        raise EntityFieldRegistryError(f"{entity}.{name}: reference missing {exc}") from exc
    if reference.storage not in STORAGE_KINDS:
        raise EntityFieldRegistryError(f"{entity}.{name}: unknown reference storage '{reference.storage}'")
    if reference.storage == "junction" and not (reference.junction_table and reference.junction_role):
        raise EntityFieldRegistryError(f"{entity}.{name}: junction references need junction_table and junction_role")
    if reference.storage == "direct" and not reference.fk_column:
        raise EntityFieldRegistryError(f"{entity}.{name}: direct references need fk_column")
    return reference


def _parse_field(entity: str, payload: Any) -> FieldDefinition:
    if not isinstance(payload, Mapping) or not payload.get("name"):
        raise EntityFieldRegistryError(f"{entity}: field definitions need a name, got {payload!r}")
    name = str(payload["name"])
    field_type = str(payload.get("type", "text"))
    if field_type not in FIELD_TYPES:
        raise EntityFieldRegistryError(f"{entity}.{name}: unknown field type '{field_type}'")
    reference = None
    if field_type == "reference":
        reference = _parse_reference(entity, name, payload.get("reference"))
    transform = payload.get("suggested_transform")
    if transform and not is_valid_transform(transform):
        raise EntityFieldRegistryError(f"{entity}.{name}: unknown transform '{transform}'")
    return FieldDefinition(
        name=name,
        label=str(payload.get("label") or name),
        type=field_type,  # type: ignore[arg-type]
        group=str(payload.get("group") or "General"),
        description=payload.get("description"),
        is_key=bool(payload.get("is_key", False)),
        reference=reference,
        suggested_transform=transform,
        aliases=tuple(str(alias) for alias in payload.get("aliases") or ()),
    )


def parse_entity_fields(raw: Mapping[str, Any]) -> EntityFieldRegistry:
    entities = raw.get("entities") if isinstance(raw, Mapping) else None
    if not isinstance(entities, Mapping) or not entities:
        raise EntityFieldRegistryError("Entity field definitions must contain an 'entities' mapping.")

    schemas: Dict[str, EntitySchema] = OrderedDict()
    for entity, body in entities.items():
        body = body or {}
        fields = tuple(_parse_field(entity, item) for item in body.get("fields") or ())
        names = [field.name for field in fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise EntityFieldRegistryError(f"{entity}: duplicate fields {', '.join(duplicates)}")
        keys = [field.name for field in fields if field.is_key]
        if len(keys) != 1:
            raise EntityFieldRegistryError(f"{entity}: exactly one key field required, found {len(keys)}")
        schemas[entity] = EntitySchema(entity=entity, label=str(body.get("label") or entity), fields=fields)

    for entity, schema in schemas.items():
        for field in schema.fields:
            if field.reference is not None and field.reference.entity not in schemas:
                raise EntityFieldRegistryError(
                    f"{entity}.{field.name}: references unknown entity '{field.reference.entity}'"
                )
    return EntityFieldRegistry(schemas)


@lru_cache(maxsize=8)
def load_entity_fields(path: str | Path = DEFAULT_FIELDS_PATH) -> EntityFieldRegistry:
    """Load and validate a YAML entity field file."""
    path = Path(path)
    if not path.exists():
        raise EntityFieldRegistryError(f"Entity field file not found at {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise EntityFieldRegistryError(f"Failed to parse entity field YAML at {path}: {exc}") from exc
    return parse_entity_fields(raw)


def get_entity_field_registry() -> EntityFieldRegistry:
    """Return the registry for the configured path (``SYNC_ENTITY_FIELDS_PATH``)."""
    path: str | Path = DEFAULT_FIELDS_PATH
    if has_app_context():
        path = current_app.config.get("SYNC_ENTITY_FIELDS_PATH") or DEFAULT_FIELDS_PATH
    return load_entity_fields(str(path))


def get_key_field(entity: str) -> FieldDefinition:
    return get_entity_field_registry().get_key_field(entity)


def get_fields_for_entity(entity: str) -> Tuple[FieldDefinition, ...]:
    return get_entity_field_registry().get_fields_for_entity(entity)


def get_field_definition(entity: str, field_name: str) -> FieldDefinition | None:
    return get_entity_field_registry().get_field_definition(entity, field_name)
