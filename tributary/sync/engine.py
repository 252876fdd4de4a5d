"""
Sync engine.

Reads one configured tab from a connector, computes per-row create/update/skip
intents against the entity tables, applies them under the authority policy,
pivots weekly columns, records field lineage and finalizes a ``SyncRun``.

Failure modes:
    * configuration problems raise before a ``SyncRun`` is created;
    * anything raised after that marks the run ``failed`` once and re-raises;
    * cancellation rolls back the unfinished work and marks the run ``cancelled``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Sequence, Tuple

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tributary.models import (
    ColumnAuthority,
    ColumnCategory,
    ColumnMapping,
    ColumnPattern,
    DataSource,
    SyncRun,
    SyncRunStatus,
    TabMapping,
    TabStatus,
    db,
)

from .connectors.base import cell_to_string
from .entity_fields import EntityFieldRegistry, get_entity_field_registry
from .entity_store import EntityStore, resolve_entity_model
from .errors import (
    ConnectorCapabilityError,
    ConnectorConfigError,
    SchemaDriftError,
    SyncCancelledError,
    SyncConfigurationError,
)
from .lineage import build_lineage_entries, lineage_table_available
from .metrics import record_batch_failure, record_sync_rows, record_sync_run
from .registry import ConnectorRegistry
from .results import EntityChange, SyncError, SyncOptions, SyncResult, SyncStats
from .transforms import apply_transform, is_valid_transform
from .weekly import ColumnPatternRule, pivot_weekly_statuses, select_weekly_columns

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

EMPTY_KEY_REASON = "Empty key value"
DUPLICATE_KEY_REASON = "Duplicate key value in source"
NO_AUTHORIZED_FIELDS_REASON = "No authorized fields to update"
NO_CHANGES_REASON = "No changes"

# Categories whose columns never map onto entity fields.
NON_FIELD_CATEGORIES = frozenset({ColumnCategory.WEEKLY, ColumnCategory.COMPUTED, ColumnCategory.SKIP})
PIVOT_ENTITY = "partners"


def _log() -> logging.Logger:
    return current_app.logger if has_app_context() else logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_text(exc: BaseException) -> str:
    original = getattr(exc, "orig", None)
    return f"{exc.__class__.__name__}: {original or exc}"


@dataclass(frozen=True)
class TabSyncConfig:
    """Validated configuration for one tab, loaded before a run starts."""

    tab_mapping: TabMapping
    data_source: DataSource
    columns: Tuple[ColumnMapping, ...]
    key_mapping: ColumnMapping
    patterns: Tuple[ColumnPatternRule, ...]

    @property
    def entity(self) -> str:
        return self.tab_mapping.primary_entity

    @property
    def header_row(self) -> int:
        return self.tab_mapping.header_row or 0


@dataclass(frozen=True)
class _FieldColumn:
    mapping: ColumnMapping
    index: int


def _find_header(headers: Sequence[str], name: str) -> int | None:
    """Exact header match first, then case-insensitive."""
    target = name.strip()
    for index, header in enumerate(headers):
        if header == target:
            return index
    lowered = target.lower()
    for index, header in enumerate(headers):
        if header.lower() == lowered:
            return index
    return None


def _cell(row: Sequence[str], index: int) -> str:
    return row[index] if 0 <= index < len(row) else ""


class SyncEngine:
    """Reconciles configured source tabs into the entity tables."""

    def __init__(
        self,
        registry: ConnectorRegistry,
        *,
        session: Session | None = None,
        field_registry: EntityFieldRegistry | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        lineage_enabled: bool | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.session = session if session is not None else db.session
        self.field_registry = field_registry or get_entity_field_registry()
        self.batch_size = max(1, int(batch_size))
        self.clock = clock or _utcnow
        if lineage_enabled is None:
            lineage_enabled = bool(current_app.config.get("SYNC_LINEAGE_ENABLED", True)) if has_app_context() else True
        self.lineage_enabled = bool(lineage_enabled) and lineage_table_available(self.session)

    # Public API ------------------------------------------------------------------

    def sync_tab(self, tab_mapping_id: int, token: str, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        started = time.monotonic()
        config = self._load_config(tab_mapping_id)
        connector_kind = config.data_source.type
        data_source_id = config.data_source.id

        run = self._create_sync_run(config, options)
        run_id = run.id
        stats = SyncStats()
        extra = {"sync_run_id": run_id, "tab_mapping_id": tab_mapping_id, "connector": connector_kind}
        _log().info(
            "Sync run %s started for tab %s (%s)",
            run_id,
            config.tab_mapping.tab_name,
            "dry run" if options.dry_run else "live",
            extra=extra,
        )

        try:
            changes = self._execute(config, run_id, token, options, stats)
        except SyncCancelledError:
            self._finish_cancelled(run_id, stats)
            duration = time.monotonic() - started
            record_sync_run(connector=connector_kind, status=SyncRunStatus.CANCELLED.value, duration_seconds=duration)
            _log().warning("Sync run %s cancelled", run_id, extra=extra)
            return SyncResult(
                success=False,
                sync_run_id=run_id,
                stats=stats,
                duration_ms=int(duration * 1000),
                cancelled=True,
                tab_mapping_id=tab_mapping_id,
            )
        except Exception as exc:
            self._fail_run(run_id, exc, stats)
            duration = time.monotonic() - started
            record_sync_run(connector=connector_kind, status=SyncRunStatus.FAILED.value, duration_seconds=duration)
            _log().error("Sync run %s failed: %s", run_id, exc, exc_info=True, extra=extra)
            raise

        duration = time.monotonic() - started
        record_sync_run(connector=connector_kind, status=SyncRunStatus.COMPLETED.value, duration_seconds=duration)
        if not options.dry_run:
            record_sync_rows(created=stats.rows_created, updated=stats.rows_updated, skipped=stats.rows_skipped)
        _log().info(
            "Sync run %s completed: processed=%s created=%s updated=%s skipped=%s errors=%s",
            run_id,
            stats.rows_processed,
            stats.rows_created,
            stats.rows_updated,
            stats.rows_skipped,
            len(stats.errors),
            extra={**extra, "data_source_id": data_source_id},
        )
        return SyncResult(
            success=True,
            sync_run_id=run_id,
            stats=stats,
            duration_ms=int(duration * 1000),
            changes=changes if options.dry_run else None,
            tab_mapping_id=tab_mapping_id,
        )

    def sync_data_source(self, data_source_id: int, token: str, options: SyncOptions | None = None) -> List[SyncResult]:
        """Sync every active tab of a data source in order; failing tabs degrade to error results."""
        options = options or SyncOptions()
        data_source = self.session.get(DataSource, data_source_id)
        if data_source is None:
            raise SyncConfigurationError(f"Data source {data_source_id} not found")
        tab_ids = [
            tab_id
            for (tab_id,) in self.session.query(TabMapping.id)
            .filter(TabMapping.data_source_id == data_source_id, TabMapping.status == TabStatus.ACTIVE)
            .order_by(TabMapping.id)
        ]

        results: List[SyncResult] = []
        for tab_id in tab_ids:
            if options.cancelled:
                break
            try:
                results.append(self.sync_tab(tab_id, token, options))
            except Exception as exc:
                _log().warning(
                    "Tab %s of data source %s failed: %s",
                    tab_id,
                    data_source_id,
                    exc,
                    extra={"tab_mapping_id": tab_id, "data_source_id": data_source_id},
                )
                results.append(
                    SyncResult(
                        success=False,
                        sync_run_id=None,
                        stats=SyncStats(errors=[SyncError(row=0, message=str(exc), severity="error")]),
                        duration_ms=0,
                        tab_mapping_id=tab_id,
                    )
                )
        return results

    # Configuration ---------------------------------------------------------------

    def _load_config(self, tab_mapping_id: int) -> TabSyncConfig:
        tab = self.session.get(TabMapping, tab_mapping_id)
        if tab is None:
            raise SyncConfigurationError(f"Tab mapping {tab_mapping_id} not found")
        data_source = self.session.get(DataSource, tab.data_source_id)
        if data_source is None:
            raise SyncConfigurationError(f"Data source {tab.data_source_id} for tab mapping {tab_mapping_id} not found")

        resolve_entity_model(tab.primary_entity)
        self.field_registry.get_entity_schema(tab.primary_entity)

        columns = tuple(
            self.session.query(ColumnMapping)
            .filter(ColumnMapping.tab_mapping_id == tab.id)
            .order_by(ColumnMapping.source_column_index, ColumnMapping.id)
        )
        keys = [column for column in columns if column.is_key]
        if len(keys) != 1:
            raise SyncConfigurationError(
                f"Tab mapping {tab_mapping_id} must have exactly one key column mapping, found {len(keys)}"
            )

        patterns = tuple(
            ColumnPatternRule.from_model(pattern)
            for pattern in self.session.query(ColumnPattern)
            .filter(
                ColumnPattern.is_active.is_(True),
                or_(ColumnPattern.tab_mapping_id == tab.id, ColumnPattern.tab_mapping_id.is_(None)),
            )
            .order_by(ColumnPattern.priority.desc(), ColumnPattern.id)
        )
        return TabSyncConfig(
            tab_mapping=tab,
            data_source=data_source,
            columns=columns,
            key_mapping=keys[0],
            patterns=patterns,
        )

    def _create_sync_run(self, config: TabSyncConfig, options: SyncOptions) -> SyncRun:
        run = SyncRun(
            data_source_id=config.data_source.id,
            tab_mapping_id=config.tab_mapping.id,
            status=SyncRunStatus.RUNNING,
            dry_run=options.dry_run,
            started_at=self.clock(),
            triggered_by=options.triggered_by,
        )
        self.session.add(run)
        self.session.commit()
        return run

    # Run body --------------------------------------------------------------------

    def _execute(
        self,
        config: TabSyncConfig,
        run_id: int,
        token: str,
        options: SyncOptions,
        stats: SyncStats,
    ) -> List[EntityChange]:
        tab = config.tab_mapping
        data_source = config.data_source
        tab_id, tab_name = tab.id, tab.tab_name
        source_kind, source_name, source_id = data_source.type, data_source.name, data_source.id

        connector = self.registry.get(source_kind)
        if not connector.capabilities.has_tabs:
            raise ConnectorCapabilityError(f"Connector '{source_kind}' does not expose tabular data")
        try:
            connection = connector.parse_config(data_source.connection_config)
        except ConnectorConfigError as exc:
            raise SyncConfigurationError(str(exc)) from exc

        data = connector.get_data(token, connection, tab_name, config.header_row)
        headers = [cell_to_string(header).strip() for header in data.headers]
        rows = [[cell_to_string(value) for value in row] for row in data.rows]
        if options.row_limit is not None:
            rows = rows[: max(0, options.row_limit)]

        store = EntityStore(self.session, config.entity, self.field_registry)
        changes = self._compute_changes(config, headers, rows, store, options, stats)

        if not options.dry_run:
            self._apply_changes(changes, store, source_kind, tab_name, options, stats)
            if config.entity == PIVOT_ENTITY:
                self._pivot_weekly(config, headers, rows, store, options, stats)
            if self.lineage_enabled:
                self._record_lineage(config, changes, run_id, source_kind, source_name, source_id, options, stats)

        for change in changes:
            if change.type == "create":
                stats.rows_created += 1
            elif change.type == "update":
                stats.rows_updated += 1
            else:
                stats.rows_skipped += 1

        self._finalize(run_id, tab_id, source_id, len(rows), options, stats)
        return changes

    def _field_columns(self, config: TabSyncConfig, headers: Sequence[str], stats: SyncStats) -> List[_FieldColumn]:
        field_columns: List[_FieldColumn] = []
        for mapping in config.columns:
            if mapping.is_key or not mapping.target_field or mapping.category in NON_FIELD_CATEGORIES:
                continue
            if self.field_registry.get_field_definition(config.entity, mapping.target_field) is None:
                stats.errors.append(
                    SyncError(
                        row=0,
                        column=mapping.source_column,
                        message=f"Unknown target field '{mapping.target_field}' for {config.entity}",
                        severity="warning",
                    )
                )
                continue
            if not is_valid_transform(mapping.transform_type):
                stats.errors.append(
                    SyncError(
                        row=0,
                        column=mapping.source_column,
                        message=f"Unknown transform '{mapping.transform_type}'; value used as-is",
                        severity="warning",
                    )
                )
            index = _find_header(headers, mapping.source_column)
            if index is None:
                stats.errors.append(
                    SyncError(
                        row=0,
                        column=mapping.source_column,
                        message=f"Mapped column '{mapping.source_column}' not found in source headers",
                        severity="warning",
                    )
                )
                continue
            field_columns.append(_FieldColumn(mapping=mapping, index=index))
        return field_columns

    def _compute_changes(
        self,
        config: TabSyncConfig,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        store: EntityStore,
        options: SyncOptions,
        stats: SyncStats,
    ) -> List[EntityChange]:
        key_index = _find_header(headers, config.key_mapping.source_column)
        if key_index is None:
            raise SchemaDriftError(config.key_mapping.source_column, headers)

        field_columns = self._field_columns(config, headers, stats)
        authority = {column.mapping.target_field: column.mapping.authority for column in field_columns}
        seen_keys: set[str] = set()
        changes: List[EntityChange] = []

        for offset, row in enumerate(rows):
            if options.cancelled:
                raise SyncCancelledError(f"Cancelled after {offset} rows")
            row_number = offset + config.header_row + 2
            stats.rows_processed += 1
            try:
                change = self._compute_row(
                    config, headers, row, row_number, key_index, field_columns, authority, seen_keys, store, options, stats
                )
            except Exception as exc:
                stats.errors.append(SyncError(row=row_number, message=str(exc), severity="error"))
                stats.rows_skipped += 1
                continue
            changes.append(change)
        return changes

    def _compute_row(
        self,
        config: TabSyncConfig,
        headers: Sequence[str],
        row: Sequence[str],
        row_number: int,
        key_index: int,
        field_columns: Sequence[_FieldColumn],
        authority: Dict[str, ColumnAuthority],
        seen_keys: set[str],
        store: EntityStore,
        options: SyncOptions,
        stats: SyncStats,
    ) -> EntityChange:
        snapshot = {header: _cell(row, index) for index, header in enumerate(headers) if header}
        key_value = _cell(row, key_index).strip()
        change = EntityChange(
            entity=config.entity,
            key_field=store.key_field,
            key_value=key_value,
            type="skip",
            row_number=row_number,
            source_data=snapshot,
        )
        if not key_value:
            change.skip_reason = EMPTY_KEY_REASON
            return change

        lowered = key_value.lower()
        if lowered in seen_keys:
            change.skip_reason = DUPLICATE_KEY_REASON
            stats.errors.append(
                SyncError(
                    row=row_number,
                    column=config.key_mapping.source_column,
                    message=f"Duplicate key '{key_value}'; the first occurrence was used",
                    severity="warning",
                )
            )
            return change
        seen_keys.add(lowered)

        fields: Dict[str, object] = {}
        for column in field_columns:
            mapping = column.mapping
            raw = _cell(row, column.index)
            if not raw.strip():
                continue
            outcome = apply_transform(mapping.transform_type, raw, mapping.transform_config)
            if outcome.error:
                stats.errors.append(
                    SyncError(row=row_number, column=mapping.source_column, message=outcome.error, severity="warning")
                )
                continue
            try:
                value = store.coerce(mapping.target_field, outcome.value)
            except (TypeError, ValueError) as exc:
                stats.errors.append(
                    SyncError(
                        row=row_number,
                        column=mapping.source_column,
                        message=f"Cannot store {raw!r} in {mapping.target_field}: {exc}",
                        severity="warning",
                    )
                )
                continue
            if value is None:
                continue
            if store.is_reference(mapping.target_field):
                problem = store.check_reference(mapping.target_field, value)
                if problem:
                    stats.errors.append(
                        SyncError(row=row_number, column=mapping.source_column, message=problem, severity="warning")
                    )
                    continue
            fields[mapping.target_field] = value

        existing = store.find(key_value)
        if existing is None:
            change.type = "create"
            change.fields = {store.key_field: key_value, **fields}
            return change

        change.existing_id = existing.id
        change.entity_id = existing.id
        if options.force_overwrite:
            authorized = dict(fields)
        else:
            authorized = {
                name: value for name, value in fields.items() if authority.get(name) == ColumnAuthority.SOURCE_OF_TRUTH
            }
        if not authorized:
            change.skip_reason = NO_AUTHORIZED_FIELDS_REASON
            return change

        current = store.snapshot(existing, authorized)
        changed = {
            name: value for name, value in authorized.items() if not store.values_equal(name, current.get(name), value)
        }
        if not changed:
            change.skip_reason = NO_CHANGES_REASON
            return change

        change.type = "update"
        change.fields = changed
        change.existing = {name: current.get(name) for name in changed}
        return change

    # Apply -----------------------------------------------------------------------

    def _check_cancelled(self, options: SyncOptions) -> None:
        if options.cancelled:
            raise SyncCancelledError("Cancelled while applying changes")

    def _apply_changes(
        self,
        changes: Sequence[EntityChange],
        store: EntityStore,
        source_kind: str,
        tab_name: str,
        options: SyncOptions,
        stats: SyncStats,
    ) -> None:
        creates = [change for change in changes if change.type == "create"]
        for start in range(0, len(creates), self.batch_size):
            self._check_cancelled(options)
            self._insert_batch(creates[start : start + self.batch_size], store, source_kind, tab_name, stats)

        for change in changes:
            if change.type == "update":
                self._check_cancelled(options)
                self._apply_update(change, store, source_kind, tab_name, stats)
            elif change.type == "skip" and change.existing_id is not None and change.skip_reason != DUPLICATE_KEY_REASON:
                instance = self.session.get(store.model, change.existing_id)
                if instance is not None:
                    store.merge_source_data(instance, source_kind, tab_name, change.source_data)
        self.session.flush()

    def _insert_batch(
        self,
        batch: Sequence[EntityChange],
        store: EntityStore,
        source_kind: str,
        tab_name: str,
        stats: SyncStats,
    ) -> None:
        warnings: List[SyncError] = []
        try:
            with self.session.begin_nested():
                instances = [store.build(change.fields, source_kind, tab_name, change.source_data) for change in batch]
                self.session.add_all(instances)
                self.session.flush()
                # add_all preserves input order, so ids line up with the batch.
                for change, instance in zip(batch, instances):
                    change.entity_id = instance.id
                    store.remember(change.key_value, instance.id)
                    for message in store.apply_references(instance, change.fields):
                        warnings.append(SyncError(row=change.row_number, message=message, severity="warning"))
                self.session.flush()
        except SQLAlchemyError as exc:
            reason = f"Batch insert failed: {_error_text(exc)}"
            for change in batch:
                store.forget(change.key_value)
                change.downgrade(reason)
            stats.errors.append(
                SyncError(
                    row=batch[0].row_number,
                    message=f"{reason} (rows {batch[0].row_number}-{batch[-1].row_number})",
                    severity="error",
                )
            )
            record_batch_failure()
            _log().warning("Create batch of %s rows failed: %s", len(batch), _error_text(exc))
            return
        stats.errors.extend(warnings)

    def _apply_update(
        self,
        change: EntityChange,
        store: EntityStore,
        source_kind: str,
        tab_name: str,
        stats: SyncStats,
    ) -> None:
        instance = self.session.get(store.model, change.existing_id)
        if instance is None:
            change.downgrade(f"{store.entity} record {change.existing_id} no longer exists")
            return
        try:
            with self.session.begin_nested():
                messages = store.apply_fields(instance, change.fields)
                store.merge_source_data(instance, source_kind, tab_name, change.source_data)
                self.session.flush()
        except SQLAlchemyError as exc:
            change.downgrade(f"Update failed: {_error_text(exc)}")
            stats.errors.append(SyncError(row=change.row_number, message=change.skip_reason, severity="error"))
            return
        for message in messages:
            stats.errors.append(SyncError(row=change.row_number, message=message, severity="warning"))

    def _pivot_weekly(
        self,
        config: TabSyncConfig,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        store: EntityStore,
        options: SyncOptions,
        stats: SyncStats,
    ) -> None:
        mapped_weekly = [m.source_column for m in config.columns if m.category == ColumnCategory.WEEKLY]
        excluded = [m.source_column for m in config.columns if m.category != ColumnCategory.WEEKLY]
        columns = select_weekly_columns(
            headers,
            config.patterns,
            mapped_weekly=mapped_weekly,
            excluded=excluded,
            today=self.clock().date(),
        )
        if not columns:
            return
        summary = pivot_weekly_statuses(
            self.session,
            rows=rows,
            columns=columns,
            key_index=_find_header(headers, config.key_mapping.source_column),
            first_row_number=config.header_row + 2,
            resolve_partner_id=store.find_id,
            check_cancelled=lambda: self._check_cancelled(options),
        )
        stats.weekly_created += summary.created
        stats.weekly_updated += summary.updated
        stats.errors.extend(summary.warnings)

    def _record_lineage(
        self,
        config: TabSyncConfig,
        changes: Sequence[EntityChange],
        run_id: int,
        source_kind: str,
        source_name: str,
        source_id: int,
        options: SyncOptions,
        stats: SyncStats,
    ) -> None:
        columns_by_field = {m.target_field: m.source_column for m in config.columns if m.target_field}
        columns_by_field[self.field_registry.get_key_field(config.entity).name] = config.key_mapping.source_column
        entries = build_lineage_entries(
            changes,
            entity=config.entity,
            source_type=source_kind,
            source_id=source_id,
            source_name=source_name,
            tab_name=config.tab_mapping.tab_name,
            columns_by_field=columns_by_field,
            sync_run_id=run_id,
            changed_by=options.triggered_by,
            changed_at=self.clock(),
        )
        if not entries:
            return
        try:
            with self.session.begin_nested():
                self.session.add_all(entries)
                self.session.flush()
        except SQLAlchemyError as exc:
            _log().warning("Lineage write failed for sync run %s: %s", run_id, _error_text(exc), extra={"sync_run_id": run_id})
            stats.errors.append(SyncError(row=0, message=f"Lineage not recorded: {_error_text(exc)}", severity="warning"))

    # Finalize --------------------------------------------------------------------

    def _finalize(
        self,
        run_id: int,
        tab_id: int,
        data_source_id: int,
        row_count: int,
        options: SyncOptions,
        stats: SyncStats,
    ) -> None:
        if options.dry_run:
            self.session.rollback()
        now = self.clock()
        run = self.session.get(SyncRun, run_id)
        run.status = SyncRunStatus.COMPLETED
        run.completed_at = now
        self._copy_stats(run, stats)
        if not options.dry_run:
            tab = self.session.get(TabMapping, tab_id)
            tab.last_synced_at = now
            tab.last_sync_row_count = row_count
            data_source = self.session.get(DataSource, data_source_id)
            data_source.last_synced_at = now
        self.session.commit()

    @staticmethod
    def _copy_stats(run: SyncRun, stats: SyncStats) -> None:
        run.rows_processed = stats.rows_processed
        run.rows_created = stats.rows_created
        run.rows_updated = stats.rows_updated
        run.rows_skipped = stats.rows_skipped
        run.weekly_created = stats.weekly_created
        run.weekly_updated = stats.weekly_updated
        run.errors = [error.as_dict() for error in stats.errors]

    def _finish_cancelled(self, run_id: int, stats: SyncStats) -> None:
        self.session.rollback()
        stats.rows_created = stats.rows_updated = 0
        stats.weekly_created = stats.weekly_updated = 0
        run = self.session.get(SyncRun, run_id)
        run.status = SyncRunStatus.CANCELLED
        run.completed_at = self.clock()
        self._copy_stats(run, stats)
        self.session.commit()

    def _fail_run(self, run_id: int, exc: Exception, stats: SyncStats) -> None:
        self.session.rollback()
        run = self.session.get(SyncRun, run_id)
        if run is None:
            return
        stats.errors.append(SyncError(row=0, message=str(exc), severity="error"))
        run.status = SyncRunStatus.FAILED
        run.completed_at = self.clock()
        run.error_summary = str(exc)
        self._copy_stats(run, stats)
        self.session.commit()
