from __future__ import annotations

import threading
from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

import tributary.sync.weekly as weekly_module
from tributary.models import (
    Asin,
    ColumnAuthority,
    ColumnCategory,
    FieldLineage,
    Partner,
    PartnerAssignment,
    Staff,
    SyncRun,
    SyncRunStatus,
    TabStatus,
    WeeklyStatus,
    db,
)
from tributary.sync.connectors import SupTaskConnector
from tributary.sync.engine import (
    DUPLICATE_KEY_REASON,
    EMPTY_KEY_REASON,
    NO_AUTHORIZED_FIELDS_REASON,
    NO_CHANGES_REASON,
)
from tributary.sync.entity_store import EntityStore
from tributary.sync.errors import (
    ConnectorCapabilityError,
    SchemaDriftError,
    SyncConfigurationError,
    UnknownConnectorError,
)
from tributary.sync.results import SyncOptions

HEADERS = ["Brand Name", "Status", "Base Fee", "Pod Leader", "1/6", "1/13"]


def _add_staff(full_name: str) -> Staff:
    staff = Staff(full_name=full_name)
    db.session.add(staff)
    db.session.commit()
    return staff


def _partner(brand_name: str) -> Partner | None:
    return db.session.query(Partner).filter_by(brand_name=brand_name).one_or_none()


@pytest.fixture
def acme_sheet(fake_connector, partner_tab, add_pattern):
    _add_staff("Jane Doe")
    add_pattern({"matches_date": True, "after_column": "Pod Leader"}, name="weekly status")
    fake_connector.set_tab("Partners", [HEADERS, ["Acme", "Active", "$1,500", "Jane Doe", "Green", "Yellow"]])
    return partner_tab


def test_acme_row_creates_partner_assignment_and_weekly_statuses(engine, acme_sheet):
    result = engine.sync_tab(acme_sheet.id, "token-123", SyncOptions(triggered_by="ops@example.com"))

    assert result.success is True
    assert result.stats.rows_processed == 1
    assert result.stats.rows_created == 1
    assert result.stats.weekly_created == 2
    assert result.changes is None

    acme = _partner("Acme")
    assert acme.status == "Active"
    assert acme.base_fee == 1500.0
    assert acme.source_data == {
        "fake_sheet": {
            "Partners": {
                "Brand Name": "Acme",
                "Status": "Active",
                "Base Fee": "$1,500",
                "Pod Leader": "Jane Doe",
                "1/6": "Green",
                "1/13": "Yellow",
            }
        }
    }

    assignment = db.session.query(PartnerAssignment).filter_by(partner_id=acme.id).one()
    assert assignment.assignment_role == "pod_leader"
    assert assignment.staff.full_name == "Jane Doe"

    weekly = {row.week_start_date: row for row in db.session.query(WeeklyStatus).filter_by(partner_id=acme.id)}
    assert set(weekly) == {date(2025, 1, 6), date(2025, 1, 13)}
    assert weekly[date(2025, 1, 6)].status == "Green"
    assert weekly[date(2025, 1, 13)].status == "Yellow"
    assert weekly[date(2025, 1, 13)].week_number == 3
    assert weekly[date(2025, 1, 13)].year == 2025


def test_sync_run_and_tab_bookkeeping(engine, acme_sheet, fake_connector):
    result = engine.sync_tab(acme_sheet.id, "token-123", SyncOptions(triggered_by="ops@example.com"))

    run = db.session.get(SyncRun, result.sync_run_id)
    assert run.status == SyncRunStatus.COMPLETED
    assert run.rows_processed == 1
    assert run.rows_created == 1
    assert run.weekly_created == 2
    assert run.weekly_updated == 0
    assert run.triggered_by == "ops@example.com"
    assert run.completed_at is not None
    assert acme_sheet.last_sync_row_count == 1
    assert acme_sheet.last_synced_at is not None
    assert acme_sheet.data_source.last_synced_at is not None
    assert fake_connector.calls == [("get_data", "token-123", "Partners", 0)]


def test_lineage_records_each_created_field(engine, acme_sheet):
    result = engine.sync_tab(acme_sheet.id, "token", SyncOptions(triggered_by="ops@example.com"))

    entries = {entry.field_name: entry for entry in db.session.query(FieldLineage).all()}
    assert set(entries) == {"brand_name", "status", "base_fee", "pod_leader"}
    status_entry = entries["status"]
    assert status_entry.entity_type == "partners"
    assert status_entry.source_type == "fake_sheet"
    assert status_entry.source_ref == "Master Sheet → Partners → Status"
    assert status_entry.previous_value is None
    assert status_entry.new_value == "Active"
    assert status_entry.changed_by == "ops@example.com"
    assert status_entry.sync_run_id == result.sync_run_id
    assert entries["base_fee"].new_value == "1500.0"


def test_second_identical_sync_changes_nothing(engine, acme_sheet):
    engine.sync_tab(acme_sheet.id, "token")
    lineage_count = db.session.query(FieldLineage).count()

    second = engine.sync_tab(acme_sheet.id, "token")

    assert second.stats.rows_created == 0
    assert second.stats.rows_updated == 0
    assert second.stats.rows_skipped == 1
    assert second.stats.weekly_created == 0
    assert second.stats.weekly_updated == 0
    assert db.session.query(Partner).count() == 1
    assert db.session.query(WeeklyStatus).count() == 2
    assert db.session.query(PartnerAssignment).count() == 1
    assert db.session.query(FieldLineage).count() == lineage_count

    preview = engine.sync_tab(acme_sheet.id, "token", SyncOptions(dry_run=True))
    assert [change.skip_reason for change in preview.changes] == [NO_CHANGES_REASON]


def test_changed_weekly_cell_counts_as_update(engine, acme_sheet, fake_connector):
    engine.sync_tab(acme_sheet.id, "token")
    fake_connector.set_tab("Partners", [HEADERS, ["Acme", "Active", "$1,500", "Jane Doe", "Green", "Red"]])

    result = engine.sync_tab(acme_sheet.id, "token")

    assert result.stats.weekly_created == 0
    assert result.stats.weekly_updated == 1
    statuses = {row.week_start_date: row.status for row in db.session.query(WeeklyStatus)}
    assert statuses[date(2025, 1, 13)] == "Red"


def test_empty_key_row_is_skipped(engine, partner_tab, fake_connector):
    fake_connector.set_tab(
        "Partners",
        [["Brand Name", "Status", "Base Fee", "Pod Leader"], ["", "Active", "$100", ""], ["Beta", "Active", "", ""]],
    )

    result = engine.sync_tab(partner_tab.id, "token", SyncOptions(dry_run=True))

    assert result.stats.rows_processed == 2
    assert result.stats.rows_skipped == 1
    assert result.stats.rows_created == 1
    skipped = result.changes[0]
    assert skipped.type == "skip"
    assert skipped.skip_reason == EMPTY_KEY_REASON
    assert skipped.row_number == 2


def test_currency_transform_failure_is_a_warning(engine, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["Brand Name", "Base Fee"], ["Acme", "N/A"]])

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.success is True
    assert result.stats.rows_created == 1
    acme = _partner("Acme")
    assert acme.base_fee is None
    warning = next(error for error in result.stats.errors if error.column == "Base Fee")
    assert warning.severity == "warning"
    assert warning.row == 2


def test_reference_authority_never_overwrites_without_force(engine, make_tab, add_column, fake_connector):
    tab = make_tab("Partners")
    add_column(tab, "Brand Name", "brand_name", is_key=True)
    add_column(tab, "Status", "status", authority=ColumnAuthority.REFERENCE)
    db.session.add(Partner(brand_name="Acme", status="Paused"))
    db.session.commit()
    fake_connector.set_tab("Partners", [["Brand Name", "Status"], ["acme", "Active"]])

    result = engine.sync_tab(tab.id, "token", SyncOptions(dry_run=True))
    assert result.changes[0].skip_reason == NO_AUTHORIZED_FIELDS_REASON

    engine.sync_tab(tab.id, "token")
    assert _partner("Acme").status == "Paused"

    forced = engine.sync_tab(tab.id, "token", SyncOptions(force_overwrite=True))
    assert forced.stats.rows_updated == 1
    assert _partner("Acme").status == "Active"


def test_update_only_touches_source_of_truth_fields(engine, make_tab, add_column, fake_connector):
    tab = make_tab("Partners")
    add_column(tab, "Brand Name", "brand_name", is_key=True)
    add_column(tab, "Status", "status", authority=ColumnAuthority.REFERENCE)
    add_column(tab, "Tier", "tier")
    db.session.add(Partner(brand_name="Acme", status="Paused", tier="Gold"))
    db.session.commit()
    fake_connector.set_tab("Partners", [["Brand Name", "Status", "Tier"], ["Acme", "Active", "Silver"]])

    result = engine.sync_tab(tab.id, "token")

    assert result.stats.rows_updated == 1
    acme = _partner("Acme")
    assert acme.status == "Paused"
    assert acme.tier == "Silver"
    lineage = db.session.query(FieldLineage).one()
    assert lineage.field_name == "tier"
    assert lineage.previous_value == "Gold"
    assert lineage.new_value == "Silver"


@pytest.mark.parametrize("key_count", [0, 2])
def test_key_mapping_count_must_be_exactly_one(engine, make_tab, add_column, fake_connector, key_count):
    tab = make_tab("Partners")
    add_column(tab, "Brand Name", "brand_name", is_key=key_count > 0)
    add_column(tab, "Client", "client_name", is_key=key_count > 1)
    fake_connector.set_tab("Partners", [["Brand Name", "Client"], ["Acme", "Pat"]])

    with pytest.raises(SyncConfigurationError, match="exactly one key column"):
        engine.sync_tab(tab.id, "token")

    assert fake_connector.calls == []
    assert db.session.query(SyncRun).count() == 0
    assert db.session.query(Partner).count() == 0


def test_missing_tab_mapping_raises_before_any_run(engine):
    with pytest.raises(SyncConfigurationError, match="not found"):
        engine.sync_tab(999, "token")
    assert db.session.query(SyncRun).count() == 0


def test_missing_key_column_is_schema_drift(engine, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["Brand", "Status"], ["Acme", "Active"]])

    with pytest.raises(SchemaDriftError, match="Brand Name"):
        engine.sync_tab(partner_tab.id, "token")

    run = db.session.query(SyncRun).one()
    assert run.status == SyncRunStatus.FAILED
    assert "Brand Name" in run.error_summary
    assert run.completed_at is not None
    assert db.session.query(Partner).count() == 0


def test_key_column_matches_header_case_insensitively(engine, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["BRAND NAME", "status"], ["Acme", "Active"]])

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.stats.rows_created == 1
    assert _partner("Acme").status == "Active"


def test_skip_rows_still_merge_source_snapshot(engine, make_tab, add_column, fake_connector):
    tab = make_tab("Partners")
    add_column(tab, "Brand Name", "brand_name", is_key=True)
    add_column(tab, "Status", "status", authority=ColumnAuthority.REFERENCE)
    db.session.add(
        Partner(
            brand_name="Acme",
            status="Paused",
            source_data={"fake_sheet": {"Billing": {"Fee": "100"}}, "bigquery": {"view": {"Rows": "3"}}},
        )
    )
    db.session.commit()
    fake_connector.set_tab("Partners", [["Brand Name", "Status", "Notes"], ["Acme", "Active", "call back"]])

    result = engine.sync_tab(tab.id, "token")

    assert result.stats.rows_skipped == 1
    assert _partner("Acme").source_data == {
        "fake_sheet": {
            "Billing": {"Fee": "100"},
            "Partners": {"Brand Name": "Acme", "Status": "Active", "Notes": "call back"},
        },
        "bigquery": {"view": {"Rows": "3"}},
    }


def test_same_week_headers_collapse_to_one_status(engine, partner_tab, fake_connector, add_pattern):
    add_pattern({"matches_date": True})
    fake_connector.set_tab(
        "Partners",
        [["Brand Name", "1/6", "2025-01-08", "1/13"], ["Acme", "Green", "Blue", "Yellow"]],
    )

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.stats.weekly_created == 2
    statuses = {row.week_start_date: row.status for row in db.session.query(WeeklyStatus)}
    assert statuses == {date(2025, 1, 6): "Green", date(2025, 1, 13): "Yellow"}


def test_weekly_pivot_skips_blank_cells_and_inactive_patterns(engine, partner_tab, fake_connector, add_pattern):
    add_pattern({"matches_date": True}, is_active=False)
    add_pattern({"starts_with": ["1/"]}, tab=partner_tab, name="january", priority=5)
    fake_connector.set_tab("Partners", [["Brand Name", "1/6", "1/13", "2/3"], ["Acme", "", "Yellow", "Green"]])

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.stats.weekly_created == 1
    assert [row.week_start_date for row in db.session.query(WeeklyStatus)] == [date(2025, 1, 13)]


def test_dry_run_reports_changes_without_writing(engine, acme_sheet):
    result = engine.sync_tab(acme_sheet.id, "token", SyncOptions(dry_run=True))

    assert result.success is True
    assert [change.type for change in result.changes] == ["create"]
    assert result.changes[0].fields["base_fee"] == 1500.0
    assert db.session.query(Partner).count() == 0
    assert db.session.query(WeeklyStatus).count() == 0
    assert db.session.query(FieldLineage).count() == 0
    run = db.session.get(SyncRun, result.sync_run_id)
    assert run.dry_run is True
    assert run.status == SyncRunStatus.COMPLETED
    assert run.rows_created == 1
    assert acme_sheet.last_synced_at is None


def test_row_limit_and_row_numbers_follow_header_row(engine, make_tab, add_column, fake_connector):
    tab = make_tab("Partners", header_row=1)
    add_column(tab, "Brand Name", "brand_name", is_key=True)
    add_column(tab, "Base Fee", "base_fee", transform_type="currency")
    fake_connector.set_tab(
        "Partners",
        [["Partner roster"], ["Brand Name", "Base Fee"], ["Acme", "oops"], ["Beta", "$5"], ["Gamma", "$6"]],
    )

    result = engine.sync_tab(tab.id, "token", SyncOptions(row_limit=2))

    assert result.stats.rows_processed == 2
    assert result.stats.rows_created == 2
    assert _partner("Gamma") is None
    assert [error.row for error in result.stats.errors] == [3]
    assert tab.last_sync_row_count == 2


def test_duplicate_keys_keep_first_occurrence(engine, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["Brand Name", "Status"], ["Acme", "Active"], ["ACME", "Churned"]])

    result = engine.sync_tab(partner_tab.id, "token", SyncOptions(dry_run=True))

    assert [change.type for change in result.changes] == ["create", "skip"]
    assert result.changes[1].skip_reason == DUPLICATE_KEY_REASON
    assert [warning.row for warning in result.stats.warnings if warning.column == "Brand Name"] == [3]


def test_failed_create_batch_is_downgraded_to_skips(make_engine, partner_tab, fake_connector, monkeypatch):
    engine = make_engine(batch_size=1)
    fake_connector.set_tab("Partners", [["Brand Name"], ["Broken"], ["Fine"]])
    original_build = EntityStore.build

    def flaky_build(self, fields, *args, **kwargs):
        if fields.get("brand_name") == "Broken":
            raise SQLAlchemyError("simulated insert failure")
        return original_build(self, fields, *args, **kwargs)

    monkeypatch.setattr(EntityStore, "build", flaky_build)

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.success is True
    assert result.stats.rows_created == 1
    assert result.stats.rows_skipped == 1
    assert _partner("Broken") is None
    assert _partner("Fine") is not None
    error = next(error for error in result.stats.errors if error.severity == "error")
    assert error.row == 2
    assert "simulated insert failure" in error.message
    assert [entry.field_name for entry in db.session.query(FieldLineage)] == ["brand_name"]


def test_cancellation_marks_run_cancelled_and_writes_nothing(engine, acme_sheet):
    cancel = threading.Event()
    cancel.set()

    result = engine.sync_tab(acme_sheet.id, "token", SyncOptions(cancel_event=cancel))

    assert result.cancelled is True
    assert result.success is False
    assert db.session.get(SyncRun, result.sync_run_id).status == SyncRunStatus.CANCELLED
    assert db.session.query(Partner).count() == 0
    assert acme_sheet.last_synced_at is None


def test_lineage_can_be_disabled(make_engine, acme_sheet):
    engine = make_engine(lineage_enabled=False)
    assert engine.lineage_enabled is False

    result = engine.sync_tab(acme_sheet.id, "token")

    assert result.stats.rows_created == 1
    assert db.session.query(FieldLineage).count() == 0


def test_direct_reference_sets_foreign_key_and_warns_when_unresolved(engine, make_tab, add_column, fake_connector):
    db.session.add(Partner(brand_name="Acme"))
    db.session.commit()
    tab = make_tab("ASINs", primary_entity="asins")
    add_column(tab, "ASIN", "asin_code", category=ColumnCategory.ASIN, is_key=True)
    add_column(tab, "Brand", "brand_name", category=ColumnCategory.ASIN)
    fake_connector.set_tab("ASINs", [["ASIN", "Brand"], ["B000111", "acme"], ["B000222", "Unknown Co"]])

    result = engine.sync_tab(tab.id, "token")

    assert result.stats.rows_created == 2
    asins = {asin.asin_code: asin for asin in db.session.query(Asin)}
    assert asins["B000111"].partner_id == _partner("Acme").id
    assert asins["B000222"].partner_id is None
    warning = result.stats.warnings[0]
    assert warning.row == 3
    assert "Unknown Co" in warning.message


def test_non_tabular_connector_is_rejected(make_engine, make_connector, make_tab, add_column, make_data_source):
    engine = make_engine(connectors=[make_connector(), SupTaskConnector()])
    tab = make_tab("Tickets", data_source=make_data_source(name="Support", type="suptask"))
    add_column(tab, "Brand Name", "brand_name", is_key=True)

    with pytest.raises(ConnectorCapabilityError):
        engine.sync_tab(tab.id, "token")

    assert db.session.query(SyncRun).one().status == SyncRunStatus.FAILED


def test_unregistered_connector_fails_the_run(engine, make_tab, add_column, make_data_source):
    tab = make_tab("Partners", data_source=make_data_source(type="airtable"))
    add_column(tab, "Brand Name", "brand_name", is_key=True)

    with pytest.raises(UnknownConnectorError):
        engine.sync_tab(tab.id, "token")

    run = db.session.query(SyncRun).one()
    assert run.status == SyncRunStatus.FAILED
    assert run.errors[-1]["severity"] == "error"


def test_sync_data_source_degrades_failing_tabs(engine, make_data_source, make_tab, add_column, fake_connector):
    source = make_data_source()
    good = make_tab("Partners", data_source=source)
    add_column(good, "Brand Name", "brand_name", is_key=True)
    broken = make_tab("Staff", data_source=source, primary_entity="staff")
    add_column(broken, "Name", "full_name", category=ColumnCategory.STAFF)
    hidden = make_tab("Archive", data_source=source, status=TabStatus.HIDDEN)
    add_column(hidden, "Brand Name", "brand_name", is_key=True)
    fake_connector.set_tab("Partners", [["Brand Name"], ["Acme"]])
    fake_connector.set_tab("Archive", [["Brand Name"], ["Old Co"]])

    results = engine.sync_data_source(source.id, "token")

    assert [result.tab_mapping_id for result in results] == [good.id, broken.id]
    assert results[0].success is True
    assert results[1].success is False
    assert results[1].sync_run_id is None
    assert results[1].stats.errors[0].row == 0
    assert results[1].stats.errors[0].severity == "error"
    assert _partner("Acme") is not None
    assert _partner("Old Co") is None


def test_sync_data_source_unknown_id(engine):
    with pytest.raises(SyncConfigurationError):
        engine.sync_data_source(404, "token")


def test_resync_updates_status_and_exactly_one_week(engine, make_tab, add_column, add_pattern, fake_connector):
    tab = make_tab("Partners")
    add_column(tab, "Brand", "brand_name", is_key=True)
    add_column(tab, "Status", "status")
    add_pattern({"matches_date": True})
    headers = ["Brand", "Status", "1/6", "1/13"]
    fake_connector.set_tab("Partners", [headers, ["Acme", "active", "OK", "Late"]])

    first = engine.sync_tab(tab.id, "token")
    assert (first.stats.rows_created, first.stats.weekly_created) == (1, 2)

    fake_connector.set_tab("Partners", [headers, ["Acme", "paused", "OK", "On Track"]])
    preview = engine.sync_tab(tab.id, "token", SyncOptions(dry_run=True))
    assert [(change.type, change.fields) for change in preview.changes] == [("update", {"status": "paused"})]

    second = engine.sync_tab(tab.id, "token")
    assert second.stats.rows_updated == 1
    assert (second.stats.weekly_created, second.stats.weekly_updated) == (0, 1)
    statuses = {row.week_start_date: row.status for row in db.session.query(WeeklyStatus)}
    assert statuses == {date(2025, 1, 6): "OK", date(2025, 1, 13): "On Track"}
    assert _partner("Acme").status == "paused"


@pytest.fixture
def orphan_asin_tab(make_tab, add_column, fake_connector):
    tab = make_tab("ASINs", primary_entity="asins")
    add_column(tab, "ASIN", "asin_code", category=ColumnCategory.ASIN, is_key=True)
    add_column(tab, "Brand", "brand_name", category=ColumnCategory.ASIN)
    fake_connector.set_tab("ASINs", [["ASIN", "Brand"], ["B000222", "Unknown Co"]])
    return tab


def test_unresolved_reference_is_neither_written_nor_traced(engine, orphan_asin_tab):
    result = engine.sync_tab(orphan_asin_tab.id, "token")

    assert result.stats.rows_created == 1
    assert db.session.query(Asin).one().partner_id is None
    assert [entry.field_name for entry in db.session.query(FieldLineage)] == ["asin_code"]
    warning = result.stats.warnings[0]
    assert (warning.row, warning.column) == (2, "Brand")
    assert "Unknown Co" in warning.message


def test_unresolved_reference_resync_changes_nothing(engine, orphan_asin_tab):
    engine.sync_tab(orphan_asin_tab.id, "token")
    lineage_count = db.session.query(FieldLineage).count()

    for _ in range(2):
        again = engine.sync_tab(orphan_asin_tab.id, "token")
        assert again.stats.rows_updated == 0
        assert again.stats.rows_skipped == 1
    assert db.session.query(FieldLineage).count() == lineage_count

    partner = Partner(brand_name="Unknown Co")
    db.session.add(partner)
    db.session.commit()

    resolved = engine.sync_tab(orphan_asin_tab.id, "token")

    assert resolved.stats.rows_updated == 1
    assert db.session.query(Asin).one().partner_id == partner.id
    assert db.session.query(FieldLineage).count() == lineage_count + 1


def test_lineage_write_failure_leaves_run_completed(engine, acme_sheet, monkeypatch):
    original_add_all = db.session.add_all

    def add_all(instances):
        instances = list(instances)
        if any(isinstance(instance, FieldLineage) for instance in instances):
            raise SQLAlchemyError("lineage table is locked")
        return original_add_all(instances)

    monkeypatch.setattr(db.session, "add_all", add_all)

    result = engine.sync_tab(acme_sheet.id, "token")

    assert result.success is True
    assert db.session.get(SyncRun, result.sync_run_id).status == SyncRunStatus.COMPLETED
    assert _partner("Acme") is not None
    assert db.session.query(FieldLineage).count() == 0
    warning = next(error for error in result.stats.warnings if error.message.startswith("Lineage not recorded"))
    assert "lineage table is locked" in warning.message


def test_weekly_upsert_failure_is_a_warning(engine, acme_sheet, monkeypatch):
    original_upsert = weekly_module._upsert_weekly_status

    def flaky_upsert(session, partner_id, week, value):
        if week == date(2025, 1, 13):
            raise SQLAlchemyError("weekly row is locked")
        return original_upsert(session, partner_id, week, value)

    monkeypatch.setattr(weekly_module, "_upsert_weekly_status", flaky_upsert)

    result = engine.sync_tab(acme_sheet.id, "token")

    assert result.success is True
    assert result.stats.weekly_created == 1
    weeks = [row.week_start_date for row in db.session.query(WeeklyStatus)]
    assert weeks == [date(2025, 1, 6)]
    warning = next(error for error in result.stats.warnings if error.column == "1/13")
    assert warning.row == 2
    assert "weekly row is locked" in warning.message


def test_row_error_excludes_only_that_row(engine, partner_tab, fake_connector, monkeypatch):
    fake_connector.set_tab("Partners", [["Brand Name", "Status"], ["Broken", "Active"], ["Fine", "Active"]])
    original_find = EntityStore.find

    def flaky_find(self, key_value):
        if key_value == "Broken":
            raise ValueError("lookup exploded")
        return original_find(self, key_value)

    monkeypatch.setattr(EntityStore, "find", flaky_find)

    result = engine.sync_tab(partner_tab.id, "token")

    assert result.success is True
    assert (result.stats.rows_processed, result.stats.rows_created, result.stats.rows_skipped) == (2, 1, 1)
    error = next(error for error in result.stats.errors if error.severity == "error")
    assert error.row == 2
    assert "lookup exploded" in error.message
    assert _partner("Broken") is None
    assert _partner("Fine").status == "Active"
    assert db.session.get(SyncRun, result.sync_run_id).status == SyncRunStatus.COMPLETED
