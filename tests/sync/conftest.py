from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

import pytest

from tributary.models import (
    ColumnAuthority,
    ColumnCategory,
    ColumnMapping,
    ColumnPattern,
    DataSource,
    TabMapping,
    TabStatus,
    db,
)
from tributary.sync.connectors.base import (
    BaseConnector,
    ConnectorCapabilities,
    ConnectorMetadata,
    SourceData,
    SourceRawRows,
    SourceTab,
    normalize_rows,
)
from tributary.sync.engine import SyncEngine
from tributary.sync.registry import ConnectorRegistry

FIXED_NOW = datetime(2025, 3, 3, 9, 30, tzinfo=timezone.utc)


class FakeConnector(BaseConnector):
    """In-memory tabular connector; each tab is a list of rows including the header row."""

    metadata = ConnectorMetadata(
        id="fake_sheet",
        name="Fake Sheet",
        description="In-memory spreadsheet used by tests",
        auth_type="none",
        capabilities=ConnectorCapabilities(has_tabs=True),
    )

    def __init__(self, tabs: Dict[str, List[List[Any]]] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.tabs: Dict[str, List[List[Any]]] = tabs or {}
        self.calls: List[tuple] = []

    def set_tab(self, tab_name: str, values: Sequence[Sequence[Any]]) -> None:
        self.tabs[tab_name] = [list(row) for row in values]

    def get_tabs(self, token, config):
        return [SourceTab(id=name, title=name, row_count=len(values)) for name, values in self.tabs.items()]

    def get_raw_rows(self, token, config, tab_name, max_rows=20):
        values = self.tabs.get(tab_name, [])
        return SourceRawRows(rows=normalize_rows(values[:max_rows]), total_rows=len(values))

    def get_data(self, token, config, tab_name, header_row=0):
        self.calls.append(("get_data", token, tab_name, header_row))
        values = self.tabs.get(tab_name, [])
        if len(values) <= header_row:
            return SourceData(headers=[], rows=[])
        headers = [str(value) for value in values[header_row]]
        return SourceData(headers=headers, rows=normalize_rows(values[header_row + 1 :], len(headers)))


@pytest.fixture
def make_connector():
    """Factory for fresh in-memory tabular connectors."""
    return FakeConnector


@pytest.fixture
def fake_connector(make_connector):
    return make_connector()


@pytest.fixture
def registry(fake_connector):
    return ConnectorRegistry([fake_connector]).freeze()


@pytest.fixture
def make_engine(registry):
    def _make(*, connectors=None, **kwargs) -> SyncEngine:
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        target = ConnectorRegistry(connectors).freeze() if connectors is not None else registry
        return SyncEngine(target, **kwargs)

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine(batch_size=50)


@pytest.fixture
def make_data_source():
    def _make(name: str = "Master Sheet", type: str = "fake_sheet", connection_config=None) -> DataSource:
        data_source = DataSource(name=name, type=type, connection_config=connection_config or {})
        db.session.add(data_source)
        db.session.commit()
        return data_source

    return _make


@pytest.fixture
def make_tab(make_data_source):
    def _make(
        tab_name: str = "Partners",
        *,
        data_source: DataSource | None = None,
        primary_entity: str = "partners",
        header_row: int = 0,
        status: TabStatus = TabStatus.ACTIVE,
    ) -> TabMapping:
        data_source = data_source or make_data_source()
        tab = TabMapping(
            data_source_id=data_source.id,
            tab_name=tab_name,
            primary_entity=primary_entity,
            header_row=header_row,
            status=status,
        )
        db.session.add(tab)
        db.session.commit()
        return tab

    return _make


@pytest.fixture
def add_column():
    def _add(
        tab: TabMapping,
        source_column: str,
        target_field: str | None = None,
        *,
        index: int | None = None,
        category: ColumnCategory = ColumnCategory.PARTNER,
        authority: ColumnAuthority = ColumnAuthority.SOURCE_OF_TRUTH,
        transform_type: str = "none",
        transform_config: dict | None = None,
        is_key: bool = False,
    ) -> ColumnMapping:
        mapping = ColumnMapping(
            tab_mapping_id=tab.id,
            source_column=source_column,
            source_column_index=index,
            category=category,
            target_field=target_field,
            authority=authority,
            transform_type=transform_type,
            transform_config=transform_config,
            is_key=is_key,
        )
        db.session.add(mapping)
        db.session.commit()
        return mapping

    return _add


@pytest.fixture
def add_pattern():
    def _add(
        match_config: dict,
        *,
        tab: TabMapping | None = None,
        name: str = "weekly columns",
        category: str = "weekly",
        priority: int = 10,
        is_active: bool = True,
    ) -> ColumnPattern:
        pattern = ColumnPattern(
            tab_mapping_id=tab.id if tab is not None else None,
            pattern_name=name,
            category=category,
            match_config=match_config,
            priority=priority,
            is_active=is_active,
        )
        db.session.add(pattern)
        db.session.commit()
        return pattern

    return _add


@pytest.fixture
def partner_tab(make_tab, add_column):
    """Partners tab keyed by "Brand Name" with status, fee and pod leader columns."""
    tab = make_tab("Partners")
    add_column(tab, "Brand Name", "brand_name", index=0, is_key=True)
    add_column(tab, "Status", "status", index=1)
    add_column(tab, "Base Fee", "base_fee", index=2, transform_type="currency")
    add_column(tab, "Pod Leader", "pod_leader", index=3, category=ColumnCategory.STAFF)
    return tab
