"""
BigQuery connector.

Views in a dataset act as tabs. Queries run through the BigQuery v2 REST API
(``jobs.query``) with the supplied bearer token; headers come from the
result schema rather than a header row.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from ..errors import ConnectorConfigError, ConnectorRequestError
from .base import (
    BaseConnector,
    ConnectorCapabilities,
    ConnectorMetadata,
    SourceData,
    SourcePreview,
    SourceRawRows,
    SourceTab,
    cell_to_string,
)

BIGQUERY_API_URL = "https://bigquery.googleapis.com/bigquery/v2"
DEFAULT_PARTNER_FIELD = "client_name"
MAX_DATA_ROWS = 1000

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


@dataclass(frozen=True)
class BigQueryConfig:
    project_id: str
    dataset_id: str
    view_name: str | None = None
    partner_field: str = DEFAULT_PARTNER_FIELD
    views: Tuple[str, ...] = ()


def _identifier(value: str, label: str) -> str:
    if not value or not _IDENTIFIER.match(value):
        raise ConnectorConfigError(f"Invalid BigQuery {label}: {value!r}")
    return value


class BigQueryConnector(BaseConnector):
    metadata = ConnectorMetadata(
        id="bigquery",
        name="BigQuery",
        description="Connect to Google BigQuery datasets; views are exposed as tabs",
        icon="Database",
        auth_type="service_account",
        oauth_scopes=("https://www.googleapis.com/auth/bigquery.readonly",),
        capabilities=ConnectorCapabilities(search=False, has_tabs=True, incremental_sync=True),
    )

    def validate_config(self, config: Mapping[str, Any]):
        if not config.get("project_id"):
            return "Project ID is required"
        if not config.get("dataset_id"):
            return "Dataset ID is required"
        return True

    def _build_config(self, payload: Mapping[str, Any]) -> BigQueryConfig:
        return BigQueryConfig(
            project_id=str(payload["project_id"]),
            dataset_id=str(payload["dataset_id"]),
            view_name=payload.get("view_name"),
            partner_field=payload.get("partner_field") or DEFAULT_PARTNER_FIELD,
            views=tuple(payload.get("views") or ()),
        )

    def _table_ref(self, config: BigQueryConfig, view_name: str) -> str:
        return "`{}.{}.{}`".format(
            _identifier(config.project_id, "project"),
            _identifier(config.dataset_id, "dataset"),
            _identifier(view_name, "view"),
        )

    def _query(
        self,
        token: str,
        config: BigQueryConfig,
        sql: str,
        *,
        max_results: int | None = None,
        parameters: Sequence[Mapping[str, Any]] = (),
    ) -> Tuple[List[str], List[List[str]], int]:
        body: Dict[str, Any] = {"query": sql, "useLegacySql": False}
        if max_results is not None:
            body["maxResults"] = max_results
        if parameters:
            body["parameterMode"] = "NAMED"
            body["queryParameters"] = list(parameters)
        payload = self._request(
            "POST",
            f"{BIGQUERY_API_URL}/projects/{config.project_id}/queries",
            token=token,
            json=body,
        )
        if not payload.get("jobComplete", True):
            raise ConnectorRequestError("BigQuery query did not complete within the request timeout")
        headers = [field["name"] for field in payload.get("schema", {}).get("fields", [])]
        rows = [[cell_to_string(cell.get("v")) for cell in row.get("f", [])] for row in payload.get("rows", [])]
        return headers, rows, int(payload.get("totalRows", len(rows)) or 0)

    def get_tabs(self, token: str, config: BigQueryConfig) -> List[SourceTab]:
        base = f"{BIGQUERY_API_URL}/projects/{config.project_id}/datasets/{config.dataset_id}/tables"
        listing = self._request("GET", base, token=token)
        tabs = []
        for table in listing.get("tables", []):
            table_id = table.get("tableReference", {}).get("tableId", "")
            if config.views and table_id not in config.views:
                continue
            details = self._request("GET", f"{base}/{table_id}", token=token)
            tabs.append(
                SourceTab(
                    id=table_id,
                    title=table_id,
                    row_count=int(details.get("numRows", 0) or 0),
                    column_count=len(details.get("schema", {}).get("fields", [])),
                )
            )
        return tabs

    def get_raw_rows(self, token: str, config: BigQueryConfig, tab_name: str, max_rows: int = 20) -> SourceRawRows:
        table = self._table_ref(config, tab_name)
        headers, rows, _ = self._query(token, config, f"SELECT * FROM {table} LIMIT {int(max_rows)}")
        if not rows:
            return SourceRawRows(rows=[], total_rows=0)
        _, count_rows, _ = self._query(token, config, f"SELECT COUNT(*) AS total FROM {table}")
        total = int(count_rows[0][0]) if count_rows and count_rows[0] else len(rows)
        return SourceRawRows(rows=[headers, *rows], total_rows=total)

    def get_data(self, token: str, config: BigQueryConfig, tab_name: str, header_row: int = 0) -> SourceData:
        # Schema defines the headers, so header_row does not apply.
        raw = self.get_raw_rows(token, config, tab_name, MAX_DATA_ROWS)
        if not raw.rows:
            return SourceData(headers=[], rows=[])
        return SourceData(headers=raw.rows[0], rows=raw.rows[1:])

    def get_preview(self, token: str, config: BigQueryConfig) -> SourcePreview:
        tabs = self.get_tabs(token, config)
        source_id = f"{config.project_id}.{config.dataset_id}"
        title = f"BigQuery: {config.dataset_id}"
        if not tabs:
            return SourcePreview(source_id=source_id, title=title, tabs=[])
        first = config.view_name or tabs[0].title
        raw = self.get_raw_rows(token, config, first, 6)
        return SourcePreview(
            source_id=source_id,
            title=title,
            tabs=tabs,
            tab_name=first,
            headers=raw.rows[0] if raw.rows else [],
            rows=raw.rows[1:6],
        )

    def get_partner_data(
        self,
        token: str,
        config: BigQueryConfig,
        view_name: str,
        client_name: str,
        *,
        limit: int | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> SourceData:
        """Rows of one view filtered to a single partner, optionally bounded by date."""
        partner_field = _identifier(config.partner_field, "partner field")
        clauses = [f"{partner_field} = @client_name"]
        parameters = [
            {"name": "client_name", "parameterType": {"type": "STRING"}, "parameterValue": {"value": client_name}}
        ]
        if start_date:
            clauses.append("date >= @start_date")
            parameters.append(
                {"name": "start_date", "parameterType": {"type": "DATE"}, "parameterValue": {"value": start_date}}
            )
        if end_date:
            clauses.append("date <= @end_date")
            parameters.append(
                {"name": "end_date", "parameterType": {"type": "DATE"}, "parameterValue": {"value": end_date}}
            )
        sql = f"SELECT * FROM {self._table_ref(config, view_name)} WHERE {' AND '.join(clauses)}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        headers, rows, _ = self._query(token, config, sql, parameters=parameters)
        return SourceData(headers=headers, rows=rows)
