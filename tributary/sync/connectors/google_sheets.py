"""
Google Sheets connector.

Reads spreadsheets through the Sheets v4 REST API and searches Drive for
spreadsheets, authenticating with the caller's OAuth bearer token.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping
from urllib.parse import quote

from ..errors import ConnectorRequestError
from .base import (
    BaseConnector,
    ConnectionTestResult,
    ConnectorCapabilities,
    ConnectorMetadata,
    SourceData,
    SourcePreview,
    SourceRawRows,
    SourceSearchResult,
    SourceTab,
    normalize_rows,
)

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"


@dataclass(frozen=True)
class GoogleSheetConfig:
    spreadsheet_id: str


def _a1_tab_range(tab_name: str) -> str:
    escaped = tab_name.replace("'", "''")
    return quote(f"'{escaped}'", safe="")


class GoogleSheetsConnector(BaseConnector):
    metadata = ConnectorMetadata(
        id="google_sheet",
        name="Google Sheets",
        description="Connect to Google Spreadsheets for data mapping",
        icon="Sheet",
        auth_type="oauth",
        oauth_scopes=(
            "https://www.googleapis.com/auth/spreadsheets.readonly",
            "https://www.googleapis.com/auth/drive.readonly",
        ),
        capabilities=ConnectorCapabilities(search=True, has_tabs=True),
    )

    def validate_config(self, config: Mapping[str, Any]):
        spreadsheet_id = config.get("spreadsheet_id")
        if not spreadsheet_id:
            return "Spreadsheet ID is required"
        if not isinstance(spreadsheet_id, str):
            return "Spreadsheet ID must be a string"
        if len(spreadsheet_id) < 10:
            return "Invalid spreadsheet ID format"
        return True

    def _build_config(self, payload: Mapping[str, Any]) -> GoogleSheetConfig:
        return GoogleSheetConfig(spreadsheet_id=payload["spreadsheet_id"])

    def search(self, token: str, query: str | None = None) -> List[SourceSearchResult]:
        clauses = [f"mimeType='{SPREADSHEET_MIME_TYPE}'", "trashed=false"]
        if query:
            clauses.append("name contains '{}'".format(query.replace("\\", "\\\\").replace("'", "\\'")))
        payload = self._request(
            "GET",
            DRIVE_FILES_URL,
            token=token,
            params={
                "q": " and ".join(clauses),
                "fields": "files(id,name,webViewLink,modifiedTime,owners(displayName))",
                "orderBy": "modifiedTime desc",
                "pageSize": 50,
            },
        )
        results = []
        for item in payload.get("files", []):
            owners = item.get("owners") or []
            results.append(
                SourceSearchResult(
                    id=item["id"],
                    name=item.get("name", ""),
                    url=item.get("webViewLink"),
                    modified_time=item.get("modifiedTime"),
                    owner=owners[0].get("displayName") if owners else None,
                )
            )
        return results

    def _spreadsheet_metadata(self, token: str, config: GoogleSheetConfig) -> Mapping[str, Any]:
        return self._request(
            "GET",
            f"{SHEETS_API_URL}/{config.spreadsheet_id}",
            token=token,
            params={"fields": "properties.title,sheets.properties"},
        )

    def _tabs_from_metadata(self, metadata: Mapping[str, Any]) -> List[SourceTab]:
        tabs = []
        for sheet in metadata.get("sheets", []):
            properties = sheet.get("properties", {})
            grid = properties.get("gridProperties", {})
            tabs.append(
                SourceTab(
                    id=str(properties.get("sheetId", "")),
                    title=properties.get("title", ""),
                    row_count=int(grid.get("rowCount", 0)),
                    column_count=int(grid.get("columnCount", 0)),
                )
            )
        return tabs

    def _values(self, token: str, config: GoogleSheetConfig, tab_name: str) -> List[List[Any]]:
        payload = self._request(
            "GET",
            f"{SHEETS_API_URL}/{config.spreadsheet_id}/values/{_a1_tab_range(tab_name)}",
            token=token,
            params={"valueRenderOption": "FORMATTED_VALUE"},
        )
        return payload.get("values", [])

    def get_tabs(self, token: str, config: GoogleSheetConfig) -> List[SourceTab]:
        return self._tabs_from_metadata(self._spreadsheet_metadata(token, config))

    def get_raw_rows(self, token: str, config: GoogleSheetConfig, tab_name: str, max_rows: int = 20) -> SourceRawRows:
        values = self._values(token, config, tab_name)
        width = max((len(row) for row in values[:max_rows]), default=0)
        return SourceRawRows(rows=normalize_rows(values[:max_rows], width), total_rows=len(values))

    def get_data(self, token: str, config: GoogleSheetConfig, tab_name: str, header_row: int = 0) -> SourceData:
        values = self._values(token, config, tab_name)
        if len(values) <= header_row:
            return SourceData(headers=[], rows=[])
        headers = [str(value).strip() for value in values[header_row]]
        rows = [
            row
            for row in normalize_rows(values[header_row + 1 :], len(headers))
            if any(cell.strip() for cell in row)
        ]
        return SourceData(headers=headers, rows=rows)

    def get_preview(self, token: str, config: GoogleSheetConfig) -> SourcePreview:
        metadata = self._spreadsheet_metadata(token, config)
        tabs = self._tabs_from_metadata(metadata)
        title = metadata.get("properties", {}).get("title", "")
        if not tabs:
            return SourcePreview(source_id=config.spreadsheet_id, title=title, tabs=[])
        data = self.get_data(token, config, tabs[0].title)
        return SourcePreview(
            source_id=config.spreadsheet_id,
            title=title,
            tabs=tabs,
            tab_name=tabs[0].title,
            headers=data.headers,
            rows=data.rows[:5],
        )

    def test_connection(self, token: str, config: GoogleSheetConfig) -> ConnectionTestResult:
        try:
            metadata = self._spreadsheet_metadata(token, config)
        except ConnectorRequestError as exc:
            if exc.status_code == 404:
                return ConnectionTestResult(
                    success=False, error="Spreadsheet not found. Check the ID or your access permissions."
                )
            if exc.status_code == 403:
                return ConnectionTestResult(
                    success=False,
                    error="Access denied. Make sure you have permission to view this spreadsheet.",
                )
            if exc.status_code == 401:
                return ConnectionTestResult(success=False, error="Authentication expired. Please sign in again.")
            return ConnectionTestResult(success=False, error=f"Connection failed: {exc}")
        return ConnectionTestResult(
            success=True,
            details={
                "source_name": metadata.get("properties", {}).get("title", ""),
                "tab_count": len(metadata.get("sheets", [])),
            },
        )
