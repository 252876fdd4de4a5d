"""
Connector contract shared by every source kind.

Tabular connectors (spreadsheets, warehouse views) implement the tab and row
methods. Non-tabular connectors (chat, directory, ticketing) declare
``has_tabs=False`` and expose their own domain methods instead.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Sequence, Tuple

import requests

from ..errors import ConnectorCapabilityError, ConnectorConfigError, ConnectorError, ConnectorRequestError

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class ConnectorCapabilities:
    search: bool = False
    has_tabs: bool = True
    real_time_sync: bool = False
    incremental_sync: bool = False
    write_back: bool = False


@dataclass(frozen=True)
class ConnectorMetadata:
    """Descriptor used by registries and CLIs to branch without type inspection."""

    id: str
    name: str
    description: str
    capabilities: ConnectorCapabilities
    auth_type: Literal["oauth", "api_key", "service_account", "none"] = "oauth"
    icon: str | None = None
    oauth_scopes: Tuple[str, ...] = ()
    enabled: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SourceTab:
    id: str
    title: str
    row_count: int = 0
    column_count: int = 0


@dataclass(frozen=True)
class SourceRawRows:
    rows: List[List[str]]
    total_rows: int


@dataclass(frozen=True)
class SourceData:
    headers: List[str]
    rows: List[List[str]]


@dataclass(frozen=True)
class SourcePreview:
    source_id: str
    title: str
    tabs: List[SourceTab]
    tab_name: str = ""
    headers: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)


@dataclass(frozen=True)
class SourceSearchResult:
    id: str
    name: str
    url: str | None = None
    modified_time: str | None = None
    owner: str | None = None


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    error: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success, "details": dict(self.details)}
        if self.error:
            payload["error"] = self.error
        return payload


def cell_to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def normalize_rows(rows: Sequence[Sequence[Any]], width: int | None = None) -> List[List[str]]:
    """Stringify cells and pad every row to ``width`` columns."""
    normalized: List[List[str]] = []
    for row in rows:
        cells = [cell_to_string(value) for value in row]
        if width is not None and len(cells) < width:
            cells.extend([""] * (width - len(cells)))
        normalized.append(cells)
    return normalized


class BaseConnector:
    """Common behaviour for all connectors."""

    metadata: ConnectorMetadata

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    @property
    def kind(self) -> str:
        return self.metadata.id

    @property
    def capabilities(self) -> ConnectorCapabilities:
        return self.metadata.capabilities

    # Configuration ---------------------------------------------------------------

    def validate_config(self, config: Mapping[str, Any]) -> Literal[True] | str:
        return True

    def parse_config(self, raw: Mapping[str, Any] | None) -> Any:
        """Validate raw connection config and return the connector's typed config."""
        payload = dict(raw or {})
        outcome = self.validate_config(payload)
        if outcome is not True:
            raise ConnectorConfigError(f"{self.metadata.name}: {outcome}")
        return self._build_config(payload)

    def _build_config(self, payload: Mapping[str, Any]) -> Any:
        return payload

    # Tabular interface -----------------------------------------------------------

    def search(self, token: str, query: str | None = None) -> List[SourceSearchResult]:
        raise ConnectorCapabilityError(f"Connector '{self.kind}' does not support search.")

    def get_tabs(self, token: str, config: Any) -> List[SourceTab]:
        raise NotImplementedError

    def get_raw_rows(self, token: str, config: Any, tab_name: str, max_rows: int = 20) -> SourceRawRows:
        raise NotImplementedError

    def get_data(self, token: str, config: Any, tab_name: str, header_row: int = 0) -> SourceData:
        raise NotImplementedError

    def get_preview(self, token: str, config: Any) -> SourcePreview:
        tabs = self.get_tabs(token, config)
        if not tabs:
            return SourcePreview(source_id=self.kind, title=self.metadata.name, tabs=[])
        first = tabs[0].title
        raw = self.get_raw_rows(token, config, first, 6)
        headers = raw.rows[0] if raw.rows else []
        return SourcePreview(
            source_id=self.kind,
            title=self.metadata.name,
            tabs=tabs,
            tab_name=first,
            headers=headers,
            rows=raw.rows[1:6],
        )

    def test_connection(self, token: str, config: Any) -> ConnectionTestResult:
        try:
            tabs = self.get_tabs(token, config)
        except (ConnectorError, requests.RequestException) as exc:
            return ConnectionTestResult(success=False, error=str(exc))
        return ConnectionTestResult(success=True, details={"tab_count": len(tabs)})

    # HTTP helpers ----------------------------------------------------------------

    def _auth_headers(self, token: str | None) -> Dict[str, str]:
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def _request(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` for an allowed 404)."""
        try:
            response = self.session.request(
                method,
                url,
                headers=self._auth_headers(token),
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ConnectorRequestError(f"{self.metadata.name} request failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            self.logger.warning(
                "%s request to %s failed with status %s",
                self.metadata.name,
                url,
                response.status_code,
                extra={"connector": self.kind, "status_code": response.status_code},
            )
            raise ConnectorRequestError(
                f"{self.metadata.name} request failed with status {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


class NonTabularConnector(BaseConnector):
    """Connector without tabs; tabular methods return empty results."""

    def get_tabs(self, token: str, config: Any) -> List[SourceTab]:
        return []

    def get_raw_rows(self, token: str, config: Any, tab_name: str, max_rows: int = 20) -> SourceRawRows:
        return SourceRawRows(rows=[], total_rows=0)

    def get_data(self, token: str, config: Any, tab_name: str, header_row: int = 0) -> SourceData:
        return SourceData(headers=[], rows=[])

    def test_connection(self, token: str, config: Any) -> ConnectionTestResult:
        raise NotImplementedError
