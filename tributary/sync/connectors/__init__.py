"""Source connectors."""

from __future__ import annotations

from .base import (
    BaseConnector,
    ConnectionTestResult,
    ConnectorCapabilities,
    ConnectorMetadata,
    NonTabularConnector,
    SourceData,
    SourcePreview,
    SourceRawRows,
    SourceSearchResult,
    SourceTab,
)
from .bigquery import BigQueryConfig, BigQueryConnector
from .cache import StaleWhileRevalidateCache
from .google_sheets import GoogleSheetConfig, GoogleSheetsConnector
from .google_workspace import GoogleWorkspaceConfig, GoogleWorkspaceConnector
from .slack import SlackConnector
from .suptask import SupTaskConnector

# Built-in connector classes keyed by source kind, in registration order.
BUILTIN_CONNECTORS = {
    "google_sheet": GoogleSheetsConnector,
    "bigquery": BigQueryConnector,
    "slack": SlackConnector,
    "google_workspace": GoogleWorkspaceConnector,
    "suptask": SupTaskConnector,
}

__all__ = [
    "BUILTIN_CONNECTORS",
    "BaseConnector",
    "BigQueryConfig",
    "BigQueryConnector",
    "ConnectionTestResult",
    "ConnectorCapabilities",
    "ConnectorMetadata",
    "GoogleSheetConfig",
    "GoogleSheetsConnector",
    "GoogleWorkspaceConfig",
    "GoogleWorkspaceConnector",
    "NonTabularConnector",
    "SlackConnector",
    "SourceData",
    "SourcePreview",
    "SourceRawRows",
    "SourceSearchResult",
    "SourceTab",
    "StaleWhileRevalidateCache",
    "SupTaskConnector",
]
