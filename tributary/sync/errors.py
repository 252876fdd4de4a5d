"""Exception hierarchy for connectors and the sync engine."""

from __future__ import annotations


class SyncEngineError(RuntimeError):
    """Base error for sync engine failures."""


class SyncConfigurationError(SyncEngineError):
    """Raised when tab/column configuration is missing or inconsistent."""


class SchemaDriftError(SyncConfigurationError):
    """Raised when the configured key column is absent from the live source header."""

    def __init__(self, column: str, headers) -> None:
        super().__init__(
            f"Key column '{column}' not found in source headers. "
            f"Available headers: {', '.join(h for h in headers if h) or 'none'}"
        )
        self.column = column


class SyncCancelledError(SyncEngineError):
    """Raised internally when a run observes its cancellation signal."""


class ConnectorError(RuntimeError):
    """Base error for connector failures."""


class ConnectorConfigError(ConnectorError):
    """Raised when a data source's connection configuration is invalid."""


class ConnectorCapabilityError(ConnectorError):
    """Raised when a caller uses an operation the connector does not support."""


class ConnectorRequestError(ConnectorError):
    """Raised when the remote API rejects or fails a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConnectorRegistrationError(ConnectorError):
    """Raised on duplicate registration or registration after the registry is frozen."""


class UnknownConnectorError(ConnectorError, LookupError):
    """Raised when no connector is registered for a source kind."""


class EntityFieldRegistryError(RuntimeError):
    """Raised when the entity field definitions cannot be loaded or validated."""
