"""
Connector registry.

A registry is built once at process start (``build_connector_registry``),
frozen, and injected into the sync engine. Lookups fail loudly for unknown
kinds and registration fails for duplicates so one implementation can never
silently shadow another.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .connectors import BUILTIN_CONNECTORS, BaseConnector
from .connectors.base import DEFAULT_TIMEOUT_SECONDS
from .errors import ConnectorRegistrationError, UnknownConnectorError


class ConnectorRegistry:
    """Map of source kind to connector instance."""

    def __init__(self, connectors: Iterable[BaseConnector] = ()) -> None:
        self._connectors: "OrderedDict[str, BaseConnector]" = OrderedDict()
        self._frozen = False
        for connector in connectors:
            self.register(connector)

    def register(self, connector: BaseConnector) -> None:
        kind = connector.metadata.id
        if self._frozen:
            raise ConnectorRegistrationError(
                f"Cannot register connector '{kind}'; the registry is frozen after start-up."
            )
        if kind in self._connectors:
            raise ConnectorRegistrationError(f"Connector '{kind}' is already registered")
        self._connectors[kind] = connector

    def freeze(self) -> "ConnectorRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, kind: str) -> BaseConnector:
        try:
            return self._connectors[kind]
        except KeyError:
            raise UnknownConnectorError(f"Connector '{kind}' is not registered") from None

    def has(self, kind: str) -> bool:
        return kind in self._connectors

    def get_all(self, enabled_only: bool = False) -> List[BaseConnector]:
        connectors = list(self._connectors.values())
        if enabled_only:
            connectors = [connector for connector in connectors if connector.metadata.enabled]
        return connectors

    def type_ids(self) -> Tuple[str, ...]:
        return tuple(self._connectors)

    def __contains__(self, kind: object) -> bool:
        return kind in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)


def resolve_connector_kinds(configured: Sequence[str]) -> Tuple[str, ...]:
    """
    Validate configured connector kinds against the built-ins, raising on unknowns.

    An empty selection enables every built-in connector.
    """
    if not configured:
        return tuple(BUILTIN_CONNECTORS)
    unknown = sorted({kind for kind in configured if kind not in BUILTIN_CONNECTORS})
    if unknown:
        raise ValueError(
            "Unknown sync connectors configured: "
            + ", ".join(unknown)
            + ". Update SYNC_CONNECTORS or register these connectors first."
        )
    return tuple(configured)


def describe_connectors(registry: ConnectorRegistry) -> List[Dict[str, Any]]:
    return [connector.metadata.as_dict() for connector in registry.get_all()]


def build_connector_registry(
    configured: Sequence[str] = (),
    *,
    settings: Mapping[str, Any] | None = None,
) -> ConnectorRegistry:
    """Instantiate the configured built-in connectors and return a frozen registry."""
    settings = settings or {}
    timeout = float(settings.get("SYNC_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
    cache_kwargs = {
        "cache_fresh_seconds": float(settings.get("SYNC_CACHE_FRESH_SECONDS", 600)),
        "cache_stale_seconds": float(settings.get("SYNC_CACHE_STALE_SECONDS", 1200)),
    }

    registry = ConnectorRegistry()
    for kind in resolve_connector_kinds(configured):
        connector_class = BUILTIN_CONNECTORS[kind]
        kwargs: Dict[str, Any] = {"timeout": timeout}
        if kind in {"slack", "google_workspace"}:
            kwargs.update(cache_kwargs)
        registry.register(connector_class(**kwargs))
    return registry.freeze()
