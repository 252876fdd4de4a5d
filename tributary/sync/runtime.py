"""
Extension state helpers shared by the CLI, tasks and ``init_sync``.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from tributary.utils.sync import get_sync_connectors

from .engine import DEFAULT_BATCH_SIZE, SyncEngine
from .registry import ConnectorRegistry, build_connector_registry

SYNC_EXTENSION_KEY = "sync"


def ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        SYNC_EXTENSION_KEY,
        {
            "enabled": False,
            "connectors": (),
            "registry": None,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def get_connector_registry(app: Flask) -> ConnectorRegistry:
    """Return the frozen registry built at start-up, building it on first use."""
    state = ensure_extension_state(app)
    registry: ConnectorRegistry | None = state.get("registry")
    if registry is None:
        registry = build_connector_registry(get_sync_connectors(app), settings=app.config)
        state["registry"] = registry
        state["connectors"] = registry.type_ids()
    return registry


def get_sync_engine(app: Flask, **overrides: Any) -> SyncEngine:
    """Build a ``SyncEngine`` from the app's registry and ``SYNC_*`` settings."""
    options: dict[str, Any] = {
        "batch_size": app.config.get("SYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        "lineage_enabled": app.config.get("SYNC_LINEAGE_ENABLED", True),
    }
    options.update(overrides)
    return SyncEngine(get_connector_registry(app), **options)
