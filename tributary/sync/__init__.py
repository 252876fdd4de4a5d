"""
Sync feature package.

``init_sync`` builds the connector registry once, stores it in
``app.extensions['sync']`` and mounts either the live or the disabled CLI
group depending on ``SYNC_ENABLED``.
"""

from __future__ import annotations

from flask import Flask

from tributary.utils.sync import get_sync_connectors, is_sync_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_sync_group, sync_cli
from .engine import SyncEngine
from .registry import ConnectorRegistry, build_connector_registry
from .results import SyncError, SyncOptions, SyncResult, SyncStats
from .runtime import SYNC_EXTENSION_KEY, ensure_extension_state, get_connector_registry, get_sync_engine

__all__ = [
    "init_sync",
    "SYNC_EXTENSION_KEY",
    "ConnectorRegistry",
    "SyncEngine",
    "SyncError",
    "SyncOptions",
    "SyncResult",
    "SyncStats",
    "get_celery_app",
    "get_connector_registry",
    "get_sync_engine",
]


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = sync_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(sync_cli)
    else:
        app.cli.add_command(get_disabled_sync_group())


def init_sync(app: Flask) -> None:
    """
    Build the connector registry and mount the sync CLI based on configuration.

    Unknown connector kinds in ``SYNC_CONNECTORS`` raise ``ValueError`` here so
    misconfiguration surfaces at start-up rather than on the first run.
    """
    enabled = is_sync_enabled(app)
    worker_enabled = bool(app.config.get("SYNC_WORKER_ENABLED", False))
    state = ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": worker_enabled})

    if not enabled:
        state.update({"registry": None, "connectors": ()})
        _set_cli(app, enabled=False)
        app.logger.info("Sync disabled via SYNC_ENABLED flag; skipping registration.")
        return

    registry = build_connector_registry(get_sync_connectors(app), settings=app.config)
    state.update({"registry": registry, "connectors": registry.type_ids()})
    if worker_enabled:
        ensure_celery_app(app, state)
    _set_cli(app, enabled=True)

    app.logger.info("Sync enabled with connectors: %s", ", ".join(registry.type_ids()) or "none")
