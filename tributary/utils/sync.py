"""
Utility helpers for sync feature flag checks.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_sync_enabled(app=None) -> bool:
    """Return True when the sync feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("SYNC_ENABLED", False))


def get_sync_connectors(app=None) -> Tuple[str, ...]:
    """Return the configured connector kinds (empty means every built-in)."""
    config = _get_config(app)
    connectors: Iterable[str] = config.get("SYNC_CONNECTORS", ())
    return tuple(connectors)
