"""
Sync Celery tasks.

Each task builds a fresh engine from the Flask app it runs under and returns
``SyncResult.as_dict()`` payloads so results are JSON-serializable.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from .results import SyncOptions
from .runtime import get_sync_engine


@shared_task(name="sync.healthcheck", bind=True)
def sync_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask sync worker ping``."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


def _options(dry_run: bool, force_overwrite: bool, row_limit: int | None, triggered_by: str | None) -> SyncOptions:
    return SyncOptions(
        dry_run=dry_run,
        force_overwrite=force_overwrite,
        row_limit=row_limit,
        triggered_by=triggered_by or "worker",
    )


@shared_task(name="sync.tab", bind=True)
def run_sync_tab(
    self,
    *,
    tab_mapping_id: int,
    token: str = "",
    dry_run: bool = False,
    force_overwrite: bool = False,
    row_limit: int | None = None,
    triggered_by: str | None = None,
) -> dict[str, Any]:
    engine = get_sync_engine(current_app)
    result = engine.sync_tab(tab_mapping_id, token, _options(dry_run, force_overwrite, row_limit, triggered_by))
    current_app.logger.info(
        "Sync tab task finished",
        extra={"sync_task_id": self.request.id, "tab_mapping_id": tab_mapping_id, "sync_run_id": result.sync_run_id},
    )
    return dict(result.as_dict())


@shared_task(name="sync.source", bind=True)
def run_sync_source(
    self,
    *,
    data_source_id: int,
    token: str = "",
    dry_run: bool = False,
    force_overwrite: bool = False,
    row_limit: int | None = None,
    triggered_by: str | None = None,
) -> list[dict[str, Any]]:
    engine = get_sync_engine(current_app)
    results = engine.sync_data_source(data_source_id, token, _options(dry_run, force_overwrite, row_limit, triggered_by))
    current_app.logger.info(
        "Sync source task finished",
        extra={"sync_task_id": self.request.id, "data_source_id": data_source_id, "sync_tab_count": len(results)},
    )
    return [dict(result.as_dict()) for result in results]
