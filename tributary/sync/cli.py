"""
CLI commands for the sync engine, mounted as ``flask sync``.
"""

from __future__ import annotations

import json
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from tributary.models import DataSource, SyncRun, SyncRunStatus, TabMapping, db
from tributary.utils.sync import is_sync_enabled

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .entity_fields import get_entity_field_registry
from .errors import ConnectorError, EntityFieldRegistryError, SyncEngineError
from .results import SyncOptions, SyncResult
from .runtime import SYNC_EXTENSION_KEY, get_connector_registry, get_sync_engine


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


@click.group(name="sync", invoke_without_command=True)
@click.pass_context
def sync_cli(ctx):
    """
    Source sync commands.

    Lists the registered connectors when invoked without a subcommand.
    """
    app = _load_app(ctx)
    if not is_sync_enabled(app):
        raise click.ClickException("Sync is disabled via SYNC_ENABLED=false. Enable it to run sync commands.")
    if ctx.invoked_subcommand is None:
        registry = get_connector_registry(app)
        if not len(registry):
            click.echo("No connectors registered.")
            return
        click.echo("Registered connectors:")
        for kind in registry.type_ids():
            click.echo(f"  - {kind}")


def get_disabled_sync_group() -> click.Group:
    """Return a minimal command group that informs the operator sync is disabled."""

    @click.group(name="sync", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Sync commands are unavailable because SYNC_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Sync Celery app is unavailable. Set SYNC_ENABLED=true and SYNC_WORKER_ENABLED=true "
            "before queueing runs or managing the worker."
        )
    return celery_app


def _format_result(result: SyncResult, *, label: str) -> str:
    stats = result.stats
    status = "cancelled" if result.cancelled else ("ok" if result.success else "failed")
    lines = [
        f"{label}: {status} (sync run {result.sync_run_id if result.sync_run_id is not None else 'n/a'}, "
        f"{result.duration_ms} ms)",
        f"  processed: {stats.rows_processed}",
        f"  created:   {stats.rows_created}",
        f"  updated:   {stats.rows_updated}",
        f"  skipped:   {stats.rows_skipped}",
    ]
    if stats.weekly_created or stats.weekly_updated:
        lines.append(f"  weekly:    {stats.weekly_created} created, {stats.weekly_updated} updated")
    if stats.errors:
        lines.append(f"  issues:    {len(stats.errors)}")
        for error in stats.errors[:20]:
            column = f" [{error.column}]" if error.column else ""
            lines.append(f"    row {error.row}{column} {error.severity}: {error.message}")
        if len(stats.errors) > 20:
            lines.append(f"    ... {len(stats.errors) - 20} more")
    if result.changes is not None:
        lines.append("  dry run: no entity writes were made")
    return "\n".join(lines)


def _sync_options(dry_run: bool, force_overwrite: bool, row_limit: Optional[int], triggered_by: Optional[str]):
    return SyncOptions(
        dry_run=dry_run,
        force_overwrite=force_overwrite,
        row_limit=row_limit,
        triggered_by=triggered_by or "cli",
    )


def _run_options(func):
    options = [
        click.option("--token", "-t", envvar="SYNC_SOURCE_TOKEN", default="", help="Access token passed to the connector."),
        click.option("--dry-run", is_flag=True, help="Compute changes without writing entities."),
        click.option("--force-overwrite", is_flag=True, help="Let reference-authority columns overwrite existing values."),
        click.option("--row-limit", type=click.IntRange(min=0), help="Only process the first N data rows."),
        click.option("--triggered-by", help="Recorded on the sync run and lineage entries (default: cli)."),
        click.option("--async", "run_async", is_flag=True, help="Queue the run on the Celery worker."),
        click.option("--json", "as_json", is_flag=True, help="Emit the result as JSON."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _enqueue(app, task_name: str, kwargs: dict) -> None:
    celery_app = _resolve_celery(app)
    try:
        async_result = celery_app.send_task(task_name, kwargs=kwargs, queue=DEFAULT_QUEUE_NAME)
    except Exception as exc:
        raise click.ClickException(f"Failed to enqueue {task_name}: {exc}") from exc
    app.logger.info("Sync task queued via CLI", extra={"sync_task": task_name, "sync_task_id": async_result.id})
    click.echo(json.dumps({"task_id": async_result.id, "task": task_name, "status": "queued"}))


@sync_cli.command("connectors")
@click.pass_context
def sync_connectors(ctx):
    """List registered connectors and their capabilities."""
    app = _load_app(ctx)
    registry = get_connector_registry(app)
    for connector in registry.get_all():
        metadata = connector.metadata
        capabilities = [name for name, enabled in vars(metadata.capabilities).items() if enabled]
        click.echo(f"{metadata.id:<18} {metadata.name:<20} {', '.join(capabilities) or '-'}")


@sync_cli.command("tab")
@click.argument("tab_mapping_id", type=int)
@_run_options
@click.pass_context
def sync_tab(ctx, tab_mapping_id, token, dry_run, force_overwrite, row_limit, triggered_by, run_async, as_json):
    """Sync one tab mapping."""
    app = _load_app(ctx)
    if run_async:
        _enqueue(
            app,
            "sync.tab",
            {
                "tab_mapping_id": tab_mapping_id,
                "token": token,
                "dry_run": dry_run,
                "force_overwrite": force_overwrite,
                "row_limit": row_limit,
                "triggered_by": triggered_by or "cli",
            },
        )
        return

    engine = get_sync_engine(app)
    try:
        result = engine.sync_tab(tab_mapping_id, token, _sync_options(dry_run, force_overwrite, row_limit, triggered_by))
    except (SyncEngineError, ConnectorError, EntityFieldRegistryError) as exc:
        raise click.ClickException(f"Sync of tab {tab_mapping_id} failed: {exc}") from exc

    if as_json:
        click.echo(json.dumps(result.as_dict(), indent=2, default=str))
    else:
        tab = db.session.get(TabMapping, tab_mapping_id)
        click.echo(_format_result(result, label=f"Tab '{tab.tab_name}'" if tab else f"Tab {tab_mapping_id}"))


@sync_cli.command("source")
@click.argument("data_source_id", type=int)
@_run_options
@click.pass_context
def sync_source(ctx, data_source_id, token, dry_run, force_overwrite, row_limit, triggered_by, run_async, as_json):
    """Sync every active tab of a data source."""
    app = _load_app(ctx)
    if run_async:
        _enqueue(
            app,
            "sync.source",
            {
                "data_source_id": data_source_id,
                "token": token,
                "dry_run": dry_run,
                "force_overwrite": force_overwrite,
                "row_limit": row_limit,
                "triggered_by": triggered_by or "cli",
            },
        )
        return

    engine = get_sync_engine(app)
    try:
        results = engine.sync_data_source(
            data_source_id, token, _sync_options(dry_run, force_overwrite, row_limit, triggered_by)
        )
    except (SyncEngineError, ConnectorError, EntityFieldRegistryError) as exc:
        raise click.ClickException(f"Sync of data source {data_source_id} failed: {exc}") from exc

    if as_json:
        click.echo(json.dumps([result.as_dict() for result in results], indent=2, default=str))
        return
    if not results:
        click.echo(f"Data source {data_source_id} has no active tabs.")
        return
    for result in results:
        click.echo(_format_result(result, label=f"Tab {result.tab_mapping_id}"))
    failed = sum(1 for result in results if not result.success)
    if failed:
        click.echo(f"{failed} of {len(results)} tabs did not complete.", err=True)


@sync_cli.command("runs")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1, max=500))
@click.option("--status", type=click.Choice([status.value for status in SyncRunStatus]), help="Filter by status.")
@click.pass_context
def sync_runs(ctx, limit: int, status: Optional[str]):
    """Show recent sync runs."""
    _load_app(ctx)
    query = db.session.query(SyncRun)
    if status:
        query = query.filter(SyncRun.status == SyncRunStatus(status))
    runs = query.order_by(SyncRun.id.desc()).limit(limit).all()
    if not runs:
        click.echo("No sync runs recorded.")
        return
    for run in runs:
        started = run.started_at.isoformat() if run.started_at else "-"
        dry = " (dry run)" if run.dry_run else ""
        click.echo(
            f"#{run.id} tab={run.tab_mapping_id} {run.status.value}{dry} started={started} "
            f"processed={run.rows_processed} created={run.rows_created} "
            f"updated={run.rows_updated} skipped={run.rows_skipped}"
        )
        if run.error_summary:
            click.echo(f"    error: {run.error_summary}")


@sync_cli.command("test-connection")
@click.argument("data_source_id", type=int)
@click.option("--token", "-t", envvar="SYNC_SOURCE_TOKEN", default="", help="Access token passed to the connector.")
@click.pass_context
def sync_test_connection(ctx, data_source_id: int, token: str):
    """Check that a data source is reachable with the given token."""
    app = _load_app(ctx)
    data_source = db.session.get(DataSource, data_source_id)
    if data_source is None:
        raise click.ClickException(f"Data source {data_source_id} not found.")
    registry = get_connector_registry(app)
    try:
        connector = registry.get(data_source.type)
        config = connector.parse_config(data_source.connection_config)
        outcome = connector.test_connection(token, config)
    except (ConnectorError, NotImplementedError) as exc:
        raise click.ClickException(f"Connection test for '{data_source.name}' failed: {exc}") from exc
    click.echo(json.dumps(outcome.as_dict(), indent=2, default=str))
    if not outcome.success:
        ctx.exit(1)


@sync_cli.command("fields")
@click.argument("entity", required=False)
@click.pass_context
def sync_fields(ctx, entity: Optional[str]):
    """Describe the entity field registry."""
    _load_app(ctx)
    registry = get_entity_field_registry()
    try:
        click.echo(registry.get_schema_description([entity] if entity else None))
    except EntityFieldRegistryError as exc:
        raise click.ClickException(str(exc)) from exc


@sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the sync background worker."""
    app = _load_app(ctx)
    state = app.extensions.get(SYNC_EXTENSION_KEY, {})
    if not state.get("worker_enabled") and not app.config.get("SYNC_WORKER_ENABLED"):
        click.echo("Warning: SYNC_WORKER_ENABLED is false; the worker will not be reachable.", err=True)


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting sync worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'sync.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))
