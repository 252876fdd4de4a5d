import json
from typing import Any, Dict

import pytest
from flask import Flask

from tributary.models import Partner, SyncRun, db
from tributary.sync import get_celery_app, init_sync
from tributary.sync.celery_app import DEFAULT_QUEUE_NAME

EAGER = {"task_always_eager": True, "task_eager_propagates": True}


def build_sync_app(tmp_path, **overrides) -> Flask:
    """
    Construct a minimal Flask app with sync enabled for worker tests.
    """
    app = Flask(__name__, instance_path=str(tmp_path / "instance"))
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        SYNC_ENABLED=True,
        SYNC_CONNECTORS=("google_sheet",),
        CELERY_SQLITE_PATH=str(tmp_path / "celery.sqlite"),
    )
    app.config.update(overrides)
    init_sync(app)
    return app


def test_celery_defaults_to_sqlite_transport(tmp_path):
    app = build_sync_app(tmp_path, SYNC_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert "celery.sqlite" in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert {"sync.healthcheck", "sync.tab", "sync.source"} <= set(celery_app.tasks.keys())


def test_celery_config_json_string_is_applied(tmp_path):
    app = build_sync_app(tmp_path, SYNC_WORKER_ENABLED=True, CELERY_CONFIG='{"task_time_limit": 42}')

    assert get_celery_app(app).conf.task_time_limit == 42


def test_celery_stays_dormant_without_worker_flag(tmp_path):
    app = build_sync_app(tmp_path)

    assert get_celery_app(app) is None
    result = app.test_cli_runner().invoke(args=["sync", "worker", "ping"])
    assert result.exit_code == 1
    assert "SYNC_WORKER_ENABLED" in result.output


def test_worker_ping_cli(tmp_path):
    app = build_sync_app(tmp_path, SYNC_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)

    result = app.test_cli_runner().invoke(args=["sync", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(tmp_path, monkeypatch):
    app = build_sync_app(tmp_path, SYNC_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)
    celery_app = get_celery_app(app)
    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    result = app.test_cli_runner().invoke(
        args=["sync", "worker", "run", "--loglevel", "debug", "--concurrency", "2", "--pool", "solo"]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == ["worker", "--loglevel", "debug", "-Q", "sync", "--concurrency", "2", "--pool", "solo"]


@pytest.fixture
def eager_celery(app, registry, tmp_path):
    app.config.update(
        SYNC_WORKER_ENABLED=True,
        CELERY_CONFIG=EAGER,
        CELERY_SQLITE_PATH=str(tmp_path / "celery.sqlite"),
    )
    app.extensions["sync"]["celery_app"] = None
    init_sync(app)
    app.extensions["sync"]["registry"] = registry
    yield get_celery_app(app)
    app.extensions["sync"]["celery_app"] = None


def test_tab_task_runs_the_engine(eager_celery, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["Brand Name", "Status"], ["Acme", "Active"]])
    tab_id = partner_tab.id
    db.session.commit()

    payload = eager_celery.tasks["sync.tab"].apply(kwargs={"tab_mapping_id": tab_id, "token": "worker-token"}).get()

    assert payload["success"] is True
    assert payload["stats"]["rows_created"] == 1
    assert fake_connector.calls[0][1] == "worker-token"
    assert db.session.query(Partner).filter_by(brand_name="Acme").one().status == "Active"
    assert db.session.get(SyncRun, payload["sync_run_id"]).triggered_by == "worker"


def test_source_task_returns_one_result_per_tab(eager_celery, partner_tab, fake_connector):
    fake_connector.set_tab("Partners", [["Brand Name"], ["Acme"], ["Beta"]])
    source_id = partner_tab.data_source_id
    db.session.commit()

    payload = eager_celery.tasks["sync.source"].apply(
        kwargs={"data_source_id": source_id, "dry_run": True, "triggered_by": "scheduler"}
    ).get()

    assert len(payload) == 1
    assert payload[0]["stats"]["rows_created"] == 2
    assert len(payload[0]["changes"]) == 2
    assert db.session.query(Partner).count() == 0


def test_cli_async_enqueues_task(runner, eager_celery, monkeypatch):
    sent: Dict[str, Any] = {}

    class FakeAsyncResult:
        id = "task-123"

    def fake_send_task(name, kwargs=None, queue=None):
        sent.update(name=name, kwargs=kwargs, queue=queue)
        return FakeAsyncResult()

    monkeypatch.setattr(eager_celery, "send_task", fake_send_task)

    result = runner.invoke(args=["sync", "tab", "7", "--async", "--dry-run", "--token", "abc"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"task_id": "task-123", "task": "sync.tab", "status": "queued"}
    assert sent["name"] == "sync.tab"
    assert sent["queue"] == "sync"
    assert sent["kwargs"]["tab_mapping_id"] == 7
    assert sent["kwargs"]["dry_run"] is True
    assert sent["kwargs"]["triggered_by"] == "cli"
