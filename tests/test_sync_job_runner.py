"""
Sync job runner tests.

Guards against:
1. SyncLog rows left in 'running' or moved backwards
2. The incremental watermark advancing past a failed run
3. One connector's failure aborting a workspace fan-out
4. Runs hanging past their deadline
"""
from datetime import datetime, timedelta

import pytest

from bizos.connectors import meta_ads_connector
from bizos.connectors.errors import ConnectorError, ProviderAPIError, SyncTimeoutError
from bizos.connectors.meta_ads_connector import MetaAdsConnector
from bizos.connectors.shopify_connector import ShopifyConnector
from bizos.models.connector import Connector, SyncLog
from bizos.realtime.registry import ConnectionRegistry
from bizos.services.sync_job_runner import SyncJobRunner

from helpers import FakeClient, _run, make_connector_row, registry_with, shopify_order


def _runner(client, connector_cls=ShopifyConnector, **kwargs):
    return SyncJobRunner(registry=registry_with(connector_cls, client), **kwargs)


def _logs(db, connector_id):
    db.expire_all()
    return db.query(SyncLog).filter(SyncLog.connector_id == connector_id).order_by(SyncLog.started_at).all()


# ---------------------------------------------------------------------------
# Single connector
# ---------------------------------------------------------------------------

class TestSingleConnector:

    def test_first_run_is_full_and_completes(self, db):
        row = make_connector_row(db)
        client = FakeClient(collections={"orders": [shopify_order(1)]})

        summary = _run(_runner(client).sync_single_connector("ws_1", row.id))

        assert summary["status"] == "completed"
        assert summary["sync_type"] == "full"
        assert summary["records_processed"]["orders"] == 1

        [sync_log] = _logs(db, row.id)
        assert sync_log.status == "completed"
        assert sync_log.completed_at >= sync_log.started_at

        connector = db.get(Connector, row.id)
        assert connector.status == "active"
        assert connector.last_sync_status == "completed"
        assert connector.last_sync_at == sync_log.started_at
        assert connector.last_sync_error is None

    def test_second_run_is_incremental_from_watermark(self, db):
        row = make_connector_row(db)
        client = FakeClient()
        runner = _runner(client)
        _run(runner.sync_single_connector("ws_1", row.id))
        first_started = _logs(db, row.id)[0].started_at
        client.calls.clear()

        summary = _run(runner.sync_single_connector("ws_1", row.id))

        assert summary["sync_type"] == "incremental"
        assert client.calls
        assert all(params.created_at_min == first_started for _, params in client.calls)

    def test_stage_errors_fail_the_log_but_keep_the_watermark(self, db):
        watermark = datetime(2024, 1, 1)
        row = make_connector_row(db, status="active", last_sync_at=watermark)
        client = FakeClient(failures={"orders": ProviderAPIError("shopify", 500, "boom")})

        summary = _run(_runner(client).sync_single_connector("ws_1", row.id))

        assert summary["status"] == "failed"
        assert summary["errors"][0]["type"] == "order_sync_error"
        db.expire_all()
        connector = db.get(Connector, row.id)
        assert connector.status == "active"
        assert connector.last_sync_status == "failed"
        assert connector.last_sync_at == watermark
        assert "order_sync_error" in connector.last_sync_error

    def test_connection_failure_raises_and_marks_error(self, db):
        row = make_connector_row(db)
        client = FakeClient(connected=False)

        with pytest.raises(ConnectorError):
            _run(_runner(client).sync_single_connector("ws_1", row.id))

        [sync_log] = _logs(db, row.id)
        assert sync_log.status == "failed"
        assert sync_log.errors[0]["type"] == "sync_error"
        connector = db.get(Connector, row.id)
        assert connector.status == "error"
        assert connector.last_sync_at is None

    def test_deadline_exceeded(self, db):
        row = make_connector_row(db)
        client = FakeClient(delay=1.0)

        with pytest.raises(SyncTimeoutError):
            _run(_runner(client, timeout_seconds=0.05).sync_single_connector("ws_1", row.id))

        [sync_log] = _logs(db, row.id)
        assert sync_log.status == "failed"
        assert "deadline" in sync_log.errors[0]["message"]
        assert db.get(Connector, row.id).status == "error"

    def test_ineligible_connector_is_skipped(self, db):
        disabled = make_connector_row(db, is_enabled=False)
        pending = make_connector_row(db, status="pending")
        disconnected = make_connector_row(db, status="disconnected")

        runner = _runner(FakeClient())
        for row in (disabled, pending, disconnected):
            summary = _run(runner.sync_single_connector("ws_1", row.id))
            assert summary["status"] == "skipped"
            assert _logs(db, row.id) == []

    def test_failed_connector_is_retried_on_the_next_run(self, db):
        row = make_connector_row(db)
        client = FakeClient(collections={"orders": [shopify_order(1)]}, connected=False)
        runner = _runner(client)

        with pytest.raises(ConnectorError):
            _run(runner.sync_single_connector("ws_1", row.id))
        db.expire_all()
        assert db.get(Connector, row.id).status == "error"

        client.connected = True
        summary = _run(runner.sync_single_connector("ws_1", row.id))

        assert summary["status"] == "completed"
        assert summary["sync_type"] == "full"
        db.expire_all()
        connector = db.get(Connector, row.id)
        assert connector.status == "active"
        assert connector.last_sync_error is None
        assert [log.status for log in _logs(db, row.id)] == ["failed", "completed"]

    def test_error_connectors_are_picked_up_by_scheduled_runs(self, db):
        row = make_connector_row(db, status="error", last_sync_error="connection refused")

        summaries = _run(_runner(FakeClient()).sync_all_connectors())

        assert [(s["connector_id"], s["status"]) for s in summaries] == [(row.id, "completed")]

    def test_syncing_connector_is_skipped_until_its_deadline_passes(self, db):
        running = make_connector_row(db, status="syncing")
        abandoned = make_connector_row(db, status="syncing", updated_at=datetime.utcnow() - timedelta(hours=2))
        runner = _runner(FakeClient(), timeout_seconds=60)

        assert _run(runner.sync_single_connector("ws_1", running.id))["status"] == "skipped"
        assert _run(runner.sync_single_connector("ws_1", abandoned.id))["status"] == "completed"
        assert _logs(db, running.id) == []

    def test_wrong_workspace_is_skipped(self, db):
        row = make_connector_row(db, workspace_id="ws_other")
        summary = _run(_runner(FakeClient()).sync_single_connector("ws_1", row.id))
        assert summary["status"] == "skipped"

    def test_finished_log_is_never_rewritten(self, db):
        row = make_connector_row(db)
        sync_log = SyncLog(connector_id=row.id, workspace_id="ws_1", status="completed", sync_type="full")
        db.add(sync_log)
        db.commit()

        assert SyncJobRunner._finish_log(db, sync_log, "failed", None, None) is False
        db.expire_all()
        assert db.get(SyncLog, sync_log.id).status == "completed"

    def test_refreshed_token_is_persisted(self, db, monkeypatch):
        monkeypatch.setattr(meta_ads_connector.settings, "meta_app_id", "app_1")
        monkeypatch.setattr(meta_ads_connector.settings, "meta_app_secret", "secret_1")

        class ExchangingClient(FakeClient):
            async def exchange_token(self, app_id, app_secret):
                return {"access_token": "long_lived", "expires_in": 5184000}

        expiring = (datetime.utcnow() + timedelta(days=2)).isoformat()
        row = make_connector_row(db, type="meta_ads", credentials={
            "access_token": "short_lived", "ad_account_id": "987", "token_expires_at": expiring,
        })
        client = ExchangingClient(resources={"ad_account": {"id": "act_987", "name": "Acme"}})

        _run(_runner(client, connector_cls=MetaAdsConnector).sync_single_connector("ws_1", row.id))

        db.expire_all()
        stored = db.get(Connector, row.id).credentials
        assert stored["access_token"] == "long_lived"
        assert stored["ad_account_id"] == "987"


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

class TestFanOut:

    def test_one_failure_does_not_stop_the_workspace(self, db):
        good = make_connector_row(db, name="good")
        bad = make_connector_row(db, name="bad", credentials={"shop_domain": "x.myshopify.com"})
        other = make_connector_row(db, workspace_id="ws_2")

        summaries = _run(_runner(FakeClient()).sync_workspace_connectors("ws_1"))

        by_id = {s["connector_id"]: s for s in summaries}
        assert set(by_id) == {good.id, bad.id}
        assert by_id[good.id]["status"] == "completed"
        assert by_id[bad.id]["status"] == "failed"
        assert _logs(db, other.id) == []
        assert db.get(Connector, bad.id).status == "error"

    def test_sync_all_runs_every_workspace(self, db):
        a = make_connector_row(db, workspace_id="ws_a")
        b = make_connector_row(db, workspace_id="ws_b")
        make_connector_row(db, workspace_id="ws_c", is_enabled=False)

        summaries = _run(_runner(FakeClient(), max_parallel=2).sync_all_connectors())

        assert sorted(s["connector_id"] for s in summaries) == sorted([a.id, b.id])
        assert all(s["status"] == "completed" for s in summaries)

    def test_no_connectors(self, db):
        assert _run(_runner(FakeClient()).sync_all_connectors()) == []

    def test_outcomes_are_published(self, db):
        realtime = ConnectionRegistry()
        connection = realtime.register("ws_1")
        row = make_connector_row(db)

        _run(_runner(FakeClient(), realtime=realtime).sync_workspace_connectors("ws_1"))

        event = connection.queue.get_nowait()
        assert event.type == "sync.completed"
        assert event.data["connector_id"] == row.id
