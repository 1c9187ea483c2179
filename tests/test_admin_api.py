import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from hydropush.admin.app import create_app
from hydropush.admin.auth import AdminAuth
from hydropush.admin.schemas import RuntimeControl
from hydropush.core.context import build_context
from hydropush.core.retry import RetryExecutor
from hydropush.storage.db_config import MemoryKeyValueBackend

AUTH = {"Authorization": "Bearer secret"}


@pytest.fixture
def control():
    return RuntimeControl(shutdown_event=asyncio.Event(), started_at=time.time())


@pytest.fixture
def ctx(web_channel, clock, sleeper):
    return build_context(
        platform="web",
        backend=MemoryKeyValueBackend(),
        channel=web_channel,
        clock=clock,
        retry_executor=RetryExecutor(sleep=sleeper),
    )


@pytest.fixture
def client(ctx, control):
    return TestClient(create_app(ctx, control, AdminAuth("secret")))


def test_health_endpoints_need_no_auth(client):
    assert client.get("/healthz").text == "ok"
    assert client.get("/api/v1/health").json()["status"] == "ok"


def test_auth_is_enforced(client, ctx, control):
    assert client.get("/api/v1/status").status_code == 401
    assert client.get("/api/v1/status", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/v1/status", headers={"X-Hydropush-Token": "secret"}).status_code == 200

    unconfigured = TestClient(create_app(ctx, control, AdminAuth("")))
    assert unconfigured.get("/healthz").status_code == 200
    assert unconfigured.get("/api/v1/status", headers=AUTH).status_code == 503


def test_status(client):
    body = client.get("/api/v1/status", headers=AUTH).json()

    assert body["engine"]["platform"] == "web"
    assert body["channel"]["kind"] == "web"
    assert body["permission"] == "granted"
    assert body["runtime"]["sent_count"] == 0


def test_reminder_lifecycle(client):
    created = client.post(
        "/api/v1/reminders",
        json={"title": "喝水", "body": "下午提醒", "scheduled_time": "2026-10-16T08:00:00Z", "interval_minutes": 60},
        headers=AUTH,
    ).json()
    assert created["success"] is True
    assert created["scheduled_for"] == "2026-10-16T08:00:00.000Z"

    listed = client.get("/api/v1/reminders", headers=AUTH).json()
    assert listed["total"] == 1
    assert listed["items"][0]["scheduledTime"] == "2026-10-16T08:00:00.000Z"
    assert listed["items"][0]["intervalMinutes"] == 60

    assert client.delete("/api/v1/reminders/missing", headers=AUTH).status_code == 404
    assert client.delete(f"/api/v1/reminders/{created['id']}", headers=AUTH).json()["ok"] is True
    assert client.delete("/api/v1/reminders", headers=AUTH).json()["cancelled"] == 0


def test_invalid_reminder_is_rejected(client):
    assert client.post("/api/v1/reminders", json={"title": ""}, headers=AUTH).status_code == 422
    assert client.post("/api/v1/reminders", json={"title": "t", "interval_minutes": 0}, headers=AUTH).status_code == 422


def test_immediate_reminder_shows_and_records_history(client, web_channel):
    result = client.post("/api/v1/reminders", json={"title": "喝水", "body": "现在"}, headers=AUTH).json()

    assert result["success"] is True
    assert result["sent_at"] == "2026-10-16T04:00:00.000Z"
    assert web_channel.shown[0]["title"] == "喝水"

    history = client.get("/api/v1/history", headers=AUTH).json()["items"]
    assert history[0]["id"] == result["id"]
    assert history[0]["status"] == "sent"

    assert client.delete("/api/v1/history?older_than_days=-1", headers=AUTH).status_code == 400
    assert client.delete("/api/v1/history?older_than_days=7", headers=AUTH).json()["removed"] == 0
    assert client.delete("/api/v1/history", headers=AUTH).json()["removed"] == 1
    assert client.get("/api/v1/history", headers=AUTH).json()["items"] == []


def test_test_notification_endpoint(client, web_channel):
    body = client.post("/api/v1/notifications/test", headers=AUTH).json()

    assert body["push"]["success"] is True
    assert len(web_channel.shown) == 1


def test_logs_and_export(client, ctx):
    ctx.notification_logger.info("hello", service="UnifiedService")
    ctx.notification_logger.error("boom")

    errors = client.get("/api/v1/logs?level=error", headers=AUTH).json()["items"]
    assert [e["message"] for e in errors] == ["boom"]

    by_service = client.get("/api/v1/logs?service=UnifiedService", headers=AUTH).json()["items"]
    assert [e["message"] for e in by_service] == ["hello"]

    assert client.get("/api/v1/logs?level=verbose", headers=AUTH).status_code == 400

    text = client.get("/api/v1/logs/export?format=text", headers=AUTH).text
    assert "[UnifiedService] [INFO] hello" in text
    assert client.get("/api/v1/logs/export?format=json", headers=AUTH).json()[-1]["message"] == "boom"
    assert client.get("/api/v1/logs/export?format=xml", headers=AUTH).status_code == 400


def test_hydration_schedule(client, ctx):
    body = client.post("/api/v1/hydration/schedule", json={"enabled": True}, headers=AUTH).json()

    assert body == {"ok": True, "scheduled": 7}
    assert len(ctx.store.list_reminders()) == 7

    body = client.post("/api/v1/hydration/schedule", json={"enabled": False}, headers=AUTH).json()
    assert body["scheduled"] == 0
    assert ctx.store.list_reminders() == []


def test_shutdown_sets_event(client, control):
    body = client.post("/api/v1/admin/shutdown", json={"reason": "test"}, headers=AUTH).json()

    assert body["ok"] is True
    assert control.shutdown_event.is_set()
