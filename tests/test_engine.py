import asyncio
import json
from datetime import timedelta

import pytest

from hydropush.channels.base import NotificationPermissionError
from hydropush.channels.local_alarm import LocalAlarmChannel
from hydropush.core.engine import NATIVE_SHOW_DELAY, SchedulingEngine
from hydropush.core.retry import RetryExecutor
from hydropush.datamodel import (
    HistoryEntry,
    NotificationOptions,
    NotificationStatus,
    PermissionState,
    ScheduledReminder,
    ShowNotificationOptions,
)
from hydropush.events import E
from hydropush.storage.notification_store import HISTORY_KEY, SCHEDULED_KEY
from hydropush.utils import format_instant


# ----------------- 浏览器通道 ----------------
@pytest.mark.asyncio
async def test_web_one_shot_fires_once_and_is_removed(web_engine, web_channel, store, backend, clock):
    reminder = await web_engine.schedule_notification(
        NotificationOptions(title="喝水", body="一次性", scheduled_time=clock() - timedelta(minutes=1))
    )
    assert reminder.id.startswith("scheduled_")
    assert store.get_reminder(reminder.id) is not None

    assert await web_engine.check_scheduled_notifications() == 1
    assert [s["title"] for s in web_channel.shown] == ["喝水"]
    assert web_channel.shown[0]["tag"] == reminder.id
    assert store.list_reminders() == []
    assert json.loads(backend.items[SCHEDULED_KEY]) == []

    assert await web_engine.check_scheduled_notifications() == 0
    assert len(web_channel.shown) == 1


@pytest.mark.asyncio
async def test_web_recurring_reminder_is_rescheduled(web_engine, web_channel, store, backend, clock):
    await web_engine.schedule_notification(
        ScheduledReminder("r1", "喝水", "每小时", clock() - timedelta(minutes=1), interval_minutes=60)
    )

    assert await web_engine.check_scheduled_notifications() == 1

    rescheduled = store.get_reminder("r1")
    assert rescheduled is not None
    assert rescheduled.scheduled_time == clock() + timedelta(minutes=60)
    persisted = json.loads(backend.items[SCHEDULED_KEY])
    assert persisted[0][1]["scheduledTime"] == format_instant(clock() + timedelta(minutes=60))
    assert persisted[0][1]["intervalMinutes"] == 60
    assert len(web_channel.shown) == 1


@pytest.mark.asyncio
async def test_future_reminders_are_not_dispatched(web_engine, web_channel, store, clock):
    await web_engine.schedule_notification(ScheduledReminder("later", "t", "b", clock() + timedelta(minutes=5)))

    assert await web_engine.check_scheduled_notifications() == 0
    assert web_channel.shown == []
    assert store.get_reminder("later") is not None


@pytest.mark.asyncio
async def test_cancel_all_with_three_pending_entries(web_engine, store, backend, clock, metrics):
    for i in range(3):
        await web_engine.schedule_notification(ScheduledReminder(f"r{i}", "t", "b", clock() + timedelta(hours=i + 1)))

    assert await web_engine.cancel_all_notifications() == 3
    assert await web_engine.get_pending_notifications() == []
    assert json.loads(backend.items[SCHEDULED_KEY]) == []
    assert metrics.cancelled_count == 3


@pytest.mark.asyncio
async def test_cancel_single_notification(web_engine, store, clock):
    await web_engine.schedule_notification(ScheduledReminder("a", "t", "b", clock() + timedelta(hours=1)))

    assert await web_engine.cancel_notification("a") is True
    assert await web_engine.cancel_notification("a") is False
    assert store.list_reminders() == []


@pytest.mark.asyncio
async def test_web_show_appends_sent_history(web_engine, web_channel, store, clock):
    entry = await web_engine.show_notification(ShowNotificationOptions(title="t", body="b"))

    assert entry is not None
    assert entry.status == NotificationStatus.SENT
    assert entry.sent_at == clock()
    assert web_channel.shown[0]["icon"] == "/favicon.ico"
    assert web_engine.get_notification_history(10) == [entry]


@pytest.mark.asyncio
async def test_web_show_without_permission_is_skipped(web_engine, web_channel, store):
    web_channel.permission = "denied"

    assert await web_engine.show_notification(ShowNotificationOptions(title="t", body="b")) is None
    assert web_channel.shown == []
    assert store.list_history() == []


@pytest.mark.asyncio
async def test_web_show_failure_records_failed_history_and_raises(web_engine, web_channel, store):
    web_channel.fail_with = RuntimeError("browser closed")

    with pytest.raises(RuntimeError, match="browser closed"):
        await web_engine.show_notification(ShowNotificationOptions(title="t", body="b"))

    assert store.list_history()[0].status == NotificationStatus.FAILED


@pytest.mark.asyncio
async def test_tick_survives_delivery_failures(web_engine, web_channel, store, clock, metrics):
    web_channel.fail_with = RuntimeError("browser closed")
    await web_engine.schedule_notification(ScheduledReminder("a", "t", "b", clock() - timedelta(seconds=1)))
    await web_engine.schedule_notification(ScheduledReminder("b", "t", "b", clock() - timedelta(seconds=1)))

    assert await web_engine.check_scheduled_notifications() == 2
    assert store.list_reminders() == []
    assert metrics.triggered_count == 2
    assert metrics.failed_count == 2
    assert metrics.checker_tick_count == 1


@pytest.mark.asyncio
async def test_tick_emits_lifecycle_events(web_engine, clock, metrics):
    await web_engine.schedule_notification(ScheduledReminder("a", "t", "b", clock()))
    await web_engine.check_scheduled_notifications()

    assert metrics.scheduled_count == 1
    assert metrics.triggered_count == 1
    assert metrics.sent_count == 1


@pytest.mark.asyncio
async def test_checker_only_runs_on_web(web_engine, native_engine):
    assert native_engine.start_checker() is False

    assert web_engine.start_checker() is True
    assert web_engine.checker_running
    await web_engine.stop_checker()
    assert not web_engine.checker_running


@pytest.mark.asyncio
async def test_checker_loop_dispatches_due_reminders(web_channel, store, notification_logger, clock):
    engine = SchedulingEngine(web_channel, store, notification_logger, clock=clock, check_interval_seconds=0.01)
    await engine.schedule_notification(ScheduledReminder("a", "t", "b", clock()))

    engine.start_checker()
    try:
        for _ in range(100):
            if web_channel.shown:
                break
            await asyncio.sleep(0.01)
    finally:
        await engine.stop_checker()

    assert len(web_channel.shown) == 1


@pytest.mark.asyncio
async def test_initialize_loads_persisted_state(web_engine, store, backend, clock):
    store.upsert_reminder(ScheduledReminder("a", "t", "b", clock()))
    store.append_history(HistoryEntry("h", "t", "b", clock()))

    startup = await web_engine.initialize()

    assert startup.loaded_reminders == 1
    assert startup.loaded_history == 1
    assert startup.native is False
    assert startup.ok


# ----------------- 原生通道 ----------------
@pytest.mark.asyncio
async def test_native_schedule_retries_then_succeeds(native_engine, native_channel, sleeper, store, clock):
    native_channel.failures_before_success = 2

    reminder = await native_engine.schedule_notification(
        ScheduledReminder("n1", "t", "b", clock() + timedelta(hours=1), interval_minutes=30)
    )

    assert native_channel.schedule_calls == 3
    assert sleeper.calls == [1.0, 2.0]
    assert native_channel.pending["n1"].interval_minutes == 30
    assert reminder.id == "n1"
    # 原生通道不写入本地待触发集合
    assert store.list_reminders() == []


@pytest.mark.asyncio
async def test_native_schedule_exhaustion_raises_last_error(native_engine, native_channel, sleeper, store, clock):
    native_channel.failures_before_success = -1

    with pytest.raises(RuntimeError, match=r"host unavailable \(4\)"):
        await native_engine.schedule_notification(NotificationOptions(title="t", body="b", scheduled_time=clock()))

    assert native_channel.schedule_calls == 4
    assert sleeper.calls == [1.0, 2.0, 4.0]
    assert store.list_history()[0].status == NotificationStatus.FAILED


@pytest.mark.asyncio
async def test_native_show_schedules_shortly_after_now(native_engine, native_channel, store, clock):
    entry = await native_engine.show_notification(ShowNotificationOptions(title="t", body="b"))

    pending = list(native_channel.pending.values())
    assert len(pending) == 1
    assert pending[0].scheduled_time == clock() + NATIVE_SHOW_DELAY
    assert entry.status == NotificationStatus.SENT
    assert store.list_history() == [entry]


@pytest.mark.asyncio
async def test_native_show_exhaustion_uses_show_retry_config(native_engine, native_channel, sleeper):
    native_channel.failures_before_success = -1

    with pytest.raises(RuntimeError):
        await native_engine.show_notification(ShowNotificationOptions(title="t", body="b"))

    assert native_channel.schedule_calls == 3
    assert sleeper.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_native_cancel_all_and_pending(native_engine, native_channel, clock):
    for i in range(3):
        await native_engine.schedule_notification(ScheduledReminder(f"n{i}", "t", "b", clock() + timedelta(hours=1)))

    assert len(await native_engine.get_pending_notifications()) == 3
    assert await native_engine.cancel_all_notifications() == 3
    assert native_channel.pending == {}
    assert await native_engine.cancel_all_notifications() == 0


@pytest.mark.asyncio
async def test_native_initialize_registers_when_already_granted(native_engine, native_channel):
    startup = await native_engine.initialize()

    assert startup.native is True
    assert startup.listeners_ready is True
    assert startup.push_registered is True
    assert native_channel.registered


@pytest.mark.asyncio
async def test_native_initialize_failures_are_reported_not_raised(native_engine, native_channel):
    native_channel.listener_error = RuntimeError("no bridge")
    native_channel.permission = "prompt"

    startup = await native_engine.initialize()

    assert startup.listeners_ready is False
    assert startup.push_registered is False
    assert startup.errors and "no bridge" in startup.errors[0]


@pytest.mark.asyncio
async def test_request_permission_registers_on_grant(native_engine, native_channel):
    assert await native_engine.request_permission() == PermissionState.GRANTED
    assert native_channel.registered

    native_channel.registered = False
    native_channel.permission = "prompt-with-rationale"
    assert await native_engine.check_permission() == PermissionState.DEFAULT
    assert await native_engine.request_permission() == PermissionState.DENIED
    assert not native_channel.registered


@pytest.mark.asyncio
async def test_history_maintenance(web_engine, store, backend, clock):
    store.append_history(HistoryEntry("old", "t", "b", clock() - timedelta(days=8)))
    store.append_history(HistoryEntry("new", "t", "b", clock()))

    assert web_engine.clear_old_notifications(7) == 1
    assert [e.id for e in web_engine.get_notification_history(10)] == ["new"]

    web_engine.clear_history()
    assert web_engine.get_notification_history(10) == []
    assert json.loads(backend.items[HISTORY_KEY]) == []


def test_bus_events_are_named_by_lifecycle_stage():
    assert E.REMINDER_SCHEDULED == "reminder.scheduled"
    assert E.NOTIFICATION_FAILED == "notification.failed"


@pytest.mark.asyncio
async def test_native_permission_denial_is_not_retried(bus, store, notification_logger, sleeper, clock):
    channel = LocalAlarmChannel(bus, permission="denied", clock=clock)
    engine = SchedulingEngine(
        channel, store, notification_logger, bus=bus,
        retry_executor=RetryExecutor(sleep=sleeper), platform="desktop", clock=clock,
    )

    with pytest.raises(NotificationPermissionError):
        await engine.schedule_notification(ScheduledReminder("n1", "t", "b", clock() + timedelta(hours=1)))
    assert sleeper.calls == []
    assert store.list_history()[0].status == NotificationStatus.FAILED

    with pytest.raises(NotificationPermissionError):
        await engine.show_notification(ShowNotificationOptions(title="t", body="b"))
    assert sleeper.calls == []
    assert await channel.list_pending() == []
