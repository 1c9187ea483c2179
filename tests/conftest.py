from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from hydropush.channels.base import NativeDeliveryChannel, WebDeliveryChannel
from hydropush.core.engine import SchedulingEngine
from hydropush.core.retry import RetryExecutor
from hydropush.datamodel import ScheduledReminder
from hydropush.events import Bus
from hydropush.metrics import RuntimeMetrics
from hydropush.notification_logger import NotificationLogger
from hydropush.storage.db_config import MemoryKeyValueBackend
from hydropush.storage.notification_store import NotificationStore

# 2026-10-16 是周五，UTC 04:00 即上海时间 12:00
BASE_TIME = datetime(2026, 10, 16, 4, 0, tzinfo=timezone.utc)


class _FixedClock:
    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class _RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _FakeWebChannel(WebDeliveryChannel):
    def __init__(self, permission: str = "granted"):
        self.permission = permission
        self.fail_with: Optional[Exception] = None
        self.shown: list[dict] = []

    async def _query_permission(self):
        return self.permission

    async def _ask_permission(self):
        return self.permission

    async def show(self, title, body, icon=None, tag=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.shown.append({"title": title, "body": body, "icon": icon, "tag": tag})


class _FakeNativeChannel(NativeDeliveryChannel):
    def __init__(self, permission: str = "granted"):
        self.permission = permission
        self.failures_before_success = 0
        self.schedule_calls = 0
        self.pending: dict[str, ScheduledReminder] = {}
        self.registered = False
        self.listeners_added = False
        self.listener_error: Optional[Exception] = None

    async def _query_permission(self):
        return self.permission

    async def _ask_permission(self):
        return self.permission

    async def schedule(self, id, title, body, at_time, payload=None, interval_minutes=None):
        self.schedule_calls += 1
        if self.failures_before_success != 0:
            if self.failures_before_success > 0:
                self.failures_before_success -= 1
            raise RuntimeError(f"host unavailable ({self.schedule_calls})")
        self.pending[id] = ScheduledReminder(id, title, body, at_time, interval_minutes, payload)

    async def list_pending(self):
        return list(self.pending.values())

    async def cancel(self, ids):
        for reminder_id in ids:
            self.pending.pop(reminder_id, None)

    async def register(self):
        self.registered = True

    async def add_listeners(self):
        if self.listener_error is not None:
            raise self.listener_error
        self.listeners_added = True


class _FailingBackend(MemoryKeyValueBackend):
    def set_item(self, key, value):
        raise OSError("disk full")


@pytest.fixture
def clock():
    return _FixedClock()


@pytest.fixture
def sleeper():
    return _RecordingSleep()


@pytest.fixture
def backend():
    return MemoryKeyValueBackend()


@pytest.fixture
def failing_backend():
    return _FailingBackend()


@pytest.fixture
def notification_logger(backend, clock):
    return NotificationLogger(backend, clock=clock)


@pytest.fixture
def store(backend, notification_logger, clock):
    return NotificationStore(backend, notification_logger, clock=clock)


@pytest.fixture
def web_channel():
    return _FakeWebChannel()


@pytest.fixture
def native_channel():
    return _FakeNativeChannel()


@pytest.fixture
def bus():
    return Bus()


@pytest.fixture
def metrics(bus):
    m = RuntimeMetrics()
    m.bind(bus)
    return m


@pytest.fixture
def web_engine(web_channel, store, notification_logger, bus, sleeper, clock):
    return SchedulingEngine(
        web_channel, store, notification_logger, bus=bus,
        retry_executor=RetryExecutor(sleep=sleeper), platform="web", clock=clock,
    )


@pytest.fixture
def native_engine(native_channel, store, notification_logger, bus, sleeper, clock):
    return SchedulingEngine(
        native_channel, store, notification_logger, bus=bus,
        retry_executor=RetryExecutor(sleep=sleeper), platform="android", clock=clock,
    )
