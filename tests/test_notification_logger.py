import json

import pytest

from hydropush.datamodel import LogLevel
from hydropush.notification_logger import LOGS_KEY, NotificationLogger
from hydropush.storage.db_config import MemoryKeyValueBackend


def test_in_memory_buffer_is_capped_fifo(notification_logger):
    for i in range(120):
        notification_logger.info(f"m{i}")

    entries = notification_logger.get_all()
    assert len(entries) == 100
    assert entries[0].message == "m20"
    assert entries[-1].message == "m119"


def test_only_recent_tail_is_persisted(notification_logger, backend):
    for i in range(120):
        notification_logger.debug(f"m{i}")

    persisted = json.loads(backend.items[LOGS_KEY])
    assert len(persisted) == 50
    assert persisted[0]["message"] == "m70"
    assert persisted[-1]["message"] == "m119"
    assert persisted[-1]["timestamp"].endswith("Z")


def test_failing_backend_never_raises(failing_backend, clock):
    log = NotificationLogger(failing_backend, clock=clock)

    log.error("still fine", {"a": 1})

    assert [e.message for e in log.get_all()] == ["still fine"]


def test_filters_and_recent(notification_logger):
    notification_logger.info("a", service="Engine")
    notification_logger.warn("b")
    notification_logger.error("c", service="Engine")

    assert [e.message for e in notification_logger.get_by_level(LogLevel.WARN)] == ["b"]
    assert [e.message for e in notification_logger.get_by_level("ERROR")] == ["c"]
    assert [e.message for e in notification_logger.get_by_service("Engine")] == ["a", "c"]
    assert [e.message for e in notification_logger.get_recent(2)] == ["b", "c"]
    assert notification_logger.get_recent(0) == []


def test_exceptions_are_stored_as_plain_data(notification_logger):
    notification_logger.error("failed", RuntimeError("boom"))

    assert notification_logger.get_all()[0].data == {"error": "RuntimeError", "message": "boom"}


def test_export_as_text(notification_logger):
    notification_logger.info("hello", {"a": 1})
    notification_logger.warn("plain", service="UnifiedService")

    lines = notification_logger.export_as_text().split("\n")
    assert lines[0] == '[2026-10-16T04:00:00.000Z] [NotificationService] [INFO] hello | Data: {"a": 1}'
    assert lines[1] == "[2026-10-16T04:00:00.000Z] [UnifiedService] [WARN] plain"


def test_export_as_json(notification_logger):
    notification_logger.info("hello", {"a": 1})

    exported = json.loads(notification_logger.export_as_json())
    assert exported == [{
        "timestamp": "2026-10-16T04:00:00.000Z",
        "level": "INFO",
        "message": "hello",
        "data": {"a": 1},
        "service": "NotificationService",
    }]


def test_load_restores_persisted_tail(notification_logger, backend, clock):
    for i in range(60):
        notification_logger.info(f"m{i}")

    restored = NotificationLogger(backend, clock=clock)
    assert restored.load() == 50
    assert restored.get_all()[0].message == "m10"


def test_load_tolerates_corrupt_data(clock):
    backend = MemoryKeyValueBackend({LOGS_KEY: "[{\"level\": \"NOPE\"}, 5"})
    log = NotificationLogger(backend, clock=clock)

    assert log.load() == 0
    assert log.get_all() == []


def test_persistence_can_be_disabled(notification_logger, backend):
    notification_logger.set_persistence(False)
    notification_logger.info("not persisted")

    assert LOGS_KEY not in backend.items


def test_clear_removes_persisted_logs(notification_logger, backend):
    notification_logger.info("x")
    notification_logger.clear()

    assert notification_logger.get_all() == []
    assert LOGS_KEY not in backend.items


def test_set_max_logs(notification_logger):
    for i in range(10):
        notification_logger.info(f"m{i}")

    notification_logger.set_max_logs(3)
    assert [e.message for e in notification_logger.get_all()] == ["m7", "m8", "m9"]

    with pytest.raises(ValueError):
        notification_logger.set_max_logs(0)
