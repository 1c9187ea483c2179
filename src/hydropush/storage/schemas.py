"""持久化记录的结构定义

注意: 所有时间以 ISO-8601 UTC 字符串保存并精确到毫秒，例如 "2026-10-16T08:00:00.000Z"。
读取时兼容纯数字时间戳与不带时区的 ISO 字符串(按 UTC 处理)，并忽略未知字段。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from hydropush.datamodel import (
    HistoryEntry,
    LogEntry,
    LogLevel,
    NotificationStatus,
    NotificationType,
    ScheduledReminder,
)
from hydropush.utils import ensure_utc, format_instant


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ReminderRecord(_Record):
    id: str
    title: str
    body: str
    scheduled_time: datetime = Field(alias="scheduledTime")
    interval_minutes: Optional[int] = Field(
        default=None,
        gt=0,
        alias="intervalMinutes",
        validation_alias=AliasChoices("intervalMinutes", "interval"),
    )
    data: Optional[Dict[str, Any]] = None

    @field_validator("scheduled_time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("scheduled_time")
    def _serialize_time(self, v: datetime) -> str:
        return format_instant(v)

    @classmethod
    def from_reminder(cls, reminder: ScheduledReminder) -> "ReminderRecord":
        return cls(
            id=reminder.id,
            title=reminder.title,
            body=reminder.body,
            scheduled_time=reminder.scheduled_time,
            interval_minutes=reminder.interval_minutes,
            data=reminder.data,
        )

    def to_reminder(self) -> ScheduledReminder:
        return ScheduledReminder(
            id=self.id,
            title=self.title,
            body=self.body,
            scheduled_time=self.scheduled_time,
            interval_minutes=self.interval_minutes,
            data=self.data,
        )


class HistoryRecord(_Record):
    id: str
    type: NotificationType = NotificationType.PUSH
    title: str
    body: str
    sent_at: datetime = Field(alias="sentAt")
    status: NotificationStatus = NotificationStatus.SENT

    @field_validator("sent_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("sent_at")
    def _serialize_time(self, v: datetime) -> str:
        return format_instant(v)

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "HistoryRecord":
        return cls(
            id=entry.id,
            type=entry.type,
            title=entry.title,
            body=entry.body,
            sent_at=entry.sent_at,
            status=entry.status,
        )

    def to_entry(self) -> HistoryEntry:
        return HistoryEntry(
            id=self.id,
            type=self.type,
            title=self.title,
            body=self.body,
            sent_at=self.sent_at,
            status=self.status,
        )


class LogRecord(_Record):
    timestamp: datetime
    level: LogLevel
    message: str
    data: Any = None
    service: str = "NotificationService"

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("timestamp")
    def _serialize_time(self, v: datetime) -> str:
        return format_instant(v)

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "LogRecord":
        return cls(
            timestamp=entry.timestamp,
            level=entry.level,
            message=entry.message,
            data=entry.data,
            service=entry.service,
        )

    def to_entry(self) -> LogEntry:
        return LogEntry(
            timestamp=self.timestamp,
            level=self.level,
            message=self.message,
            data=self.data,
            service=self.service,
        )


def dump_record(record: _Record) -> dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = ["ReminderRecord", "HistoryRecord", "LogRecord", "dump_record"]
