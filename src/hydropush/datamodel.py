from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "NotificationType", "NotificationStatus", "LogLevel", "PermissionState",
    "ScheduledReminder", "HistoryEntry", "LogEntry",
    "RetryConfig", "QuietHours",
    "NotificationOptions", "ShowNotificationOptions",
    "ReminderIntent", "UnifiedNotificationOptions", "DeliveryResult",
    "UserSettings", "ReminderSettings",
]


# ----------------- 枚举 ----------------
class NotificationType(str, Enum):
    PUSH = "push"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"  # 尚未决定，包含宿主上报的 prompt 类子状态


# ----------------- Reminder 数据模型 ----------------
@dataclass
class ScheduledReminder:
    id: str
    title: str
    body: str
    scheduled_time: datetime  # UTC, 带时区
    interval_minutes: Optional[int] = None  # 存在时触发后重新入队，而不是删除
    data: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.interval_minutes is not None and self.interval_minutes <= 0:
            raise ValueError(f"interval_minutes 必须为正数: {self.interval_minutes}")

    @property
    def is_recurring(self) -> bool:
        return self.interval_minutes is not None


@dataclass
class HistoryEntry:
    id: str
    title: str
    body: str
    sent_at: datetime
    status: NotificationStatus = NotificationStatus.SENT
    type: NotificationType = NotificationType.PUSH


@dataclass
class LogEntry:
    timestamp: datetime
    level: LogLevel
    message: str
    data: Any = None
    service: str = "NotificationService"


# ----------------- 策略配置 ----------------
@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_multiplier: float = 2

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries 不能为负数")
        if self.initial_delay_ms <= 0:
            raise ValueError("initial_delay_ms 必须大于 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms 不能小于 initial_delay_ms")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier 不能小于 1")


@dataclass(frozen=True)
class QuietHours:
    start: str = "22:00"  # 格式: "HH:MM"
    end: str = "07:00"


# ----------------- 请求与结果 ----------------
@dataclass
class NotificationOptions:
    """schedule_notification 接受的简单三元组形式"""
    title: str
    body: str
    id: Optional[str] = None
    scheduled_time: Optional[datetime] = None


@dataclass
class ShowNotificationOptions:
    title: str
    body: str
    icon: Optional[str] = None
    tag: Optional[str] = None


@dataclass
class ReminderIntent:
    title: str
    body: str
    scheduled_time: Optional[datetime] = None
    data: Optional[Dict[str, Any]] = None
    interval_minutes: Optional[int] = None
    respect_quiet_hours: bool = True


@dataclass
class UnifiedNotificationOptions:
    title: str
    body: str
    send_push: bool = True
    scheduled_time: Optional[datetime] = None
    data: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    respect_quiet_hours: bool = True


@dataclass
class DeliveryResult:
    success: bool
    type: NotificationType = NotificationType.PUSH
    id: Optional[str] = None
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None  # 已排期(或因静默时段延后)时的目标时间


# ----------------- 设置(外部协作者持有) ----------------
@dataclass
class UserSettings:
    notifications: bool = False
    reminder_interval: int = 120  # 分钟
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    weekend_reminders: bool = True
    smart_reminders: bool = False


@dataclass
class ReminderSettings:
    enabled: bool
    interval: int  # 分钟
    quiet_hours_start: str  # 格式: "HH:MM"
    quiet_hours_end: str
    weekend_reminders: bool = True
    smart_reminders: bool = False
    force_reschedule: bool = False

    @classmethod
    def from_user_settings(cls, settings: UserSettings, force_reschedule: bool = False) -> "ReminderSettings":
        return cls(
            enabled=settings.notifications,
            interval=settings.reminder_interval,
            quiet_hours_start=settings.quiet_hours.start,
            quiet_hours_end=settings.quiet_hours.end,
            weekend_reminders=settings.weekend_reminders,
            smart_reminders=settings.smart_reminders,
            force_reschedule=force_reschedule,
        )
