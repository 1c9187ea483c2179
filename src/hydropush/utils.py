from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from ulid import ULID

__all__ = ["now_utc", "ensure_utc", "format_instant", "to_user_local", "parse_hhmm",
           "generate_notification_id", "format_notification_time", "truncate_text"]


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """无时区的时间按 UTC 处理"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_instant(dt: datetime) -> str:
    """持久化用的时间格式: ISO-8601 UTC, 精确到毫秒, 例如 '2026-10-16T08:00:00.000Z'"""
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_user_local(dt: datetime, user_tz: str) -> datetime:
    return ensure_utc(dt).astimezone(ZoneInfo(user_tz))


def parse_hhmm(value: str) -> tuple[int, int]:
    """解析 'HH:MM'，分钟部分可省略"""
    parts = str(value).strip().split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 and parts[1] != "" else 0
    except ValueError:
        raise ValueError(f"无效的时间格式: {value}，预期格式为 HH:MM")
    if not (0 <= hour <= 23 and 0 <= minute <= 59) or len(parts) > 2:
        raise ValueError(f"无效的时间格式: {value}，预期格式为 HH:MM")
    return hour, minute


def generate_notification_id(prefix: str = "notif") -> str:
    return f"{prefix}_{ULID()}"


def format_notification_time(dt: datetime, now: datetime | None = None) -> str:
    """将通知时间格式化为相对描述"""
    now = now or now_utc()
    diff = ensure_utc(dt) - ensure_utc(now)

    if diff < timedelta(0):
        return "现在"
    if diff < timedelta(minutes=1):
        return "不到 1 分钟后"
    if diff < timedelta(hours=1):
        return f"{int(diff.total_seconds() // 60)} 分钟后"
    if diff < timedelta(days=1):
        return f"{int(diff.total_seconds() // 3600)} 小时后"
    return f"{diff.days} 天后"


def truncate_text(text: str, max_length: int) -> str:
    if not text or len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
