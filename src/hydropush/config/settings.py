import os
from dotenv import load_dotenv
from hydropush.logger import logger
load_dotenv()

__all__ = [
    "PLATFORM", "NATIVE_PERMISSION", "NATIVE_GRANT_ON_REQUEST",
    "DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "USER_TIMEZONE",
    "NOTIFICATION_CHECK_INTERVAL_SECONDS", "MAX_HISTORY", "MAX_LOGS", "PERSISTED_LOGS",
    "NOTIFICATIONS_ENABLED", "REMINDER_INTERVAL_MINUTES", "QUIET_HOURS_START", "QUIET_HOURS_END",
    "WEEKEND_REMINDERS", "SMART_REMINDERS",
    "WEB_CHANNEL_WS_PATH", "WEB_CHANNEL_WS_TOKEN", "WEB_CHANNEL_TIMEOUT_SECONDS",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} 不能小于 {minimum}: {value}, 已回退到 {default}")
        return default
    return value


def _parse_hhmm(name: str, default: str) -> str:
    raw = os.getenv(name, default).strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts) or int(parts[0]) > 23 or int(parts[1]) > 59:
        logger.warning(f"{name} 非法: {raw}, 预期格式为 HH:MM, 已回退到 {default}")
        return default
    return raw


# 宿主平台: android / ios / desktop 视为原生平台，其余按浏览器(web)处理
PLATFORM = os.getenv("HYDROPUSH_PLATFORM", "web").strip().lower()
if PLATFORM == "":
    logger.critical("HYDROPUSH_PLATFORM 不能为空")
    exit(0)

# 原生(本地闹钟)通道的初始权限: granted / denied / prompt
NATIVE_PERMISSION = os.getenv("NATIVE_PERMISSION", "prompt").strip().lower()
if NATIVE_PERMISSION not in ("granted", "denied", "prompt", "default"):
    logger.warning(f"NATIVE_PERMISSION 非法: {NATIVE_PERMISSION}, 已回退到 prompt")
    NATIVE_PERMISSION = "prompt"
NATIVE_GRANT_ON_REQUEST = _parse_bool("NATIVE_GRANT_ON_REQUEST", True)


# 存储与日志
DB_PATH = os.getenv("HYDROPUSH_DB_PATH", "data/hydropush.db")
LOG_FILE = os.getenv("HYDROPUSH_LOG_FILE", "logs/hydropush.log")
LOG_LEVEL = os.getenv("HYDROPUSH_LOG_LEVEL", "DEBUG").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("HYDROPUSH_CONSOLE_LOG_LEVEL", "INFO").strip().upper()

# 用户信息
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "Asia/Shanghai")


# 通知引擎
NOTIFICATION_CHECK_INTERVAL_SECONDS = _parse_int("NOTIFICATION_CHECK_INTERVAL_SECONDS", 60, minimum=1)
MAX_HISTORY = _parse_int("NOTIFICATION_MAX_HISTORY", 50, minimum=1)
MAX_LOGS = _parse_int("NOTIFICATION_MAX_LOGS", 100, minimum=1)
PERSISTED_LOGS = _parse_int("NOTIFICATION_PERSISTED_LOGS", 50, minimum=0)


# 默认用户提醒设置(设置表单由外部 UI 维护，这里只提供启动时的初始值)
NOTIFICATIONS_ENABLED = _parse_bool("NOTIFICATIONS_ENABLED", False)
REMINDER_INTERVAL_MINUTES = _parse_int("REMINDER_INTERVAL_MINUTES", 120, minimum=1)
QUIET_HOURS_START = _parse_hhmm("QUIET_HOURS_START", "22:00")
QUIET_HOURS_END = _parse_hhmm("QUIET_HOURS_END", "07:00")
WEEKEND_REMINDERS = _parse_bool("WEEKEND_REMINDERS", True)
SMART_REMINDERS = _parse_bool("SMART_REMINDERS", False)


# 浏览器通知通道 (WebSocket)
WEB_CHANNEL_WS_PATH = os.getenv("WEB_CHANNEL_WS_PATH", "/channels/web/ws")
WEB_CHANNEL_WS_TOKEN = os.getenv("WEB_CHANNEL_WS_TOKEN", "")
try:
    WEB_CHANNEL_TIMEOUT_SECONDS = float(os.getenv("WEB_CHANNEL_TIMEOUT_SECONDS", "30"))
except ValueError:
    WEB_CHANNEL_TIMEOUT_SECONDS = 30.0
    logger.warning("WEB_CHANNEL_TIMEOUT_SECONDS 非法, 已回退到 30 秒")


# Admin API
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18090, minimum=1)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
