"""通知结构化日志

在内存中维护一个有界的环形缓冲区(默认 100 条)，每次写入后把最近的若干条(默认 50 条)
持久化到存储后端，同时镜像输出到进程日志(loguru)。
该日志仅用于诊断，任何情况下都不会抛出异常影响调用方。
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from hydropush.datamodel import LogEntry, LogLevel
from hydropush.logger import bind_service, logger
from hydropush.storage.db_config import KeyValueBackend
from hydropush.storage.schemas import LogRecord, dump_record
from hydropush.utils import format_instant, now_utc, truncate_text

LOGS_KEY = "notification_logs"
DEFAULT_SERVICE = "NotificationService"

_LOGURU_LEVEL = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARN: "WARNING",
    LogLevel.ERROR: "ERROR",
}


def _json_safe(data: Any) -> Any:
    """把任意数据转换为可 JSON 序列化的结构，异常等对象转为字符串"""
    if data is None:
        return None
    if isinstance(data, BaseException):
        return {"error": type(data).__name__, "message": str(data)}
    try:
        return json.loads(json.dumps(data, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return str(data)


class NotificationLogger:
    def __init__(
        self,
        backend: KeyValueBackend | None = None,
        max_logs: int = 100,
        persisted_logs: int = 50,
        persist: bool = True,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._backend = backend
        self._max_logs = max_logs
        self._persisted_logs = persisted_logs
        self._persist = persist and backend is not None
        self._clock = clock
        self._logs: list[LogEntry] = []

    # ----------------- 写入 ----------------
    def debug(self, message: str, data: Any = None, service: str = DEFAULT_SERVICE) -> None:
        self.log(LogLevel.DEBUG, message, data, service)

    def info(self, message: str, data: Any = None, service: str = DEFAULT_SERVICE) -> None:
        self.log(LogLevel.INFO, message, data, service)

    def warn(self, message: str, data: Any = None, service: str = DEFAULT_SERVICE) -> None:
        self.log(LogLevel.WARN, message, data, service)

    def error(self, message: str, data: Any = None, service: str = DEFAULT_SERVICE) -> None:
        self.log(LogLevel.ERROR, message, data, service)

    def log(self, level: LogLevel | str, message: str, data: Any = None, service: str = DEFAULT_SERVICE) -> None:
        try:
            entry = LogEntry(
                timestamp=self._clock(),
                level=LogLevel(level),
                message=str(message),
                data=_json_safe(data),
                service=service or DEFAULT_SERVICE,
            )
        except ValueError as e:
            logger.warning(f"[通知日志] 无效的日志级别 {level!r}: {e}")
            return

        self._logs.append(entry)
        if len(self._logs) > self._max_logs:
            self._logs = self._logs[-self._max_logs:]

        if self._persist:
            self._save()

        self._mirror(entry)

    def _mirror(self, entry: LogEntry) -> None:
        suffix = f" | {json.dumps(entry.data, ensure_ascii=False)}" if entry.data is not None else ""
        try:
            bind_service(entry.service).opt(depth=2).log(_LOGURU_LEVEL[entry.level], f"{entry.message}{suffix}")
        except Exception as e:
            print(f"[通知日志] 无法输出到进程日志: {e}")

    # ----------------- 持久化 ----------------
    def _save(self) -> None:
        tail = self._logs[-self._persisted_logs:] if self._persisted_logs > 0 else []
        try:
            payload = [dump_record(LogRecord.from_entry(entry)) for entry in tail]
            self._backend.set_item(LOGS_KEY, json.dumps(payload, ensure_ascii=False))
        except Exception as e:
            logger.warning(f"[通知日志] 无法保存日志: {e}")

    def load(self) -> int:
        """从存储加载日志，返回加载条数。损坏的集合整体丢弃，损坏的条目单独丢弃"""
        if self._backend is None:
            return 0
        try:
            raw = self._backend.get_item(LOGS_KEY)
            if not raw:
                return 0
            parsed = json.loads(raw)
            if not isinstance(parsed, list):
                raise ValueError(f"日志集合类型错误: {type(parsed).__name__}")
        except Exception as e:
            logger.warning(f"[通知日志] 无法加载日志, 已重置为空: {e}")
            self._logs = []
            return 0

        loaded: list[LogEntry] = []
        for item in parsed:
            try:
                loaded.append(LogRecord.model_validate(item).to_entry())
            except ValidationError:
                logger.warning(f"[通知日志] 丢弃无法解析的日志条目: {truncate_text(str(item), 200)}")
        self._logs = loaded[-self._max_logs:]
        return len(self._logs)

    # ----------------- 查询 ----------------
    def get_all(self) -> list[LogEntry]:
        return list(self._logs)

    def get_by_level(self, level: LogLevel | str) -> list[LogEntry]:
        level = LogLevel(level)
        return [entry for entry in self._logs if entry.level == level]

    def get_by_service(self, service: str) -> list[LogEntry]:
        return [entry for entry in self._logs if entry.service == service]

    def get_recent(self, count: int = 10) -> list[LogEntry]:
        if count <= 0:
            return []
        return self._logs[-count:]

    def clear(self) -> None:
        self._logs = []
        if self._backend is None:
            return
        try:
            self._backend.remove_item(LOGS_KEY)
        except Exception as e:
            logger.warning(f"[通知日志] 无法清除已保存的日志: {e}")

    # ----------------- 导出 ----------------
    def export_as_json(self) -> str:
        return json.dumps(
            [dump_record(LogRecord.from_entry(entry)) for entry in self._logs],
            ensure_ascii=False,
            indent=2,
        )

    def export_as_text(self) -> str:
        lines = []
        for entry in self._logs:
            data_str = f" | Data: {json.dumps(entry.data, ensure_ascii=False)}" if entry.data is not None else ""
            lines.append(
                f"[{format_instant(entry.timestamp)}] [{entry.service}] [{entry.level.value}] {entry.message}{data_str}"
            )
        return "\n".join(lines)

    # ----------------- 配置 ----------------
    def set_persistence(self, enabled: bool) -> None:
        self._persist = enabled and self._backend is not None

    def set_max_logs(self, max_logs: int) -> None:
        if max_logs <= 0:
            raise ValueError("max_logs 必须大于 0")
        self._max_logs = max_logs
        if len(self._logs) > max_logs:
            self._logs = self._logs[-max_logs:]

    @property
    def max_logs(self) -> int:
        return self._max_logs


__all__ = ["NotificationLogger", "LOGS_KEY"]
