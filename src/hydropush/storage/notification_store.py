"""通知存储

维护两份集合:
1. 待触发的提醒: id -> ScheduledReminder, 持久化键 scheduled_notifications, 格式为 [[id, reminder], ...];
2. 发送历史: 最新在前的列表，持久化键 notification_history，超过上限时淘汰最旧的条目。

内存状态是会话期间的唯一可信来源；持久化失败只记录日志，不影响内存中的修改。
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from hydropush.datamodel import HistoryEntry, ScheduledReminder
from hydropush.notification_logger import NotificationLogger
from hydropush.storage.db_config import KeyValueBackend
from hydropush.storage.schemas import HistoryRecord, ReminderRecord, dump_record
from hydropush.utils import ensure_utc, now_utc

SCHEDULED_KEY = "scheduled_notifications"
HISTORY_KEY = "notification_history"

_SERVICE = "NotificationStore"


class NotificationStore:
    def __init__(
        self,
        backend: KeyValueBackend,
        notification_logger: NotificationLogger,
        max_history: int = 50,
        clock: Callable[[], datetime] = now_utc,
    ):
        if max_history <= 0:
            raise ValueError("max_history 必须大于 0")
        self._backend = backend
        self._log = notification_logger
        self._max_history = max_history
        self._clock = clock
        self._reminders: dict[str, ScheduledReminder] = {}
        self._history: list[HistoryEntry] = []  # 最新在前

    @property
    def max_history(self) -> int:
        return self._max_history

    # ----------------- 加载 ----------------
    def load(self) -> tuple[int, int]:
        """从存储加载两份集合，返回 (提醒数, 历史数)"""
        self._reminders = self._load_reminders()
        self._history = self._load_history()
        return len(self._reminders), len(self._history)

    def _read_list(self, key: str) -> list[Any] | None:
        try:
            raw = self._backend.get_item(key)
            if not raw:
                return []
            parsed = json.loads(raw)
            if not isinstance(parsed, list):
                raise ValueError(f"集合类型错误: {type(parsed).__name__}")
            return parsed
        except Exception as e:
            self._log.warn("无法加载已保存的集合, 已重置为空", {"key": key, "error": str(e)}, _SERVICE)
            return None

    def _load_reminders(self) -> dict[str, ScheduledReminder]:
        parsed = self._read_list(SCHEDULED_KEY)
        if not parsed:
            return {}

        reminders: dict[str, ScheduledReminder] = {}
        dropped = 0
        for item in parsed:
            try:
                if not isinstance(item, (list, tuple)) or len(item) != 2:
                    raise ValueError("条目必须是 [id, reminder] 二元组")
                reminder = ReminderRecord.model_validate(item[1]).to_reminder()
                # 以外层 id 为准
                reminder.id = str(item[0])
                reminders[reminder.id] = reminder
            except (ValidationError, ValueError, TypeError):
                dropped += 1

        if dropped:
            self._log.warn("已丢弃无法解析的待触发提醒", {"dropped": dropped}, _SERVICE)
        self._log.debug("已加载待触发提醒", {"count": len(reminders)}, _SERVICE)
        return reminders

    def _load_history(self) -> list[HistoryEntry]:
        parsed = self._read_list(HISTORY_KEY)
        if not parsed:
            return []

        history: list[HistoryEntry] = []
        dropped = 0
        for item in parsed:
            try:
                history.append(HistoryRecord.model_validate(item).to_entry())
            except ValidationError:
                dropped += 1

        if dropped:
            self._log.warn("已丢弃无法解析的历史记录", {"dropped": dropped}, _SERVICE)
        self._log.debug("已加载通知历史", {"count": len(history)}, _SERVICE)
        return history[: self._max_history]

    # ----------------- 提醒 ----------------
    def upsert_reminder(self, reminder: ScheduledReminder, persist: bool = True) -> None:
        self._reminders[reminder.id] = reminder
        if persist:
            self.persist_reminders()

    def remove_reminder(self, reminder_id: str, persist: bool = True) -> bool:
        removed = self._reminders.pop(reminder_id, None) is not None
        if removed and persist:
            self.persist_reminders()
        return removed

    def get_reminder(self, reminder_id: str) -> ScheduledReminder | None:
        return self._reminders.get(reminder_id)

    def list_reminders(self) -> list[ScheduledReminder]:
        return list(self._reminders.values())

    def clear_reminders(self) -> int:
        count = len(self._reminders)
        self._reminders.clear()
        self.persist_reminders()
        return count

    def persist_reminders(self) -> bool:
        try:
            payload = [[rid, dump_record(ReminderRecord.from_reminder(r))] for rid, r in self._reminders.items()]
            self._backend.set_item(SCHEDULED_KEY, json.dumps(payload, ensure_ascii=False))
            return True
        except Exception as e:
            self._log.warn("无法保存待触发提醒", {"error": str(e)}, _SERVICE)
            return False

    # ----------------- 历史 ----------------
    def append_history(self, entry: HistoryEntry) -> None:
        self._history.insert(0, entry)
        if len(self._history) > self._max_history:
            self._history = self._history[: self._max_history]
        self.persist_history()

    def list_history(self, limit: int = 10) -> list[HistoryEntry]:
        if limit <= 0:
            return []
        return self._history[:limit]

    def purge_history_older_than(self, days: int = 7) -> int:
        cutoff = self._clock() - timedelta(days=days)
        original_count = len(self._history)
        self._history = [entry for entry in self._history if ensure_utc(entry.sent_at) > cutoff]

        removed = original_count - len(self._history)
        if removed > 0:
            self.persist_history()
            self._log.info(f"已清理 {removed} 条过期通知", {"days": days}, _SERVICE)
        return removed

    def clear_history(self) -> None:
        self._history = []
        self.persist_history()
        self._log.info("已清空通知历史", service=_SERVICE)

    def persist_history(self) -> bool:
        try:
            payload = [dump_record(HistoryRecord.from_entry(entry)) for entry in self._history]
            self._backend.set_item(HISTORY_KEY, json.dumps(payload, ensure_ascii=False))
            return True
        except Exception as e:
            self._log.warn("无法保存通知历史", {"error": str(e)}, _SERVICE)
            return False

    def clear_all(self) -> None:
        """清空待触发提醒与历史，两份集合都写回存储"""
        self._reminders.clear()
        self._history = []
        self.persist_reminders()
        self.persist_history()
        self._log.info("已清空全部通知数据", service=_SERVICE)


__all__ = ["NotificationStore", "SCHEDULED_KEY", "HISTORY_KEY"]
