"""进程内闹钟宿主(原生通道)

在桌面等原生宿主上，由本进程的事件循环充当闹钟子系统：
排期后按时触发展示，周期性的条目触发后自动按间隔重新挂起。
展示动作以 E.NOTIFICATION_DISPLAYED 事件发出，由宿主界面订阅。
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from hydropush.channels.base import NativeDeliveryChannel, NotificationPermissionError
from hydropush.datamodel import PermissionState, ScheduledReminder
from hydropush.events import Bus, E
from hydropush.logger import logger
from hydropush.utils import ensure_utc, now_utc


class LocalAlarmChannel(NativeDeliveryChannel):
    def __init__(
        self,
        bus: Bus,
        permission: str = "prompt",
        grant_on_request: bool = True,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._bus = bus
        self._permission = permission
        self._grant_on_request = grant_on_request
        self._clock = clock
        self._pending: Dict[str, ScheduledReminder] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._registered = False
        self._listening = False

    # ----------------- 权限 ----------------
    async def _query_permission(self) -> str:
        return self._permission

    async def _ask_permission(self) -> str:
        if self._permission in ("prompt", "default"):
            self._permission = "granted" if self._grant_on_request else "denied"
            logger.info(f"本地闹钟通道权限请求结果: {self._permission}")
        return self._permission

    async def register(self) -> None:
        self._registered = True
        logger.info("本地闹钟通道已注册推送")

    async def add_listeners(self) -> None:
        if self._listening:
            return
        self._bus.on(E.NOTIFICATION_DISPLAYED)(self._on_displayed)
        self._listening = True

    @staticmethod
    def _on_displayed(reminder: ScheduledReminder, **_) -> None:
        logger.info(f"💧 {reminder.title} - {reminder.body}")

    # ----------------- 排期 ----------------
    async def schedule(
        self,
        id: str,
        title: str,
        body: str,
        at_time: datetime,
        payload: Optional[Dict[str, Any]] = None,
        interval_minutes: Optional[int] = None,
    ) -> None:
        if self._permission != PermissionState.GRANTED.value:
            raise NotificationPermissionError(f"本地闹钟通道未获得通知权限: {self._permission}")

        reminder = ScheduledReminder(
            id=id,
            title=title,
            body=body,
            scheduled_time=ensure_utc(at_time),
            interval_minutes=interval_minutes,
            data=payload,
        )
        self._disarm(id)
        self._pending[id] = reminder
        self._arm(reminder)
        logger.trace(f"本地闹钟已排期: id={id}, at={reminder.scheduled_time.isoformat()}")

    def _arm(self, reminder: ScheduledReminder) -> None:
        loop = asyncio.get_running_loop()
        delay = max(0.0, (reminder.scheduled_time - self._clock()).total_seconds())
        self._timers[reminder.id] = loop.call_later(delay, self._fire, reminder.id)

    def _disarm(self, reminder_id: str) -> None:
        timer = self._timers.pop(reminder_id, None)
        if timer is not None:
            timer.cancel()

    def _fire(self, reminder_id: str) -> None:
        self._timers.pop(reminder_id, None)
        reminder = self._pending.get(reminder_id)
        if reminder is None:
            return

        self._bus.emit(E.NOTIFICATION_DISPLAYED, reminder=reminder)

        if reminder.interval_minutes:
            next_reminder = replace(reminder, scheduled_time=self._clock() + timedelta(minutes=reminder.interval_minutes))
            self._pending[reminder_id] = next_reminder
            self._arm(next_reminder)
        else:
            del self._pending[reminder_id]

    async def list_pending(self) -> List[ScheduledReminder]:
        return sorted(self._pending.values(), key=lambda r: r.scheduled_time)

    async def cancel(self, ids: List[str]) -> None:
        for reminder_id in ids:
            self._disarm(reminder_id)
            self._pending.pop(reminder_id, None)

    def get_status(self) -> dict[str, object]:
        return {
            "permission": self._permission,
            "registered": self._registered,
            "pending": len(self._pending),
        }

    def close(self) -> None:
        for reminder_id in list(self._timers):
            self._disarm(reminder_id)


__all__ = ["LocalAlarmChannel"]
