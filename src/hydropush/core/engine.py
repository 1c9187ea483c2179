"""通知调度引擎

每个提醒 id 的状态: absent -> pending -> {触发一次 -> absent | 周期触发 -> pending(下一次)}，取消后回到 absent。

- 原生通道: 排期交给宿主，失败按 SCHEDULE_RETRY_CONFIG 重试，用尽后抛出最后一次的异常;
- 浏览器通道: 提醒存入 NotificationStore，由定时检查器(默认 60 秒一次)扫描到期条目并立即展示。

对 store 中提醒集合的读-改-写都在同一个同步片段内完成，中间没有 await，
因此检查器与用户发起的排期/取消交错执行时不会互相覆盖。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from hydropush.channels.base import (
    DeliveryChannel,
    NativeDeliveryChannel,
    NotificationPermissionError,
    WebDeliveryChannel,
)
from hydropush.core.retry import SCHEDULE_RETRY_CONFIG, SHOW_RETRY_CONFIG, RetryExecutor
from hydropush.datamodel import (
    HistoryEntry,
    NotificationOptions,
    NotificationStatus,
    PermissionState,
    ScheduledReminder,
    ShowNotificationOptions,
)
from hydropush.events import Bus, E
from hydropush.logger import logger
from hydropush.notification_logger import NotificationLogger
from hydropush.storage.notification_store import NotificationStore
from hydropush.utils import ensure_utc, format_instant, generate_notification_id, now_utc

_SERVICE = "NotificationService"

# 原生通道的立即展示实际上是一个 100 毫秒后的排期
NATIVE_SHOW_DELAY = timedelta(milliseconds=100)
DEFAULT_ICON = "/favicon.ico"


@dataclass
class EngineStartup:
    """initialize() 的结果，启动阶段的失败在这里可见，而不是只出现在日志里"""
    platform: str
    native: bool
    loaded_reminders: int = 0
    loaded_history: int = 0
    listeners_ready: bool = False
    push_registered: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SchedulingEngine:
    def __init__(
        self,
        channel: DeliveryChannel,
        store: NotificationStore,
        notification_logger: NotificationLogger,
        bus: Optional[Bus] = None,
        retry_executor: Optional[RetryExecutor] = None,
        platform: str = "web",
        clock: Callable[[], datetime] = now_utc,
        check_interval_seconds: float = 60,
    ):
        if check_interval_seconds <= 0:
            raise ValueError("check_interval_seconds 必须大于 0")
        self._channel = channel
        self._store = store
        self._log = notification_logger
        self._bus = bus or Bus()
        self._retry = retry_executor or RetryExecutor()
        self._platform = platform
        self._clock = clock
        self._check_interval_seconds = check_interval_seconds
        self._checker_task: asyncio.Task | None = None
        self._last_check_at: datetime | None = None
        self._initialized = False

    @property
    def is_native(self) -> bool:
        return self._channel.is_native

    @property
    def channel(self) -> DeliveryChannel:
        return self._channel

    @property
    def bus(self) -> Bus:
        return self._bus

    # ----------------- 启动 ----------------
    async def initialize(self) -> EngineStartup:
        startup = EngineStartup(platform=self._platform, native=self.is_native)
        startup.loaded_reminders, startup.loaded_history = self._store.load()
        self._log.info("通知服务已初始化", {"platform": self._platform, "channel": self._channel.kind}, _SERVICE)

        if isinstance(self._channel, NativeDeliveryChannel):
            try:
                await self._channel.add_listeners()
                startup.listeners_ready = True
                self._log.info("推送监听器已配置", service=_SERVICE)
            except Exception as e:
                startup.errors.append(f"add_listeners: {e}")
                self._log.error("配置推送监听器失败", e, _SERVICE)

            try:
                if await self._channel.check_permission() == PermissionState.GRANTED:
                    await self._channel.register()
                    startup.push_registered = True
                    self._log.info("启动时已自动注册推送", service=_SERVICE)
            except Exception as e:
                startup.errors.append(f"register: {e}")
                self._log.error("启动时自动注册推送失败", e, _SERVICE)

        self._initialized = True
        return startup

    # ----------------- 权限 ----------------
    async def check_permission(self) -> PermissionState:
        state = await self._channel.check_permission()
        self._log.debug("已检查通知权限", {"status": state.value}, _SERVICE)
        return state

    async def request_permission(self) -> PermissionState:
        self._log.info("正在请求通知权限", service=_SERVICE)
        state = await self._channel.request_permission()

        if state != PermissionState.GRANTED:
            self._log.warn("用户拒绝了通知权限", {"platform": self._platform}, _SERVICE)
            return state

        self._log.info("已获得通知权限", {"platform": self._platform}, _SERVICE)
        if isinstance(self._channel, NativeDeliveryChannel):
            try:
                await self._channel.register()
                self._log.info("已注册推送", service=_SERVICE)
            except Exception as e:
                self._log.error("注册推送失败", e, _SERVICE)
        return state

    def is_supported(self) -> bool:
        return self._channel.is_supported()

    @staticmethod
    def _is_retryable_error(error: Exception) -> bool:
        # 权限被拒绝是终态
        return not isinstance(error, NotificationPermissionError)

    # ----------------- 排期 ----------------
    def _normalize(self, spec: Union[ScheduledReminder, NotificationOptions]) -> ScheduledReminder:
        if isinstance(spec, ScheduledReminder):
            return replace(
                spec,
                id=spec.id or generate_notification_id("scheduled"),
                scheduled_time=ensure_utc(spec.scheduled_time),
            )
        return ScheduledReminder(
            id=spec.id or generate_notification_id("scheduled"),
            title=spec.title,
            body=spec.body,
            scheduled_time=ensure_utc(spec.scheduled_time) if spec.scheduled_time else self._clock(),
            data={},
        )

    async def schedule_notification(self, spec: Union[ScheduledReminder, NotificationOptions]) -> ScheduledReminder:
        """排期一个提醒，返回规范化后的提醒(包含分配的 id)

        原生通道重试用尽时抛出最后一次的异常。
        """
        reminder = self._normalize(spec)
        self._log.info("正在排期通知", {
            "id": reminder.id,
            "title": reminder.title,
            "scheduledTime": format_instant(reminder.scheduled_time),
        }, _SERVICE)

        if isinstance(self._channel, NativeDeliveryChannel):
            channel = self._channel

            async def action() -> None:
                await channel.schedule(
                    reminder.id,
                    reminder.title,
                    reminder.body,
                    reminder.scheduled_time,
                    reminder.data,
                    reminder.interval_minutes,
                )

            outcome = await self._retry.execute(action, SCHEDULE_RETRY_CONFIG, self._is_retryable_error)
            if not outcome.success:
                self._log.error("原生通知排期失败", {
                    "id": reminder.id,
                    "error": str(outcome.error),
                    "retriedCount": outcome.retried_count,
                }, _SERVICE)
                self._record_history(reminder.title, reminder.body, NotificationStatus.FAILED)
                self._bus.emit(E.NOTIFICATION_FAILED, reminder=reminder, error=outcome.error)
                raise outcome.error

            self._log.info("原生通知排期成功", {"id": reminder.id, "retriedCount": outcome.retried_count}, _SERVICE)
        else:
            self._store.upsert_reminder(reminder)
            self._log.info("浏览器通知已存入待触发列表", {"id": reminder.id}, _SERVICE)

        self._bus.emit(E.REMINDER_SCHEDULED, reminder=reminder)
        return reminder

    async def show_notification(self, options: ShowNotificationOptions) -> Optional[HistoryEntry]:
        """立即展示，成功时返回写入的历史记录

        浏览器通道在权限未授予时跳过展示并返回 None；投递异常写入 failed 历史后向上抛出。
        """
        self._log.info("正在展示通知", {"title": options.title}, _SERVICE)

        if isinstance(self._channel, NativeDeliveryChannel):
            channel = self._channel
            notification_id = generate_notification_id("show")

            async def action() -> None:
                await channel.schedule(
                    notification_id,
                    options.title,
                    options.body,
                    self._clock() + NATIVE_SHOW_DELAY,
                    None,
                )

            outcome = await self._retry.execute(action, SHOW_RETRY_CONFIG, self._is_retryable_error)
            if not outcome.success:
                self._log.error(f"原生通知展示失败 (已重试 {outcome.retried_count} 次)", outcome.error, _SERVICE)
                self._record_history(options.title, options.body, NotificationStatus.FAILED)
                self._bus.emit(E.NOTIFICATION_FAILED, options=options, error=outcome.error)
                raise outcome.error
            self._log.info("原生通知已提交", {"retriedCount": outcome.retried_count}, _SERVICE)

        elif isinstance(self._channel, WebDeliveryChannel):
            if await self._channel.check_permission() != PermissionState.GRANTED:
                self._log.warn("浏览器通知权限未授予, 已跳过展示", {"title": options.title}, _SERVICE)
                return None
            try:
                await self._channel.show(options.title, options.body, options.icon or DEFAULT_ICON, options.tag)
            except Exception as e:
                self._log.error("浏览器通知展示失败", e, _SERVICE)
                self._record_history(options.title, options.body, NotificationStatus.FAILED)
                self._bus.emit(E.NOTIFICATION_FAILED, options=options, error=e)
                raise
            self._log.info("浏览器通知已展示", service=_SERVICE)

        else:
            raise RuntimeError(f"不支持的通知通道: {type(self._channel).__name__}")

        entry = self._record_history(options.title, options.body, NotificationStatus.SENT)
        self._bus.emit(E.NOTIFICATION_SENT, options=options, entry=entry)
        return entry

    def _record_history(self, title: str, body: str, status: NotificationStatus) -> HistoryEntry:
        entry = HistoryEntry(
            id=generate_notification_id("push"),
            title=title,
            body=body,
            sent_at=self._clock(),
            status=status,
        )
        self._store.append_history(entry)
        return entry

    # ----------------- 浏览器定时检查 ----------------
    def start_checker(self) -> bool:
        """启动定时检查，原生通道不需要，返回是否真正启动"""
        if self.is_native:
            self._log.debug("原生平台无需定时检查", service=_SERVICE)
            return False

        if self._checker_task is not None and not self._checker_task.done():
            self._checker_task.cancel()

        self._checker_task = asyncio.get_running_loop().create_task(self._checker_loop())
        self._log.info("通知定时检查已启动", {"intervalSeconds": self._check_interval_seconds}, _SERVICE)
        return True

    async def stop_checker(self) -> None:
        task = self._checker_task
        self._checker_task = None
        if task is None or task.done():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._log.info("通知定时检查已停止", service=_SERVICE)

    @property
    def checker_running(self) -> bool:
        return self._checker_task is not None and not self._checker_task.done()

    async def _checker_loop(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval_seconds)
            try:
                await self.check_scheduled_notifications()
            except Exception as e:
                # 单次检查失败不终止循环
                logger.error(f"定时检查执行失败: {e}", exc_info=e)

    async def check_scheduled_notifications(self) -> int:
        """执行一次检查，返回本次触发的提醒数"""
        now = self._clock()
        self._last_check_at = now
        self._bus.emit(E.CHECKER_TICKED, at=now)

        # 同步完成整个集合的修改，之后才开始 await
        due: list[ScheduledReminder] = []
        for reminder in self._store.list_reminders():
            if ensure_utc(reminder.scheduled_time) > now:
                continue

            due.append(reminder)
            if reminder.interval_minutes:
                next_time = now + timedelta(minutes=reminder.interval_minutes)
                self._store.upsert_reminder(replace(reminder, scheduled_time=next_time), persist=False)
                self._log.debug("周期提醒已重新排期", {"id": reminder.id, "nextTime": format_instant(next_time)}, _SERVICE)
            else:
                self._store.remove_reminder(reminder.id, persist=False)
                self._log.debug("一次性提醒已移除", {"id": reminder.id}, _SERVICE)

        if not due:
            return 0

        self._store.persist_reminders()
        self._log.info(f"已触发 {len(due)} 条定时通知", service=_SERVICE)

        for reminder in due:
            self._log.debug("正在投递定时通知", {"id": reminder.id, "title": reminder.title}, _SERVICE)
            self._bus.emit(E.REMINDER_TRIGGERED, reminder=reminder)
            try:
                await self.show_notification(
                    ShowNotificationOptions(title=reminder.title, body=reminder.body, icon=DEFAULT_ICON, tag=reminder.id)
                )
            except Exception as e:
                self._log.error("定时通知投递失败", {"id": reminder.id, "error": str(e)}, _SERVICE)

        return len(due)

    # ----------------- 查询与取消 ----------------
    async def get_pending_notifications(self) -> List[ScheduledReminder]:
        if isinstance(self._channel, NativeDeliveryChannel):
            try:
                return await self._channel.list_pending()
            except Exception as e:
                self._log.error("获取原生待触发通知失败", e, _SERVICE)
                return []
        return self._store.list_reminders()

    async def cancel_all_notifications(self) -> int:
        self._log.info("正在取消全部通知", service=_SERVICE)

        if isinstance(self._channel, NativeDeliveryChannel):
            try:
                count = await self._channel.cancel_all()
            except Exception as e:
                self._log.error("取消原生通知失败", e, _SERVICE)
                return 0
            if count > 0:
                self._log.info(f"已取消 {count} 条原生通知", service=_SERVICE)
        else:
            count = self._store.clear_reminders()
            self._log.info(f"已清除 {count} 条浏览器通知", service=_SERVICE)

        if count > 0:
            self._bus.emit(E.REMINDER_CANCELLED, count=count)
        return count

    async def cancel_notification(self, reminder_id: str) -> bool:
        if isinstance(self._channel, NativeDeliveryChannel):
            pending = await self.get_pending_notifications()
            if not any(r.id == reminder_id for r in pending):
                return False
            await self._channel.cancel([reminder_id])
            removed = True
        else:
            removed = self._store.remove_reminder(reminder_id)

        if removed:
            self._log.info("已取消通知", {"id": reminder_id}, _SERVICE)
            self._bus.emit(E.REMINDER_CANCELLED, count=1)
        return removed

    # ----------------- 历史 ----------------
    def get_notification_history(self, limit: int = 10) -> List[HistoryEntry]:
        return self._store.list_history(limit)

    def clear_old_notifications(self, days_old: int = 7) -> int:
        return self._store.purge_history_older_than(days_old)

    def clear_history(self) -> None:
        self._store.clear_history()

    def get_status(self) -> dict[str, object]:
        return {
            "platform": self._platform,
            "channel": self._channel.kind,
            "native": self.is_native,
            "initialized": self._initialized,
            "checker_running": self.checker_running,
            "check_interval_seconds": self._check_interval_seconds,
            "last_check_at_utc": format_instant(self._last_check_at) if self._last_check_at else None,
            "pending_in_store": len(self._store.list_reminders()),
        }


__all__ = ["SchedulingEngine", "EngineStartup", "NATIVE_SHOW_DELAY"]
