"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

引擎在提醒生命周期的各个节点上发出事件，指标统计和宿主展示等协作者按需订阅。
总线由 AppContext 创建并注入，不再使用全局实例。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Any, Callable

from hydropush.logger import logger

Handler = Callable[..., Any]

# 事件名集中定义
class E:
    REMINDER_SCHEDULED = "reminder.scheduled"
    REMINDER_TRIGGERED = "reminder.triggered"
    REMINDER_CANCELLED = "reminder.cancelled"
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_DISPLAYED = "notification.displayed"  # 宿主实际展示(本地闹钟通道)
    CHECKER_TICKED = "checker.ticked"


class Bus(AsyncIOEventEmitter):
    def __init__(self) -> None:
        super().__init__()
        # 处理器抛出的异常只记录，不回传给 emit 的调用方
        super(Bus, self).on("error", self._log_handler_error)

    @staticmethod
    def _log_handler_error(error: Exception) -> None:
        logger.error(f"事件处理器执行失败: {error}", exc_info=error)

    def on(self, event: str) -> Callable[[Handler], Handler]:
        """注册事件处理器装饰器"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {getattr(handler, '__name__', handler)}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator


__all__ = ["Bus", "E"]
