"""
一个简单的运行时指标收集类，统计提醒排期、投递成功/失败、检查器轮询等信息，供 Admin API 查看。
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from hydropush.events import Bus, E


@dataclass
class RuntimeMetrics:
    scheduled_count: int = 0
    triggered_count: int = 0
    sent_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    displayed_count: int = 0
    checker_tick_count: int = 0
    last_check_at: float | None = None

    def record_scheduled(self, **_) -> None:
        self.scheduled_count += 1

    def record_triggered(self, **_) -> None:
        self.triggered_count += 1

    def record_sent(self, **_) -> None:
        self.sent_count += 1

    def record_failed(self, **_) -> None:
        self.failed_count += 1

    def record_cancelled(self, count: int = 1, **_) -> None:
        self.cancelled_count += max(0, count)

    def record_displayed(self, **_) -> None:
        self.displayed_count += 1

    def record_checker_tick(self, **_) -> None:
        self.checker_tick_count += 1
        self.last_check_at = time.time()

    def bind(self, bus: Bus) -> None:
        """订阅引擎事件"""
        bus.on(E.REMINDER_SCHEDULED)(self.record_scheduled)
        bus.on(E.REMINDER_TRIGGERED)(self.record_triggered)
        bus.on(E.NOTIFICATION_SENT)(self.record_sent)
        bus.on(E.NOTIFICATION_FAILED)(self.record_failed)
        bus.on(E.REMINDER_CANCELLED)(self.record_cancelled)
        bus.on(E.NOTIFICATION_DISPLAYED)(self.record_displayed)
        bus.on(E.CHECKER_TICKED)(self.record_checker_tick)

    def snapshot(self) -> dict:
        attempted = self.sent_count + self.failed_count
        success_rate = round(self.sent_count / attempted, 4) if attempted > 0 else None

        return {
            "scheduled_count": self.scheduled_count,
            "triggered_count": self.triggered_count,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "success_rate": success_rate,
            "cancelled_count": self.cancelled_count,
            "displayed_count": self.displayed_count,
            "checker_tick_count": self.checker_tick_count,
            "last_check_at_epoch": self.last_check_at,
            "last_check_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_check_at))
                if self.last_check_at is not None
                else None
            ),
        }


__all__ = ["RuntimeMetrics"]
