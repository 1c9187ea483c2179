"""统一通知分发

UI 协作者只和这里打交道: 组装标题/正文/数据/时间，完成权限预检和静默时段处理后交给引擎。
引擎抛出的异常在这里转换为 DeliveryResult(success=False)，不会再向上传播。
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List

from hydropush.core.engine import SchedulingEngine
from hydropush.core.quiet_hours import adjust_out_of_window, is_appropriate_time
from hydropush.datamodel import (
    DeliveryResult,
    HistoryEntry,
    NotificationType,
    PermissionState,
    ReminderIntent,
    ScheduledReminder,
    ShowNotificationOptions,
    UnifiedNotificationOptions,
    UserSettings,
)
from hydropush.notification_logger import NotificationLogger
from hydropush.utils import ensure_utc, format_instant, generate_notification_id, now_utc, to_user_local

_SERVICE = "UnifiedService"

PERMISSION_NOT_GRANTED = "permission not granted"


class UnifiedDispatcher:
    def __init__(
        self,
        engine: SchedulingEngine,
        settings_provider: Callable[[], UserSettings],
        notification_logger: NotificationLogger,
        clock: Callable[[], datetime] = now_utc,
        user_timezone: str = "Asia/Shanghai",
    ):
        self._engine = engine
        self._settings_provider = settings_provider
        self._log = notification_logger
        self._clock = clock
        self._user_timezone = user_timezone

    def _resolve_quiet_hours(self, target: datetime) -> datetime:
        """落在静默时段内的目标时间延后到静默时段结束，按用户本地时间判断"""
        quiet = self._settings_provider().quiet_hours
        local = to_user_local(target, self._user_timezone)
        if is_appropriate_time(local, quiet.start, quiet.end):
            return target
        return ensure_utc(adjust_out_of_window(local, quiet.start, quiet.end))

    async def send_reminder(self, intent: ReminderIntent) -> DeliveryResult:
        try:
            permission = await self._engine.check_permission()
            if permission != PermissionState.GRANTED:
                self._log.warn("通知权限未授予", {"permission": permission.value}, _SERVICE)
                return DeliveryResult(success=False, error=PERMISSION_NOT_GRANTED)

            now = self._clock()
            target = ensure_utc(intent.scheduled_time) if intent.scheduled_time else None

            if intent.respect_quiet_hours:
                adjusted = self._resolve_quiet_hours(target or now)
                if adjusted != (target or now):
                    self._log.info("处于静默时段, 已延后到静默结束", {
                        "requested": format_instant(target or now),
                        "deferredTo": format_instant(adjusted),
                    }, _SERVICE)
                    target = adjusted

            if target is not None and target > now:
                reminder = await self._engine.schedule_notification(ScheduledReminder(
                    id=generate_notification_id("unified_push"),
                    title=intent.title,
                    body=intent.body,
                    scheduled_time=target,
                    interval_minutes=intent.interval_minutes,
                    data=intent.data,
                ))
                return DeliveryResult(success=True, id=reminder.id, sent_at=now, scheduled_for=target)

            entry = await self._engine.show_notification(
                ShowNotificationOptions(title=intent.title, body=intent.body, icon="/favicon.ico")
            )
            if entry is None:
                return DeliveryResult(success=False, error=PERMISSION_NOT_GRANTED)
            return DeliveryResult(success=True, id=entry.id, sent_at=entry.sent_at)

        except Exception as e:
            self._log.error("推送通知发送失败", e, _SERVICE)
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)

    async def send_notification(self, options: UnifiedNotificationOptions) -> List[DeliveryResult]:
        self._log.info("正在发送统一通知", {"title": options.title, "sendPush": options.send_push}, _SERVICE)

        results: List[DeliveryResult] = []
        if options.send_push:
            results.append(await self.send_reminder(ReminderIntent(
                title=options.title,
                body=options.body,
                scheduled_time=options.scheduled_time,
                data=options.data,
                respect_quiet_hours=options.respect_quiet_hours,
            )))

        successful = sum(1 for r in results if r.success)
        self._log.info("统一通知发送完成", {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
        }, _SERVICE)
        return results

    # ----------------- 便捷封装 ----------------
    async def send_hydration_reminder(self, current_intake: int, goal_intake: int) -> List[DeliveryResult]:
        settings = self._settings_provider()
        return await self.send_notification(UnifiedNotificationOptions(
            title="该喝水啦! 💧",
            body="记得补充水分，保持健康。",
            send_push=settings.notifications,
            data={"currentIntake": str(current_intake), "goalIntake": str(goal_intake)},
        ))

    async def send_daily_summary(self, total_intake: int, goal_intake: int, streak: int) -> List[DeliveryResult]:
        settings = self._settings_provider()
        percentage = round(total_intake / goal_intake * 100) if goal_intake > 0 else 0

        return await self.send_notification(UnifiedNotificationOptions(
            title="📊 今日饮水小结",
            body=f"今天已喝 {total_intake}ml / {goal_intake}ml ({percentage}%)",
            send_push=settings.notifications,
            data={
                "totalIntake": str(total_intake),
                "goalIntake": str(goal_intake),
                "percentage": str(percentage),
                "streak": str(streak),
            },
        ))

    async def send_achievement(self, achievement_name: str, achievement_description: str) -> List[DeliveryResult]:
        settings = self._settings_provider()
        return await self.send_notification(UnifiedNotificationOptions(
            title="🏆 恭喜! 解锁新成就",
            body=f"你解锁了: {achievement_name}",
            send_push=settings.notifications,
            data={"achievementName": achievement_name, "achievementDescription": achievement_description},
        ))

    def get_combined_history(self, limit: int = 10) -> List[HistoryEntry]:
        return self._engine.get_notification_history(limit)

    async def test_notifications(self) -> Dict[str, DeliveryResult]:
        self._log.info("正在执行通知测试", service=_SERVICE)

        results = await self.send_notification(UnifiedNotificationOptions(
            title="通知测试 🔔",
            body="这是一条来自 Hydropush 的测试通知，收到说明一切正常!",
            send_push=True,
            respect_quiet_hours=False,
        ))

        push = next(
            (r for r in results if r.type == NotificationType.PUSH),
            DeliveryResult(success=False, error="推送通知未发送"),
        )
        return {"push": push}


__all__ = ["UnifiedDispatcher", "PERMISSION_NOT_GRANTED"]
