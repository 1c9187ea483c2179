"""饮水提醒排期

根据用户设置生成未来 24 小时内的一组一次性提醒:
以上一次喝水时间(没有则为现在) + 间隔为起点，跳过已过去的时间点，
落在静默时段内的时间点移到静默结束(精确到分钟)，最多 48 条。
已存在未来的饮水提醒时保持现有排期，除非 force_reschedule。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from hydropush.core.engine import SchedulingEngine
from hydropush.core.quiet_hours import adjust_out_of_window, is_within_quiet_window
from hydropush.datamodel import PermissionState, ReminderSettings, ScheduledReminder, ShowNotificationOptions
from hydropush.logger import logger
from hydropush.utils import ensure_utc, format_notification_time, now_utc, to_user_local

HYDRATION_PREFIX = "hydration_"
MAX_REMINDERS = 48
PLANNING_HORIZON = timedelta(hours=24)


class HydrationPlanner:
    def __init__(
        self,
        engine: SchedulingEngine,
        clock: Callable[[], datetime] = now_utc,
        user_timezone: str = "Asia/Shanghai",
    ):
        self._engine = engine
        self._clock = clock
        self._user_timezone = user_timezone

    def plan(self, settings: ReminderSettings, now: datetime, last_drink_at: Optional[datetime] = None) -> List[ScheduledReminder]:
        """只计算排期，不产生副作用"""
        if settings.interval <= 0:
            return []

        interval = timedelta(minutes=settings.interval)
        next_time = ensure_utc(last_drink_at or now) + interval

        # 保持 上次喝水 + N * 间隔 的节奏
        while next_time <= now:
            next_time += interval

        end_time = now + PLANNING_HORIZON
        reminders: List[ScheduledReminder] = []
        attempts = 0

        while next_time <= end_time and attempts < MAX_REMINDERS:
            attempts += 1

            local = to_user_local(next_time, self._user_timezone)
            if is_within_quiet_window(local, settings.quiet_hours_start, settings.quiet_hours_end, minute_precision=True):
                next_time = ensure_utc(adjust_out_of_window(
                    local, settings.quiet_hours_start, settings.quiet_hours_end, minute_precision=True,
                ))
                continue

            reminders.append(ScheduledReminder(
                id=f"{HYDRATION_PREFIX}{int(next_time.timestamp() * 1000)}",
                title="该喝水啦! 💧",
                body="继续加油，完成今天的饮水目标。",
                scheduled_time=next_time,
                data={"type": "hydration_reminder"},
            ))
            next_time += interval

        return reminders

    async def schedule_hydration_reminders(self, settings: ReminderSettings, last_drink_at: Optional[datetime] = None) -> int:
        """返回成功排期的提醒数"""
        try:
            logger.info(f"开始排期饮水提醒: interval={settings.interval}, enabled={settings.enabled}")

            permission = await self._engine.check_permission()
            if permission != PermissionState.GRANTED:
                logger.warning(f"通知权限未授予, 跳过排期: {permission.value}")
                return 0

            if not settings.enabled:
                logger.info("饮水提醒已关闭, 取消全部提醒")
                await self._engine.cancel_all_notifications()
                return 0

            now = self._clock()
            pending = await self._engine.get_pending_notifications()
            future = [r for r in pending if r.id.startswith(HYDRATION_PREFIX) and ensure_utc(r.scheduled_time) > now]
            if future and not settings.force_reschedule:
                logger.info(f"已存在 {len(future)} 条未来的饮水提醒, 保持当前排期")
                return 0

            await self._engine.cancel_all_notifications()

            local_now = to_user_local(now, self._user_timezone)
            if local_now.weekday() >= 5 and not settings.weekend_reminders:
                logger.info("周末提醒已关闭, 不进行排期")
                return 0

            reminders = self.plan(settings, now, last_drink_at)

            success_count = 0
            first_scheduled: Optional[ScheduledReminder] = None
            for reminder in reminders:
                try:
                    await self._engine.schedule_notification(reminder)
                    success_count += 1
                    if first_scheduled is None:
                        first_scheduled = reminder
                except Exception as e:
                    logger.error(f"饮水提醒排期失败: id={reminder.id}, error={e}")

            next_at = format_notification_time(first_scheduled.scheduled_time, now) if first_scheduled else "无"
            logger.info(f"已排期 {success_count} 条饮水提醒, 下一次: {next_at}")
            return success_count

        except Exception as e:
            logger.error(f"排期饮水提醒失败: {e}", exc_info=e)
            return 0

    async def cancel_all_reminders(self) -> int:
        try:
            count = await self._engine.cancel_all_notifications()
            logger.info("已取消全部通知")
            return count
        except Exception as e:
            logger.error(f"取消通知失败: {e}", exc_info=e)
            return 0

    async def send_test_notification(self) -> bool:
        try:
            entry = await self._engine.show_notification(ShowNotificationOptions(
                title="通知测试 🔔",
                body="这是一条来自 Hydropush 的测试通知",
                icon="/favicon.ico",
                tag="test_notification",
            ))
            return entry is not None
        except Exception as e:
            logger.error(f"发送测试通知失败: {e}", exc_info=e)
            return False


__all__ = ["HydrationPlanner", "HYDRATION_PREFIX", "MAX_REMINDERS"]
