"""静默时段判断

静默时段由 "HH:MM" 形式的 start/end 描述，start 晚于 end 时表示跨越午夜(例如 22:00 - 07:00)。

注意: 默认只比较小时，分钟被忽略。例如 end 为 07:30 时，07:10 已被视为非静默时段；
而 adjust_out_of_window 计算延后目标时会使用分钟。需要精确到分钟时传入 minute_precision=True。
"""

from __future__ import annotations

from datetime import datetime, timedelta

from hydropush.utils import parse_hhmm


def _window(start: str, end: str, minute_precision: bool) -> tuple[int, int]:
    start_hour, start_minute = parse_hhmm(start)
    end_hour, end_minute = parse_hhmm(end)
    if minute_precision:
        return start_hour * 60 + start_minute, end_hour * 60 + end_minute
    return start_hour, end_hour


def _position(time: datetime, minute_precision: bool) -> int:
    if minute_precision:
        return time.hour * 60 + time.minute
    return time.hour


def is_within_quiet_window(time: datetime, start: str, end: str, minute_precision: bool = False) -> bool:
    begin, finish = _window(start, end, minute_precision)
    current = _position(time, minute_precision)

    # 跨越午夜 (例如 22:00 - 07:00)
    if begin > finish:
        return current >= begin or current < finish

    # 不跨越午夜 (例如 08:00 - 20:00)
    return begin <= current < finish


def is_appropriate_time(time: datetime, start: str, end: str, minute_precision: bool = False) -> bool:
    return not is_within_quiet_window(time, start, end, minute_precision)


def adjust_out_of_window(time: datetime, start: str, end: str, minute_precision: bool = False) -> datetime:
    """把落在静默时段内的时间延后到静默时段结束，时区与输入保持一致"""
    if is_appropriate_time(time, start, end, minute_precision):
        return time

    end_hour, end_minute = parse_hhmm(end)
    adjusted = time.replace(hour=end_hour, minute=end_minute, second=0, microsecond=0)

    # 跨越午夜时结束时间落在第二天
    if adjusted <= time:
        adjusted += timedelta(days=1)

    return adjusted


def is_quiet_now(start: str, end: str, now: datetime | None = None, minute_precision: bool = False) -> bool:
    """按本地时钟判断当前是否处于静默时段"""
    return is_within_quiet_window(now or datetime.now(), start, end, minute_precision)


__all__ = ["is_within_quiet_window", "is_appropriate_time", "adjust_out_of_window", "is_quiet_now"]
