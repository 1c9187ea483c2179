from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from hydropush.datamodel import DeliveryResult, ReminderIntent
from hydropush.utils import format_instant


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class ReminderCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    body: str = ""
    scheduled_time: Optional[datetime] = None  # 为空或已过去时立即发送
    interval_minutes: Optional[int] = Field(default=None, gt=0)
    data: Optional[Dict[str, Any]] = None
    respect_quiet_hours: bool = True

    def to_intent(self) -> ReminderIntent:
        return ReminderIntent(
            title=self.title,
            body=self.body,
            scheduled_time=self.scheduled_time,
            data=self.data,
            interval_minutes=self.interval_minutes,
            respect_quiet_hours=self.respect_quiet_hours,
        )


class HydrationScheduleRequest(BaseModel):
    """未给出的字段沿用当前用户设置"""
    enabled: Optional[bool] = None
    interval: Optional[int] = Field(default=None, gt=0)
    quiet_hours_start: Optional[str] = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    quiet_hours_end: Optional[str] = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    weekend_reminders: Optional[bool] = None
    force_reschedule: bool = False
    last_drink_at: Optional[datetime] = None


def delivery_result_payload(result: DeliveryResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "type": result.type.value,
        "id": result.id,
        "error": result.error,
        "sent_at": format_instant(result.sent_at) if result.sent_at else None,
        "scheduled_for": format_instant(result.scheduled_for) if result.scheduled_for else None,
    }
