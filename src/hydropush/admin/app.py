"""管理 API

/healthz 与 /api/v1/health 无需鉴权，其余接口挂在带 AdminAuth 依赖的路由上。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, replace
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse

from hydropush.admin.auth import AdminAuth
from hydropush.admin.schemas import (
    HydrationScheduleRequest,
    ReminderCreateRequest,
    RuntimeControl,
    ShutdownRequest,
    delivery_result_payload,
)
from hydropush.channels.web_ws import WebSocketWebChannel
from hydropush.core.context import AppContext
from hydropush.datamodel import LogLevel, ReminderSettings
from hydropush.logger import logger
from hydropush.storage.schemas import HistoryRecord, LogRecord, ReminderRecord, dump_record


def create_app(ctx: AppContext, control: RuntimeControl, auth: AdminAuth) -> FastAPI:
    app = FastAPI(title="Hydropush Admin API", version="1.0.0")
    api = APIRouter(prefix="/api/v1", dependencies=[Depends(auth)])

    if isinstance(ctx.channel, WebSocketWebChannel):
        ctx.channel.register_fastapi_routes(app)
        logger.info(f"已挂载浏览器通知 WS 路由: {ctx.channel.ws_path}")

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @api.get("/status")
    async def get_status() -> dict[str, Any]:
        channel_status: dict[str, Any] = {"kind": ctx.channel.kind, "supported": ctx.engine.is_supported()}
        get_channel_status = getattr(ctx.channel, "get_status", None)
        if callable(get_channel_status):
            try:
                channel_status.update(get_channel_status())
            except Exception as e:
                logger.warning(f"读取通知通道状态失败: {e}")

        permission = await ctx.engine.check_permission()
        return {
            **health_payload(),
            "runtime": ctx.metrics.snapshot(),
            "engine": ctx.engine.get_status(),
            "channel": channel_status,
            "permission": permission.value,
            "startup": asdict(ctx.startup) if ctx.startup is not None else None,
            "user_settings": asdict(ctx.user_settings),
            "active_tasks": len(asyncio.all_tasks()),
        }

    # ----------------- 提醒 ----------------
    @api.get("/reminders")
    async def list_reminders(limit: int = Query(default=100, ge=1, le=500)) -> dict[str, Any]:
        pending = sorted(await ctx.engine.get_pending_notifications(), key=lambda r: r.scheduled_time)
        return {
            "items": [dump_record(ReminderRecord.from_reminder(r)) for r in pending[:limit]],
            "limit": limit,
            "total": len(pending),
        }

    @api.post("/reminders")
    async def create_reminder(payload: ReminderCreateRequest) -> dict[str, Any]:
        result = await ctx.dispatcher.send_reminder(payload.to_intent())
        logger.info(f"管理端发送提醒: title={payload.title}, success={result.success}")
        return delivery_result_payload(result)

    @api.delete("/reminders")
    async def cancel_all_reminders() -> dict[str, Any]:
        return {"ok": True, "cancelled": await ctx.engine.cancel_all_notifications()}

    @api.delete("/reminders/{reminder_id}")
    async def cancel_reminder(reminder_id: str) -> dict[str, Any]:
        if not await ctx.engine.cancel_notification(reminder_id):
            raise HTTPException(status_code=404, detail=f"提醒不存在: {reminder_id}")
        return {"ok": True, "id": reminder_id}

    # ----------------- 历史 ----------------
    @api.get("/history")
    async def get_history(limit: int = Query(default=10, ge=1, le=500)) -> dict[str, Any]:
        items = ctx.dispatcher.get_combined_history(limit)
        return {"items": [dump_record(HistoryRecord.from_entry(entry)) for entry in items], "limit": limit}

    @api.delete("/history")
    async def delete_history(older_than_days: Optional[int] = None) -> dict[str, Any]:
        if older_than_days is None:
            removed = len(ctx.engine.get_notification_history(ctx.store.max_history))
            ctx.engine.clear_history()
        elif older_than_days < 0:
            raise HTTPException(status_code=400, detail="older_than_days 不能为负数")
        else:
            removed = ctx.engine.clear_old_notifications(older_than_days)
        return {"ok": True, "removed": removed, "older_than_days": older_than_days}

    # ----------------- 日志 ----------------
    @api.get("/logs")
    async def get_logs(level: Optional[str] = None, service: Optional[str] = None, limit: int = 100) -> dict[str, Any]:
        limit = max(1, min(limit, ctx.notification_logger.max_logs))

        if level:
            try:
                entries = ctx.notification_logger.get_by_level(LogLevel(level.strip().upper()))
            except ValueError:
                raise HTTPException(status_code=400, detail=f"未知的日志级别: {level}")
        else:
            entries = ctx.notification_logger.get_all()
        if service:
            entries = [entry for entry in entries if entry.service == service]

        return {
            "level": level,
            "service": service,
            "limit": limit,
            "items": [dump_record(LogRecord.from_entry(entry)) for entry in entries[-limit:]],
        }

    @api.get("/logs/export")
    async def export_logs(format: str = "json") -> PlainTextResponse:
        if format == "json":
            return PlainTextResponse(ctx.notification_logger.export_as_json(), media_type="application/json")
        if format == "text":
            return PlainTextResponse(ctx.notification_logger.export_as_text())
        raise HTTPException(status_code=400, detail="format 只能是 json 或 text")

    # ----------------- 操作 ----------------
    @api.post("/notifications/test")
    async def test_notifications() -> dict[str, Any]:
        results = await ctx.dispatcher.test_notifications()
        return {channel: delivery_result_payload(result) for channel, result in results.items()}

    @api.post("/hydration/schedule")
    async def schedule_hydration(payload: HydrationScheduleRequest) -> dict[str, Any]:
        settings = ReminderSettings.from_user_settings(ctx.user_settings, force_reschedule=payload.force_reschedule)
        overrides = payload.model_dump(
            include={"enabled", "interval", "quiet_hours_start", "quiet_hours_end", "weekend_reminders"},
            exclude_none=True,
        )
        scheduled = await ctx.planner.schedule_hydration_reminders(replace(settings, **overrides), payload.last_drink_at)
        return {"ok": True, "scheduled": scheduled}

    @api.post("/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, auth_info: dict = Depends(auth)) -> dict[str, Any]:
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    app.include_router(api)
    return app


__all__ = ["create_app"]
