from __future__ import annotations

import asyncio
import time

import uvicorn

from hydropush.config.settings import ADMIN_AUTH_TOKEN, ADMIN_HTTP_HOST, ADMIN_HTTP_PORT
from hydropush.core.context import AppContext
from hydropush.logger import logger

from .app import create_app
from .auth import AdminAuth
from .schemas import RuntimeControl


async def main_loop(
    ctx: AppContext,
    shutdown_event: asyncio.Event,
    host: str = ADMIN_HTTP_HOST,
    port: int = ADMIN_HTTP_PORT,
) -> None:
    """运行管理 API(以及挂载在上面的浏览器通知 WS)，直到 shutdown_event 被设置"""
    control = RuntimeControl(shutdown_event=shutdown_event, started_at=time.time())
    app = create_app(ctx, control, AdminAuth(ADMIN_AUTH_TOKEN))

    server = uvicorn.Server(uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
        ws="websockets",
    ))
    # 系统信号由 main.py 统一处理
    server.install_signal_handlers = lambda: None

    serve_task = asyncio.create_task(server.serve(), name="admin-http")
    stop_task = asyncio.create_task(shutdown_event.wait(), name="admin-http-stop")
    logger.info(f"管理 API 监听于 http://{host}:{port}")

    try:
        done, _ = await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            server.should_exit = True
        await serve_task
    finally:
        stop_task.cancel()
        if not serve_task.done():
            server.should_exit = True
            await asyncio.gather(serve_task, return_exceptions=True)
        logger.info("管理 API 已停止")
