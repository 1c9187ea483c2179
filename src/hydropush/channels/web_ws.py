"""浏览器通知通道(WebSocket)

浏览器页面通过 WebSocket 连接到本服务，连接后上报自身的 Notification.permission；
服务端通过下发动作让页面调用浏览器通知接口:
- {"action": "show_notification", "params": {...}}: 立即展示，不等待回执;
- {"action": "request_permission", "echo": "..."}: 请求权限，页面以相同 echo 回复 {"echo": ..., "permission": ...}。

同一时刻只保留一个活跃页面，新连接会替换旧连接。
"""

from __future__ import annotations

import asyncio
import hmac
import json
import uuid
from typing import Any, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from hydropush.channels.base import WebDeliveryChannel
from hydropush.logger import logger


class _BrowserSession:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.send_lock = asyncio.Lock()
        self.permission = "default"

    async def send_json(self, payload: dict[str, Any]) -> None:
        async with self.send_lock:
            await self.websocket.send_text(json.dumps(payload, ensure_ascii=False))


class WebSocketWebChannel(WebDeliveryChannel):
    def __init__(self, ws_path: str = "/channels/web/ws", token: str = "", timeout_seconds: float = 30.0):
        self.ws_path = ws_path
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._active_session: _BrowserSession | None = None
        self._session_lock = asyncio.Lock()
        self._pending_echo: dict[str, asyncio.Future] = {}
        self._routes_registered = False

    # ----------------- 权限 ----------------
    async def _query_permission(self) -> str:
        session = self._active_session
        if session is None:
            return "default"
        return session.permission

    async def _ask_permission(self) -> str:
        response = await self._send_action("request_permission", {})
        permission = str(response.get("permission", "denied"))
        session = self._active_session
        if session is not None:
            session.permission = permission
        logger.info(f"浏览器通知权限请求结果: {permission}")
        return permission

    def is_supported(self) -> bool:
        return self._active_session is not None

    # ----------------- 投递 ----------------
    async def show(self, title: str, body: str, icon: Optional[str] = None, tag: Optional[str] = None) -> None:
        session = self._active_session
        if session is None:
            raise RuntimeError("浏览器通知通道未连接")

        params: dict[str, Any] = {"title": title, "body": body, "icon": icon or "/favicon.ico"}
        if tag:
            params["tag"] = tag
        await session.send_json({"action": "show_notification", "params": params})

    async def _send_action(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        session = self._active_session
        if session is None:
            raise RuntimeError("浏览器通知通道未连接")

        echo = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending_echo[echo] = future

        try:
            await session.send_json({"action": action, "params": params, "echo": echo})
            response = await asyncio.wait_for(future, timeout=self._timeout_seconds)
        finally:
            self._pending_echo.pop(echo, None)

        return response

    # ----------------- 会话管理 ----------------
    def _is_authorized(self, websocket: WebSocket) -> bool:
        if self._token == "":
            return True
        incoming = (websocket.query_params.get("token") or "").strip()
        return hmac.compare_digest(incoming, self._token)

    async def _replace_active_session(self, session: _BrowserSession) -> None:
        async with self._session_lock:
            old = self._active_session
            self._active_session = session

        if old is not None:
            try:
                await old.websocket.close(code=1012, reason="replaced")
            except Exception:
                pass

    async def _detach_active_session(self, session: _BrowserSession) -> bool:
        async with self._session_lock:
            if self._active_session is session:
                self._active_session = None
                return True
        return False

    def _fail_all_pending(self, exc: Exception) -> None:
        for future in list(self._pending_echo.values()):
            if not future.done():
                future.set_exception(exc)
        self._pending_echo.clear()

    def _handle_payload(self, session: _BrowserSession, payload: Any) -> None:
        if not isinstance(payload, dict):
            return

        echo = str(payload.get("echo", ""))
        if echo != "":
            future = self._pending_echo.get(echo)
            if future is not None and not future.done():
                future.set_result(payload)
            return

        if payload.get("type") == "permission":
            session.permission = str(payload.get("permission", "default"))
            logger.info(f"浏览器上报通知权限: {session.permission}")

    def register_fastapi_routes(self, app: FastAPI) -> None:
        if self._routes_registered:
            return

        @app.websocket(self.ws_path)
        async def browser_notification_ws(websocket: WebSocket):
            if not self._is_authorized(websocket):
                await websocket.close(code=1008, reason="unauthorized")
                logger.warning("浏览器通知通道鉴权失败")
                return

            await websocket.accept()
            session = _BrowserSession(websocket)
            await self._replace_active_session(session)
            logger.info(f"浏览器通知通道已连接: path={self.ws_path}")

            try:
                while True:
                    raw = await websocket.receive_text()
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("收到无法解析的浏览器消息, 已忽略")
                        continue
                    self._handle_payload(session, payload)
            except WebSocketDisconnect:
                logger.warning("浏览器通知通道已断开")
            except Exception as e:
                logger.error(f"浏览器通知通道处理异常: {e}", exc_info=e)
            finally:
                was_active = await self._detach_active_session(session)
                if was_active:
                    self._fail_all_pending(RuntimeError("浏览器通知通道连接已断开"))

        self._routes_registered = True

    def get_status(self) -> dict[str, object]:
        session = self._active_session
        return {
            "connected": session is not None,
            "permission": session.permission if session is not None else None,
            "pending_calls": len(self._pending_echo),
        }

    async def close(self, reason: str = "service_shutdown") -> None:
        async with self._session_lock:
            session = self._active_session
            self._active_session = None

        if session is not None:
            try:
                await session.websocket.close(code=1001, reason=reason)
            except Exception:
                pass
        self._fail_all_pending(RuntimeError("服务已关闭"))


__all__ = ["WebSocketWebChannel"]
