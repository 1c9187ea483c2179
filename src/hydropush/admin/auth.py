"""管理 API 鉴权

令牌通过 Authorization: Bearer <token> 或 X-Hydropush-Token 头传入。
未配置令牌时受保护的接口一律返回 503，而不是放行。
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from hydropush.logger import logger

TOKEN_HEADER = "X-Hydropush-Token"


def extract_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.headers.get(TOKEN_HEADER, "").strip() or None


class AdminAuth:
    """可直接作为 FastAPI 依赖使用"""

    def __init__(self, token: str):
        self._token = (token or "").strip()
        if not self._token:
            logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")

    @property
    def configured(self) -> bool:
        return self._token != ""

    async def __call__(self, request: Request) -> dict[str, str]:
        if not self.configured:
            raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

        token = extract_token(request)
        if token is None or not hmac.compare_digest(token, self._token):
            client = request.client.host if request.client else "unknown"
            logger.warning(f"管理 API 鉴权失败: path={request.url.path}, client={client}")
            raise HTTPException(status_code=401, detail="未授权")

        return {"auth": "token", "user": "admin-token"}


__all__ = ["AdminAuth", "extract_token", "TOKEN_HEADER"]
