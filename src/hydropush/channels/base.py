"""投递通道抽象

两种通道在启动时根据宿主能力选定一次:
1. 原生通道: 排期交给宿主的闹钟子系统，即使应用挂起宿主也会负责投递;
2. 浏览器通道: 只能立即展示，周期性投递依赖引擎自己的定时检查。

两种通道的权限都遵循 granted / denied / default 三态模型。
request_permission 在被拒绝时返回 denied 而不是抛出异常；检查权限时遇到宿主异常按 default 处理。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from hydropush.datamodel import PermissionState, ScheduledReminder
from hydropush.logger import logger

NATIVE_PLATFORMS = ("android", "ios", "desktop")

# 宿主可能上报的 "尚未决定" 子状态
_PROMPT_STATES = {"prompt", "prompt-with-rationale", "default"}


class NotificationPermissionError(RuntimeError):
    """宿主拒绝投递: 权限未授予时不应重试"""


def normalize_permission(raw: Any) -> PermissionState:
    value = raw.value if isinstance(raw, PermissionState) else str(raw or "").strip().lower()
    if value == "granted":
        return PermissionState.GRANTED
    if value == "denied":
        return PermissionState.DENIED
    if value not in _PROMPT_STATES:
        logger.warning(f"未知的通知权限状态: {raw!r}, 按 default 处理")
    return PermissionState.DEFAULT


class PlatformCapability:
    """回答 "当前是否原生宿主" 与 "平台名称"，在引擎构造时使用一次"""

    def __init__(self, platform: str):
        self._platform = (platform or "web").strip().lower()

    def get_platform(self) -> str:
        return self._platform

    def is_native_platform(self) -> bool:
        return self._platform in NATIVE_PLATFORMS


class DeliveryChannel(ABC):
    kind: str = "abstract"

    @property
    def is_native(self) -> bool:
        return False

    async def check_permission(self) -> PermissionState:
        try:
            return normalize_permission(await self._query_permission())
        except Exception as e:
            logger.error(f"[{self.kind}] 检查通知权限失败: {e}", exc_info=e)
            return PermissionState.DEFAULT

    async def request_permission(self) -> PermissionState:
        try:
            state = normalize_permission(await self._ask_permission())
        except Exception as e:
            logger.error(f"[{self.kind}] 请求通知权限失败: {e}", exc_info=e)
            return PermissionState.DENIED
        # 请求之后仍未决定的情况按拒绝处理
        return PermissionState.GRANTED if state == PermissionState.GRANTED else PermissionState.DENIED

    def is_supported(self) -> bool:
        return True

    @abstractmethod
    async def _query_permission(self) -> Any:
        """返回宿主上报的原始权限状态"""
        pass

    @abstractmethod
    async def _ask_permission(self) -> Any:
        """向用户请求权限，返回宿主上报的原始结果"""
        pass


class NativeDeliveryChannel(DeliveryChannel):
    kind = "native"

    @property
    def is_native(self) -> bool:
        return True

    @abstractmethod
    async def schedule(
        self,
        id: str,
        title: str,
        body: str,
        at_time: datetime,
        payload: Optional[Dict[str, Any]] = None,
        interval_minutes: Optional[int] = None,
    ) -> None:
        pass

    @abstractmethod
    async def list_pending(self) -> List[ScheduledReminder]:
        pass

    @abstractmethod
    async def cancel(self, ids: List[str]) -> None:
        pass

    async def cancel_all(self) -> int:
        pending = await self.list_pending()
        if pending:
            await self.cancel([r.id for r in pending])
        return len(pending)

    async def register(self) -> None:
        """向宿主注册推送，默认无需操作"""

    async def add_listeners(self) -> None:
        """安装宿主事件监听，默认无需操作"""


class WebDeliveryChannel(DeliveryChannel):
    kind = "web"

    @abstractmethod
    async def show(self, title: str, body: str, icon: Optional[str] = None, tag: Optional[str] = None) -> None:
        pass


def resolve_delivery_channel(
    capability: PlatformCapability,
    native_factory: Callable[[], NativeDeliveryChannel],
    web_factory: Callable[[], WebDeliveryChannel],
) -> DeliveryChannel:
    if capability.is_native_platform():
        channel: DeliveryChannel = native_factory()
    else:
        channel = web_factory()
    logger.info(f"通知通道已选定: platform={capability.get_platform()}, channel={channel.kind}")
    return channel


__all__ = [
    "PermissionState", "PlatformCapability", "normalize_permission", "NotificationPermissionError",
    "DeliveryChannel", "NativeDeliveryChannel", "WebDeliveryChannel",
    "resolve_delivery_channel", "NATIVE_PLATFORMS",
]
