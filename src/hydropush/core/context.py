"""应用上下文

进程内所有协作者(日志、存储、通道、引擎、分发器、排期器)在这里显式构造并互相注入，
测试中可以替换任意一个，例如换成内存存储或假的投递通道。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from hydropush.channels.base import DeliveryChannel, PlatformCapability, resolve_delivery_channel
from hydropush.channels.local_alarm import LocalAlarmChannel
from hydropush.channels.web_ws import WebSocketWebChannel
from hydropush.core.dispatcher import UnifiedDispatcher
from hydropush.core.engine import EngineStartup, SchedulingEngine
from hydropush.core.planner import HydrationPlanner
from hydropush.core.retry import RetryExecutor
from hydropush.datamodel import QuietHours, UserSettings
from hydropush.events import Bus
from hydropush.logger import logger
from hydropush.metrics import RuntimeMetrics
from hydropush.notification_logger import NotificationLogger
from hydropush.storage.db_config import KeyValueBackend, SqliteKeyValueBackend
from hydropush.storage.notification_store import NotificationStore
from hydropush.utils import now_utc


def default_user_settings() -> UserSettings:
    from hydropush.config import settings as cfg

    return UserSettings(
        notifications=cfg.NOTIFICATIONS_ENABLED,
        reminder_interval=cfg.REMINDER_INTERVAL_MINUTES,
        quiet_hours=QuietHours(start=cfg.QUIET_HOURS_START, end=cfg.QUIET_HOURS_END),
        weekend_reminders=cfg.WEEKEND_REMINDERS,
        smart_reminders=cfg.SMART_REMINDERS,
    )


@dataclass
class AppContext:
    bus: Bus
    metrics: RuntimeMetrics
    backend: KeyValueBackend
    notification_logger: NotificationLogger
    store: NotificationStore
    channel: DeliveryChannel
    engine: SchedulingEngine
    user_settings: UserSettings = field(default_factory=UserSettings)
    clock: Callable[[], datetime] = now_utc
    user_timezone: str = "Asia/Shanghai"
    dispatcher: UnifiedDispatcher = field(init=False)
    planner: HydrationPlanner = field(init=False)
    startup: Optional[EngineStartup] = field(default=None, init=False)

    def __post_init__(self) -> None:
        # 设置由 UI 协作者随时修改，分发器每次都读取最新值
        self.dispatcher = UnifiedDispatcher(
            self.engine,
            settings_provider=lambda: self.user_settings,
            notification_logger=self.notification_logger,
            clock=self.clock,
            user_timezone=self.user_timezone,
        )
        self.planner = HydrationPlanner(self.engine, clock=self.clock, user_timezone=self.user_timezone)

    async def initialize(self) -> EngineStartup:
        loaded_logs = self.notification_logger.load()
        logger.debug(f"已加载通知日志: {loaded_logs} 条")
        self.startup = await self.engine.initialize()
        if self.startup.errors:
            logger.warning(f"通知引擎启动时出现错误: {self.startup.errors}")
        return self.startup

    async def close(self) -> None:
        await self.engine.stop_checker()
        if isinstance(self.channel, WebSocketWebChannel):
            await self.channel.close()
        elif isinstance(self.channel, LocalAlarmChannel):
            self.channel.close()
        self.backend.close()


def build_context(
    platform: str = "web",
    backend: Optional[KeyValueBackend] = None,
    channel: Optional[DeliveryChannel] = None,
    user_settings: Optional[UserSettings] = None,
    retry_executor: Optional[RetryExecutor] = None,
    clock: Callable[[], datetime] = now_utc,
    user_timezone: str = "Asia/Shanghai",
    check_interval_seconds: float = 60,
    max_history: int = 50,
    max_logs: int = 100,
    persisted_logs: int = 50,
    native_permission: str = "prompt",
    native_grant_on_request: bool = True,
    web_ws_path: str = "/channels/web/ws",
    web_ws_token: str = "",
    web_timeout_seconds: float = 30.0,
) -> AppContext:
    """组装上下文，不做任何 I/O 以外的初始化，调用方随后需要 await ctx.initialize()"""
    bus = Bus()
    metrics = RuntimeMetrics()
    metrics.bind(bus)

    backend = backend if backend is not None else SqliteKeyValueBackend("data/hydropush.db")
    notification_logger = NotificationLogger(backend, max_logs=max_logs, persisted_logs=persisted_logs, clock=clock)
    store = NotificationStore(backend, notification_logger, max_history=max_history, clock=clock)

    if channel is None:
        channel = resolve_delivery_channel(
            PlatformCapability(platform),
            native_factory=lambda: LocalAlarmChannel(
                bus, permission=native_permission, grant_on_request=native_grant_on_request, clock=clock,
            ),
            web_factory=lambda: WebSocketWebChannel(
                ws_path=web_ws_path, token=web_ws_token, timeout_seconds=web_timeout_seconds,
            ),
        )

    engine = SchedulingEngine(
        channel,
        store,
        notification_logger,
        bus=bus,
        retry_executor=retry_executor,
        platform=platform,
        clock=clock,
        check_interval_seconds=check_interval_seconds,
    )

    return AppContext(
        bus=bus,
        metrics=metrics,
        backend=backend,
        notification_logger=notification_logger,
        store=store,
        channel=channel,
        engine=engine,
        user_settings=user_settings or UserSettings(),
        clock=clock,
        user_timezone=user_timezone,
    )


def build_context_from_settings(**overrides) -> AppContext:
    """按环境变量配置组装上下文"""
    from hydropush.config import settings as cfg

    if "backend" not in overrides:
        overrides["backend"] = SqliteKeyValueBackend(cfg.DB_PATH)

    options = dict(
        platform=cfg.PLATFORM,
        user_settings=default_user_settings(),
        user_timezone=cfg.USER_TIMEZONE,
        check_interval_seconds=cfg.NOTIFICATION_CHECK_INTERVAL_SECONDS,
        max_history=cfg.MAX_HISTORY,
        max_logs=cfg.MAX_LOGS,
        persisted_logs=cfg.PERSISTED_LOGS,
        native_permission=cfg.NATIVE_PERMISSION,
        native_grant_on_request=cfg.NATIVE_GRANT_ON_REQUEST,
        web_ws_path=cfg.WEB_CHANNEL_WS_PATH,
        web_ws_token=cfg.WEB_CHANNEL_WS_TOKEN,
        web_timeout_seconds=cfg.WEB_CHANNEL_TIMEOUT_SECONDS,
    )
    options.update(overrides)
    return build_context(**options)


__all__ = ["AppContext", "build_context", "build_context_from_settings", "default_user_settings"]
