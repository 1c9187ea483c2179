"""带指数退避的有限次重试"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from hydropush.datamodel import RetryConfig

T = TypeVar("T")

DEFAULT_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2)

# 引擎使用的两组重试策略
SCHEDULE_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2)
SHOW_RETRY_CONFIG = RetryConfig(max_retries=2, initial_delay_ms=500, max_delay_ms=2000, backoff_multiplier=2)


@dataclass
class RetryOutcome(Generic[T]):
    success: bool
    retried_count: int
    result: Optional[T] = None
    error: Optional[Exception] = None


class RetryExecutor:
    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        # sleep 接收秒数，测试中可替换为不真正等待的实现
        self._sleep = sleep

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryOutcome[T]:
        """最多尝试 max_retries + 1 次。

        retryable 对某个异常返回 False 时立即停止，不再等待。

        asyncio.CancelledError 不属于 Exception，会直接向上传播，等待中的 sleep 随任务一起被取消。
        """
        last_error: Exception | None = None
        current_delay = float(config.initial_delay_ms)

        for attempt in range(config.max_retries + 1):
            try:
                result = await action()
                return RetryOutcome(success=True, retried_count=attempt, result=result)
            except Exception as e:
                last_error = e
                if retryable is not None and not retryable(e):
                    return RetryOutcome(success=False, retried_count=attempt, error=e)

            # 最后一次失败后不再等待
            if attempt == config.max_retries:
                break

            await self._sleep(min(current_delay, config.max_delay_ms) / 1000)
            current_delay *= config.backoff_multiplier

        return RetryOutcome(success=False, retried_count=config.max_retries, error=last_error)


__all__ = [
    "RetryExecutor", "RetryOutcome",
    "DEFAULT_RETRY_CONFIG", "SCHEDULE_RETRY_CONFIG", "SHOW_RETRY_CONFIG",
]
