from hydropush.logger import setup_logging, logger
from hydropush.config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import signal

from hydropush.admin.http_server import main_loop as admin_http_main
from hydropush.core.context import build_context_from_settings

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    ctx = build_context_from_settings()
    startup = await ctx.initialize()
    logger.info(
        f"通知引擎已就绪: platform={startup.platform}, native={startup.native}, "
        f"reminders={startup.loaded_reminders}, history={startup.loaded_history}"
    )

    try:
        ctx.engine.start_checker()
        await admin_http_main(ctx, shutdown_event)
    finally:
        logger.info("关闭 Hydropush...")
        await ctx.close()
        logger.info("Hydropush 已关闭")


def run() -> None:
    logger.info("启动 Hydropush...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
