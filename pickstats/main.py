"""Entry point for the PickStats aggregation engine."""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from config.settings import get_settings
from .context import build_context
from .loader import on_shutdown, on_startup
from .logging_config import bind_instance, setup_logging


async def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.is_production)
    bind_instance(settings.engine.instance_id)

    context = build_context(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    await on_startup(context)
    logger.info("Движок работает, ждём сигнала остановки")
    try:
        await stop.wait()
    finally:
        logger.info("Получен сигнал остановки, даём циклу {grace} c", grace=settings.engine.shutdown_grace_sec)
        await on_shutdown(context, settings.engine.shutdown_grace_sec)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
