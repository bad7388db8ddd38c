"""Loader PickStats: запуск и мягкая остановка фоновых задач."""

from __future__ import annotations

from loguru import logger

from .context import EngineContext
from .services.core.notifier import ChangeEvent


async def on_startup(context: EngineContext) -> None:
    """Подписчики событий и запуск планировщика."""

    settings = context.settings
    logger.info(
        "PickStats стартует в окружении {env} (инстанс {instance})",
        env=settings.environment,
        instance=settings.engine.instance_id,
    )
    logger.debug("on_startup: attach event log subscriber")
    context.notifier.subscribe(_log_event)
    logger.debug("on_startup: start scheduler")
    await context.scheduler.start()
    logger.info("on_startup завершён, цикл каждые {interval} c", interval=settings.engine.cycle_interval_sec)


async def on_shutdown(context: EngineContext, grace: float | None = None) -> None:
    """Мягкое выключение сервиса."""

    await context.scheduler.stop(grace)
    await context.close()
    logger.info("PickStats корректно остановлен")


async def _log_event(event: ChangeEvent) -> None:
    """Простейший подписчик (логирует, пока нет внешних потребителей)."""

    logger.trace("Событие {event}", event=event.event_id)


__all__ = ["on_shutdown", "on_startup"]
