"""Настройка loguru для продакшена."""

from __future__ import annotations

import sys
from loguru import logger


def setup_logging(json: bool = False, level: str = "DEBUG") -> None:
    logger.remove()
    logger.configure(extra={"instance": "-"})
    if json:
        logger.add(sys.stdout, level=level, serialize=True, backtrace=False, enqueue=True)
        return
    logger.add(
        sys.stdout,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[instance]} | {message}",
        level=level,
        colorize=True,
        backtrace=False,
        enqueue=True,
    )


def bind_instance(instance_id: str) -> None:
    """Подставляет id инстанса во все последующие записи."""

    logger.configure(extra={"instance": instance_id})


__all__ = ["bind_instance", "setup_logging"]
