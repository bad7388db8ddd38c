"""Повторы с экспоненциальным backoff для вызовов внешнего провайдера."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from pickstats.errors import TransientProviderError

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Сколько раз и с какой паузой повторять временные ошибки."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """Пауза перед попыткой attempt + 1 (attempt считается с нуля)."""

    delay = min(policy.base_delay * (policy.exponential_base**attempt), policy.max_delay)
    if policy.jitter:
        delay = delay * (0.5 + random.random())
    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Выполняет func, повторяя только TransientProviderError.

    Остальные исключения пробрасываются сразу. После исчерпания попыток
    пробрасывается последняя временная ошибка.
    """

    for attempt in range(policy.max_attempts):
        try:
            return await func()
        except TransientProviderError as exc:
            if attempt >= policy.max_attempts - 1:
                logger.warning(
                    "{label}: попытки исчерпаны ({total}), последняя ошибка: {error}",
                    label=label,
                    total=policy.max_attempts,
                    error=exc,
                )
                raise
            delay = calculate_delay(attempt, policy)
            if exc.retry_after:
                delay = max(delay, min(exc.retry_after, policy.max_delay))
            logger.debug(
                "{label}: временная ошибка ({error}), попытка {attempt}/{total}, ждём {delay:.2f} c",
                label=label,
                error=exc,
                attempt=attempt + 1,
                total=policy.max_attempts,
                delay=delay,
            )
            await sleep(delay)
    raise ValueError(f"{label}: max_attempts должен быть положительным, получено {policy.max_attempts}")


__all__ = ["RetryPolicy", "calculate_delay", "retry_async"]
