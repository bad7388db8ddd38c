"""Таксономия ошибок движка пересчёта пиков."""

from __future__ import annotations


class PickStatsError(Exception):
    """Базовый класс всех ошибок PickStats."""


class TransientProviderError(PickStatsError):
    """Временный сбой провайдера цен (таймаут, 429, 5xx), можно повторить."""

    def __init__(self, message: str, *, status: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


class PermanentDataError(PickStatsError):
    """Некорректные или отсутствующие данные токена: пропускаем и логируем."""


class LockContention(PickStatsError):
    """Цикл уже выполняет другой инстанс. Это сигнал, а не сбой."""

    def __init__(self, key: str, owner: str | None = None) -> None:
        super().__init__(f"lock {key!r} is held by {owner or 'another instance'}")
        self.key = key
        self.owner = owner


class StorageError(PickStatsError):
    """Сбой хранилища: прерывает только текущий цикл."""


class PartialBatchFailure(PickStatsError):
    """Ошибка обработки одного пика внутри батча (батч продолжается)."""

    def __init__(self, pick_id: int | None, cause: BaseException) -> None:
        super().__init__(f"pick {pick_id}: {cause!r}")
        self.pick_id = pick_id
        self.cause = cause


__all__ = [
    "LockContention",
    "PartialBatchFailure",
    "PermanentDataError",
    "PickStatsError",
    "StorageError",
    "TransientProviderError",
]
