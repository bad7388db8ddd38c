"""Нарезка пиков на батчи и ограниченный пул воркеров."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Sequence

from loguru import logger

from config.settings import ScoringSettings
from pickstats.errors import PartialBatchFailure, StorageError
from pickstats.models import TokenPick
from pickstats.models.base import utcnow
from pickstats.repositories import PickStorage
from pickstats.services.market.calculator import evaluate_pick, observed_market_cap
from pickstats.services.market.price_fetcher import CycleQuotes, TokenKey, TokenSnapshot


@dataclass(slots=True)
class BatchResult:
    index: int
    size: int
    processed: int = 0
    updated: int = 0
    hits: int = 0
    unpriced: int = 0
    failures: list[PartialBatchFailure] = field(default_factory=list)
    error: BaseException | None = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


BatchHandler = Callable[[int, Sequence[TokenPick]], Awaitable[BatchResult]]


def partition(picks: Sequence[TokenPick], batch_size: int) -> list[list[TokenPick]]:
    """Режет пики на батчи фиксированного размера, не меняя порядок."""

    if batch_size <= 0:
        raise ValueError("batch_size должен быть положительным")
    return [list(picks[i : i + batch_size]) for i in range(0, len(picks), batch_size)]


class PickProcessor:
    """Обработчик батчей одного цикла: котировки → токены → пики."""

    def __init__(
        self,
        storage: PickStorage,
        quotes: CycleQuotes,
        scoring: ScoringSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._quotes = quotes
        self._hit_threshold = scoring.hit_multiplier
        self._clock = clock
        self._tokens_written: set[TokenKey] = set()

    async def __call__(self, index: int, batch: Sequence[TokenPick]) -> BatchResult:
        result = BatchResult(index=index, size=len(batch))
        snapshots = await self._quotes.get_many(pick.token_key for pick in batch)
        await self._save_tokens(batch, snapshots)

        for pick in batch:
            result.processed += 1
            snapshot = snapshots.get(pick.token_key)
            if snapshot is None:
                result.unpriced += 1
                continue
            try:
                market_cap = observed_market_cap(pick, snapshot)
                update = evaluate_pick(pick, market_cap, hit_threshold=self._hit_threshold, now=self._clock())
                if update is None:
                    continue
                await self._storage.upsert_pick(update.apply())
                result.updated += 1
                if update.is_new_hit:
                    result.hits += 1
                    logger.info(
                        "Пик {pick} ({addr}) достиг x{mult:.2f}",
                        pick=pick.id,
                        addr=pick.token_address,
                        mult=update.highest_multiplier,
                    )
            except StorageError:
                raise
            except Exception as exc:  # noqa: BLE001
                result.failures.append(PartialBatchFailure(pick.id, exc))
                logger.warning("Пик {pick} не обработан: {error}", pick=pick.id, error=exc)
        return result

    async def _save_tokens(self, batch: Sequence[TokenPick], snapshots: dict[TokenKey, TokenSnapshot]) -> None:
        for key, snapshot in snapshots.items():
            if key in self._tokens_written:
                continue
            self._tokens_written.add(key)
            supply = next((p.supply_at_call for p in batch if p.token_key == key and p.supply_at_call), None)
            market_cap = snapshot.market_cap
            if market_cap is None and supply:
                market_cap = snapshot.price * supply
            await self._storage.upsert_token(snapshot.to_token(market_cap=market_cap))


class WorkerPool:
    """Гоняет батчи через handler, не больше width одновременно.

    Ошибка батча изолируется в BatchResult.error. StorageError отменяет
    оставшиеся батчи и пробрасывается наверх: цикл прерывается.
    """

    def __init__(self, width: int, stop_event: asyncio.Event | None = None) -> None:
        if width <= 0:
            raise ValueError("width должен быть положительным")
        self._width = width
        self._stop_event = stop_event or asyncio.Event()

    async def run(self, batches: Sequence[Sequence[TokenPick]], handler: BatchHandler) -> list[BatchResult]:
        semaphore = asyncio.Semaphore(self._width)
        tasks = [
            asyncio.create_task(self._run_one(semaphore, idx, batch, handler), name=f"batch-{idx}")
            for idx, batch in enumerate(batches)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_one(
        self,
        semaphore: asyncio.Semaphore,
        idx: int,
        batch: Sequence[TokenPick],
        handler: BatchHandler,
    ) -> BatchResult:
        async with semaphore:
            if self._stop_event.is_set():
                logger.debug("Батч {idx} не запущен: идёт остановка", idx=idx)
                return BatchResult(index=idx, size=len(batch), skipped=True)
            logger.debug("Батч {idx} ({size} пиков) в работе", idx=idx, size=len(batch))
            try:
                return await handler(idx, batch)
            except StorageError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Батч {idx} упал целиком: {error}", idx=idx, error=exc)
                return BatchResult(index=idx, size=len(batch), error=exc)


__all__ = ["BatchHandler", "BatchResult", "PickProcessor", "WorkerPool", "partition"]
