"""Один полный цикл пересчёта: Lock → батчи → агрегаты → лидерборды → кеш → Release."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable
from uuid import uuid4

from loguru import logger

from config.settings import AppSettings
from pickstats.errors import LockContention, StorageError
from pickstats.models.base import utcnow
from pickstats.repositories import PickStorage
from pickstats.services.core.lock_manager import LockManager
from pickstats.services.core.publisher import SnapshotPublisher
from pickstats.services.market.price_fetcher import PriceFetcher
from pickstats.services.stats.aggregation import AggregationEngine
from pickstats.services.stats.leaderboard import LeaderboardBuilder
from .worker_pool import BatchResult, PickProcessor, WorkerPool, partition


class CycleOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass(slots=True)
class CycleReport:
    """Итог цикла для логов, ops API и тестов."""

    run_id: str
    started_at: datetime
    outcome: CycleOutcome = CycleOutcome.ABORTED
    reason: str | None = None
    finished_at: datetime | None = None
    duration_sec: float = 0.0
    picks_total: int = 0
    picks_processed: int = 0
    picks_updated: int = 0
    picks_failed: int = 0
    picks_unpriced: int = 0
    hits: int = 0
    batches: int = 0
    batches_failed: int = 0
    batches_skipped: int = 0
    tokens_fetched: int = 0
    tokens_failed: int = 0
    keys_published: int = 0

    def absorb(self, results: list[BatchResult]) -> None:
        for result in results:
            self.batches_skipped += int(result.skipped)
            self.batches_failed += int(result.failed)
            self.picks_processed += result.processed
            self.picks_updated += result.updated
            self.picks_failed += len(result.failures)
            self.picks_unpriced += result.unpriced
            self.hits += result.hits

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_sec": round(self.duration_sec, 3),
            "picks": {
                "total": self.picks_total,
                "processed": self.picks_processed,
                "updated": self.picks_updated,
                "failed": self.picks_failed,
                "unpriced": self.picks_unpriced,
                "hits": self.hits,
            },
            "batches": {
                "total": self.batches,
                "failed": self.batches_failed,
                "skipped": self.batches_skipped,
            },
            "tokens": {"fetched": self.tokens_fetched, "failed": self.tokens_failed},
            "keys_published": self.keys_published,
        }


class CycleRunner:
    """Собирает компоненты движка в один прогон под распределённой блокировкой."""

    def __init__(
        self,
        *,
        settings: AppSettings,
        storage: PickStorage,
        lock_manager: LockManager,
        fetcher: PriceFetcher,
        aggregation: AggregationEngine,
        leaderboards: LeaderboardBuilder,
        publisher: SnapshotPublisher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._locks = lock_manager
        self._fetcher = fetcher
        self._aggregation = aggregation
        self._leaderboards = leaderboards
        self._publisher = publisher
        self._clock = clock

    async def run(self, stop_event: asyncio.Event | None = None) -> CycleReport:
        stop_event = stop_event or asyncio.Event()
        report = CycleReport(run_id=uuid4().hex[:12], started_at=self._clock())
        owner = f"{self._settings.engine.instance_id}:{report.run_id}"
        started = time.monotonic()
        try:
            async with self._locks.hold(self._settings.lock_key, self._settings.lock.ttl_seconds, owner) as lease:
                await self._execute(report, stop_event)
                if lease.lost and report.outcome is CycleOutcome.COMPLETED:
                    report.reason = "lease lost during cycle"
        except LockContention as exc:
            report.outcome = CycleOutcome.SKIPPED
            report.reason = str(exc)
        except StorageError as exc:
            report.outcome = CycleOutcome.ABORTED
            report.reason = f"storage: {exc}"
            logger.error("Цикл {run} прерван ошибкой хранилища: {error}", run=report.run_id, error=exc)
        except Exception as exc:  # noqa: BLE001
            report.outcome = CycleOutcome.ABORTED
            report.reason = repr(exc)
            logger.exception("Цикл {run} упал: {error}", run=report.run_id, error=exc)
        finally:
            report.finished_at = self._clock()
            report.duration_sec = time.monotonic() - started
            self._log_report(report)
        return report

    async def _execute(self, report: CycleReport, stop_event: asyncio.Event) -> None:
        engine = self._settings.engine
        since = self._clock() - timedelta(days=engine.retention_days)
        picks = await self._storage.list_pending_picks(since)
        batches = partition(picks, engine.batch_size)
        report.picks_total = len(picks)
        report.batches = len(batches)
        logger.info(
            "Цикл {run}: {picks} пиков в {batches} батчах",
            run=report.run_id,
            picks=len(picks),
            batches=len(batches),
        )

        quotes = self._fetcher.begin_cycle()
        try:
            processor = PickProcessor(self._storage, quotes, self._settings.scoring, self._clock)
            results = await WorkerPool(engine.worker_count, stop_event).run(batches, processor)
        finally:
            await quotes.close()
        report.absorb(results)
        report.tokens_fetched = quotes.fetched
        report.tokens_failed = quotes.failed

        if stop_event.is_set():
            report.outcome = CycleOutcome.ABORTED
            report.reason = "shutdown"
            return

        all_picks = await self._storage.list_picks()
        tokens = await self._storage.list_tokens({pick.token_key for pick in all_picks})
        aggregate = self._aggregation.aggregate(all_picks, tokens, self._clock())
        boards = self._leaderboards.build(aggregate)
        group_boards = self._leaderboards.build_group_boards(aggregate)
        published = await self._publisher.publish(aggregate, boards, group_boards)
        report.keys_published = published.keys_written
        report.outcome = CycleOutcome.COMPLETED

    @staticmethod
    def _log_report(report: CycleReport) -> None:
        logger.info(
            "Цикл {run} завершён: {outcome} за {duration:.2f} c "
            "(обработано {processed}/{total}, обновлено {updated}, ошибок {failed}, "
            "батчей упало {bfailed}/{batches}){reason}",
            run=report.run_id,
            outcome=report.outcome.value,
            duration=report.duration_sec,
            processed=report.picks_processed,
            total=report.picks_total,
            updated=report.picks_updated,
            failed=report.picks_failed,
            bfailed=report.batches_failed,
            batches=report.batches,
            reason=f", причина: {report.reason}" if report.reason else "",
        )


__all__ = ["CycleOutcome", "CycleReport", "CycleRunner"]
