"""Периодический запуск цикла пересчёта внутри одного процесса."""

from __future__ import annotations

import asyncio

from loguru import logger

from pickstats.models.base import utcnow
from .cycle import CycleOutcome, CycleReport, CycleRunner


class Scheduler:
    """Тикает каждые interval секунд, считая от конца предыдущего цикла.

    Внутри процесса одновременно живёт не больше одной задачи цикла, даже если
    вызвавший run_cycle отменён. Между инстансами циклы разводит
    распределённая блокировка в CycleRunner.
    """

    def __init__(self, runner: CycleRunner, *, interval: float, grace: float) -> None:
        self._runner = runner
        self._interval = interval
        self._grace = grace
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._current: asyncio.Task[CycleReport] | None = None
        self.last_report: CycleReport | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    async def run_cycle(self) -> CycleReport:
        """Один цикл прямо сейчас. Если цикл уже идёт, возвращает SKIPPED."""

        if self.busy:
            now = utcnow()
            return CycleReport(
                run_id="-",
                started_at=now,
                finished_at=now,
                outcome=CycleOutcome.SKIPPED,
                reason="cycle already running in this process",
            )
        self._current = asyncio.create_task(self._runner.run(self._stop_event), name="pickstats-cycle")
        self._current.add_done_callback(self._remember)
        # отмена вызывающего не трогает сам цикл, его дожидается stop()
        self.last_report = await asyncio.shield(self._current)
        return self.last_report

    def _remember(self, task: asyncio.Task[CycleReport]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error("Задача цикла упала: {error}", error=error)
            return
        self.last_report = task.result()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._loop(), name="pickstats-scheduler")
        logger.info("Планировщик запущен (интервал {interval} c)", interval=self._interval)

    async def stop(self, grace: float | None = None) -> None:
        """Дожидается текущего цикла не дольше grace секунд, затем отменяет его.

        Новые батчи после stop() не запускаются, блокировка освобождается
        в LockManager.hold при выходе из цикла.
        """

        grace = self._grace if grace is None else grace
        self._stop_event.set()
        current = self._current
        if current is not None and not current.done():
            done, _ = await asyncio.wait({current}, timeout=grace)
            if not done:
                logger.warning("Цикл не завершился за {grace} c, отменяем", grace=grace)
                current.cancel()
                await asyncio.gather(current, return_exceptions=True)
        if self._loop_task is not None:
            # после stop_event цикл планировщика выходит сам
            done, _ = await asyncio.wait({self._loop_task}, timeout=grace)
            if not done:
                self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        logger.info("Планировщик остановлен")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Тик планировщика упал: {error}", error=exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["Scheduler"]
