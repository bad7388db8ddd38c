"""Публикация снапшотов цикла в общий кеш.

Кеш служит одноразовой проекцией: ошибка записи логируется и не валит цикл,
читатели продолжают видеть предыдущий снапшот до истечения его TTL.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

from aiocache.base import BaseCache
from loguru import logger

from pickstats.services.stats.aggregation import AggregateSnapshot, StatsByTimeframe
from pickstats.services.stats.leaderboard import (
    GroupBoardKey,
    GroupPickBoard,
    LeaderboardKey,
    LeaderboardMetric,
    LeaderboardSnapshot,
)
from pickstats.utils.timeframes import Timeframe
from .notifier import LEADERBOARD_REFRESHED, Notifier


def leaderboard_key(timeframe: Timeframe, metric: LeaderboardMetric) -> str:
    return f"leaderboard:{timeframe.value}:{metric.value}"


def profile_stats_key(user_id: str) -> str:
    return f"profile:stats:{user_id}"


def group_stats_key(group_id: int) -> str:
    return f"group:stats:{group_id}"


def group_leaderboard_key(group_id: int, timeframe: Timeframe) -> str:
    return f"group:leaderboard:{group_id}:{timeframe.value}"


def group_leaderboard_data_key(group_id: int, timeframe: Timeframe) -> str:
    return f"{group_leaderboard_key(group_id, timeframe)}:data"


@dataclass(slots=True)
class PublishReport:
    keys_written: int = 0
    keys_failed: int = 0
    events: int = 0


class SnapshotPublisher:
    """Пишет агрегаты и лидерборды с TTL и шлёт события обновления."""

    def __init__(self, cache: BaseCache, notifier: Notifier, *, ttl: int, timeout: float) -> None:
        self._cache = cache
        self._notifier = notifier
        self._ttl = ttl
        self._timeout = timeout

    async def publish(
        self,
        aggregate: AggregateSnapshot,
        boards: Mapping[LeaderboardKey, LeaderboardSnapshot],
        group_boards: Mapping[GroupBoardKey, GroupPickBoard] | None = None,
    ) -> PublishReport:
        report = PublishReport()
        generated_at = aggregate.generated_at.isoformat()

        user_pairs = [
            (profile_stats_key(user_id), _stats_payload(generated_at, stats))
            for user_id, stats in aggregate.users.items()
        ]
        group_pairs = [
            (group_stats_key(group_id), _stats_payload(generated_at, stats))
            for group_id, stats in aggregate.groups.items()
        ]
        board_pairs = [
            pair
            for board in (group_boards or {}).values()
            for pair in _group_board_pairs(generated_at, board)
        ]
        for label, pairs in (("profile", user_pairs), ("group", group_pairs), ("group leaderboard", board_pairs)):
            if not pairs:
                continue
            if await self._write(label, self._cache.multi_set(pairs, ttl=self._ttl)):
                report.keys_written += len(pairs)
            else:
                report.keys_failed += len(pairs)

        for (timeframe, metric), board in boards.items():
            key = leaderboard_key(timeframe, metric)
            if not await self._write(key, self._cache.set(key, board.as_dict(), ttl=self._ttl)):
                report.keys_failed += 1
                continue
            report.keys_written += 1
            await self._notifier.publish(
                LEADERBOARD_REFRESHED,
                board.entity_id,
                board.version,
                {"key": key, "entries": len(board.entries), "generated_at": generated_at},
            )
            report.events += 1

        logger.debug(
            "Снапшоты опубликованы: {ok} ключей, ошибок {failed}",
            ok=report.keys_written,
            failed=report.keys_failed,
        )
        return report

    async def get_leaderboard(self, timeframe: Timeframe, metric: LeaderboardMetric) -> dict[str, Any] | None:
        return await self._cache.get(leaderboard_key(timeframe, metric))

    async def _write(self, label: str, awaitable) -> bool:
        try:
            await asyncio.wait_for(awaitable, timeout=self._timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Запись {label} в кеш не удалась: {error}", label=label, error=exc)
            return False
        return True


def _stats_payload(generated_at: str, stats: StatsByTimeframe) -> dict[str, Any]:
    return {
        "generated_at": generated_at,
        "stats": {timeframe.value: item.as_dict() for timeframe, item in stats.items()},
    }


def _group_board_pairs(generated_at: str, board: GroupPickBoard) -> list[tuple[str, dict[str, Any]]]:
    """Порядок пиков и их данные по pick_id лежат в двух отдельных ключах."""

    ranking = {
        "group_id": board.group_id,
        "timeframe": board.timeframe.value,
        "generated_at": generated_at,
        "version": board.version,
        "entries": board.ranking(),
    }
    data = {"generated_at": generated_at, "picks": board.data()}
    return [
        (group_leaderboard_key(board.group_id, board.timeframe), ranking),
        (group_leaderboard_data_key(board.group_id, board.timeframe), data),
    ]


__all__ = [
    "PublishReport",
    "SnapshotPublisher",
    "group_leaderboard_data_key",
    "group_leaderboard_key",
    "group_stats_key",
    "leaderboard_key",
    "profile_stats_key",
]
