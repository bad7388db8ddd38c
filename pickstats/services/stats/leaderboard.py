"""Лидерборды пользователей по (окно, метрика)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pickstats.utils.timeframes import Timeframe
from .aggregation import AggregateSnapshot, PickStats, RankedPick


class LeaderboardMetric(str, Enum):
    RETURNS = "returns"
    HIT_RATE = "hit_rate"
    TOTAL_PICKS = "total_picks"


def metric_value(stats: PickStats, metric: LeaderboardMetric) -> float:
    if metric is LeaderboardMetric.RETURNS:
        return stats.average_multiplier
    if metric is LeaderboardMetric.HIT_RATE:
        return stats.hit_rate
    return float(stats.total_picks)


@dataclass(slots=True, frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    value: float
    total_picks: int
    hits: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "value": round(self.value, 4),
            "total_picks": self.total_picks,
            "hits": self.hits,
        }


@dataclass(slots=True, frozen=True)
class LeaderboardSnapshot:
    """Неизменяемый рейтинг. Целиком заменяет предыдущий для той же пары."""

    timeframe: Timeframe
    metric: LeaderboardMetric
    generated_at: datetime
    entries: tuple[LeaderboardEntry, ...]

    @property
    def version(self) -> int:
        return int(self.generated_at.timestamp() * 1000)

    @property
    def entity_id(self) -> str:
        return f"{self.timeframe.value}:{self.metric.value}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "timeframe": self.timeframe.value,
            "metric": self.metric.value,
            "generated_at": self.generated_at.isoformat(),
            "version": self.version,
            "entries": [entry.as_dict() for entry in self.entries],
        }


LeaderboardKey = tuple[Timeframe, LeaderboardMetric]


@dataclass(slots=True, frozen=True)
class GroupPickBoard:
    """Лучшие пики группы за окно: множитель desc, затем pick_id asc."""

    group_id: int
    timeframe: Timeframe
    generated_at: datetime
    entries: tuple[RankedPick, ...]

    @property
    def version(self) -> int:
        return int(self.generated_at.timestamp() * 1000)

    @property
    def entity_id(self) -> str:
        return f"{self.group_id}:{self.timeframe.value}"

    def ranking(self) -> list[dict[str, Any]]:
        return [
            {"rank": position, "pick_id": entry.pick_id, "multiplier": round(entry.multiplier, 4)}
            for position, entry in enumerate(self.entries, start=1)
        ]

    def data(self) -> dict[str, dict[str, Any]]:
        return {str(entry.pick_id): entry.as_dict() for entry in self.entries}


GroupBoardKey = tuple[int, Timeframe]


class LeaderboardBuilder:
    """Ранжирует по убыванию метрики; ничьи: total_picks desc, затем user_id asc."""

    def __init__(self, size: int = 100) -> None:
        self._size = size

    def build(self, aggregate: AggregateSnapshot) -> dict[LeaderboardKey, LeaderboardSnapshot]:
        boards: dict[LeaderboardKey, LeaderboardSnapshot] = {}
        for timeframe in Timeframe:
            rows = {user_id: stats[timeframe] for user_id, stats in aggregate.users.items()}
            for metric in LeaderboardMetric:
                boards[(timeframe, metric)] = self.rank(rows, timeframe, metric, aggregate.generated_at)
        return boards

    def rank(
        self,
        rows: Mapping[str, PickStats],
        timeframe: Timeframe,
        metric: LeaderboardMetric,
        generated_at: datetime,
    ) -> LeaderboardSnapshot:
        ranked = sorted(
            ((user_id, stats) for user_id, stats in rows.items() if stats.total_picks > 0),
            key=lambda row: (-metric_value(row[1], metric), -row[1].total_picks, row[0]),
        )
        entries = tuple(
            LeaderboardEntry(
                rank=position,
                user_id=user_id,
                value=metric_value(stats, metric),
                total_picks=stats.total_picks,
                hits=stats.hits,
            )
            for position, (user_id, stats) in enumerate(ranked[: self._size], start=1)
        )
        return LeaderboardSnapshot(timeframe=timeframe, metric=metric, generated_at=generated_at, entries=entries)

    def build_group_boards(self, aggregate: AggregateSnapshot) -> dict[GroupBoardKey, GroupPickBoard]:
        """Рейтинг пиков для каждой группы и окна, включая пустые окна."""

        boards: dict[GroupBoardKey, GroupPickBoard] = {}
        for group_id in aggregate.groups:
            by_timeframe = aggregate.group_picks.get(group_id, {})
            for timeframe in Timeframe:
                ranked = sorted(
                    by_timeframe.get(timeframe, ()),
                    key=lambda entry: (-entry.multiplier, entry.pick_id or 0),
                )
                boards[(group_id, timeframe)] = GroupPickBoard(
                    group_id=group_id,
                    timeframe=timeframe,
                    generated_at=aggregate.generated_at,
                    entries=tuple(ranked[: self._size]),
                )
        return boards


__all__ = [
    "GroupBoardKey",
    "GroupPickBoard",
    "LeaderboardBuilder",
    "LeaderboardEntry",
    "LeaderboardKey",
    "LeaderboardMetric",
    "LeaderboardSnapshot",
    "metric_value",
]
