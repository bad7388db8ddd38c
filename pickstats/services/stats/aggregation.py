"""Свёртка пиков в статистику пользователей и групп по окнам."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from config.settings import ScoringSettings
from pickstats.models import Token, TokenPick
from pickstats.models.base import ensure_utc
from pickstats.services.market.calculator import is_qualified, stats_multiplier
from pickstats.utils.timeframes import Timeframe


@dataclass(slots=True, frozen=True)
class BestPick:
    pick_id: int | None
    token_address: str
    symbol: str | None
    multiplier: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "pick_id": self.pick_id,
            "token_address": self.token_address,
            "symbol": self.symbol,
            "multiplier": round(self.multiplier, 2),
        }


@dataclass(slots=True)
class PickStats:
    """Агрегат по одному окну. Пустой агрегат считается валидным нулевым результатом."""

    total_picks: int = 0
    hits: int = 0
    pick_returns: float = 0.0
    best_pick: BestPick | None = None

    @property
    def misses(self) -> int:
        return self.total_picks - self.hits

    @property
    def hit_rate(self) -> float:
        """Доля хитов в процентах."""

        if not self.total_picks:
            return 0.0
        return round(self.hits * 100 / self.total_picks, 2)

    @property
    def average_multiplier(self) -> float:
        if not self.total_picks:
            return 0.0
        return self.pick_returns / self.total_picks

    def add(self, pick: TokenPick, multiplier: float, symbol: str | None) -> None:
        self.total_picks += 1
        self.pick_returns += multiplier
        if pick.hit_date is not None:
            self.hits += 1
        best = self.best_pick
        if (
            best is None
            or multiplier > best.multiplier
            or (multiplier == best.multiplier and (pick.id or 0) < (best.pick_id or 0))
        ):
            self.best_pick = BestPick(pick.id, pick.token_address, symbol, multiplier)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_picks": self.total_picks,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "pick_returns": round(self.pick_returns, 2),
            "average_multiplier": round(self.average_multiplier, 2),
            "best_pick": self.best_pick.as_dict() if self.best_pick else None,
        }


@dataclass(slots=True, frozen=True)
class RankedPick:
    """Квалифицированный пик группы внутри окна."""

    pick_id: int | None
    user_id: str
    token_address: str
    symbol: str | None
    multiplier: float
    call_date: datetime
    hit_date: datetime | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "pick_id": self.pick_id,
            "user_id": self.user_id,
            "token_address": self.token_address,
            "symbol": self.symbol,
            "multiplier": round(self.multiplier, 4),
            "call_date": self.call_date.isoformat(),
            "hit_date": self.hit_date.isoformat() if self.hit_date else None,
        }


StatsByTimeframe = dict[Timeframe, PickStats]


def empty_stats() -> StatsByTimeframe:
    return {timeframe: PickStats() for timeframe in Timeframe}


@dataclass(slots=True)
class AggregateSnapshot:
    generated_at: datetime
    users: dict[str, StatsByTimeframe] = field(default_factory=dict)
    groups: dict[int, StatsByTimeframe] = field(default_factory=dict)
    group_picks: dict[int, dict[Timeframe, list[RankedPick]]] = field(default_factory=dict)
    eligible_picks: int = 0

    def user_stats(self, user_id: str, timeframe: Timeframe) -> PickStats:
        return self.users.get(user_id, {}).get(timeframe) or PickStats()

    def group_stats(self, group_id: int, timeframe: Timeframe) -> PickStats:
        return self.groups.get(group_id, {}).get(timeframe) or PickStats()


class AggregationEngine:
    """Считает total/hits/hit_rate/avg/best для каждого окна."""

    def __init__(self, scoring: ScoringSettings) -> None:
        self._scoring = scoring

    def aggregate(
        self,
        picks: Iterable[TokenPick],
        tokens: Mapping[tuple[str, str], Token],
        now: datetime,
    ) -> AggregateSnapshot:
        snapshot = AggregateSnapshot(generated_at=now)
        users: dict[str, StatsByTimeframe] = defaultdict(empty_stats)
        groups: dict[int, StatsByTimeframe] = defaultdict(empty_stats)
        group_picks: dict[int, dict[Timeframe, list[RankedPick]]] = defaultdict(lambda: defaultdict(list))

        for pick in picks:
            user_bucket = users[pick.user_id]
            group_bucket = groups[pick.group_id] if pick.group_id is not None else None
            token = tokens.get(pick.token_key)
            if not is_qualified(pick, token, self._scoring):
                continue
            snapshot.eligible_picks += 1
            multiplier = stats_multiplier(pick)
            symbol = token.symbol if token else None
            call_date = ensure_utc(pick.call_date)
            ranked = RankedPick(
                pick_id=pick.id,
                user_id=pick.user_id,
                token_address=pick.token_address,
                symbol=symbol,
                multiplier=multiplier,
                call_date=call_date,
                hit_date=ensure_utc(pick.hit_date),
            )
            for timeframe in Timeframe:
                if not timeframe.contains(call_date, now):
                    continue
                user_bucket[timeframe].add(pick, multiplier, symbol)
                if group_bucket is not None:
                    group_bucket[timeframe].add(pick, multiplier, symbol)
                    group_picks[pick.group_id][timeframe].append(ranked)

        snapshot.users = dict(users)
        snapshot.groups = dict(groups)
        snapshot.group_picks = {group_id: dict(by_timeframe) for group_id, by_timeframe in group_picks.items()}
        return snapshot


__all__ = [
    "AggregateSnapshot",
    "AggregationEngine",
    "BestPick",
    "PickStats",
    "RankedPick",
    "StatsByTimeframe",
    "empty_stats",
]
