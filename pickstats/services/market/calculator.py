"""Пересчёт пиковых полей пика по свежей капитализации."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from config.settings import ScoringSettings
from pickstats.errors import PermanentDataError
from pickstats.models import Token, TokenPick
from .price_fetcher import TokenSnapshot


@dataclass(slots=True, frozen=True)
class PickUpdate:
    """Новые значения пика. Возвращается только если что-то изменилось."""

    pick: TokenPick
    highest_market_cap: float
    highest_multiplier: float | None
    hit_date: datetime | None
    is_new_hit: bool

    def apply(self) -> TokenPick:
        """Копия пика с новыми полями и следующей версией."""

        data = self.pick.model_dump()
        data.update(
            highest_market_cap=self.highest_market_cap,
            highest_multiplier=self.highest_multiplier,
            hit_date=self.hit_date,
            version=self.pick.version + 1,
        )
        updated = TokenPick(**data)
        updated.touch()
        return updated


def compute_multiplier(market_cap: float | None, market_cap_at_call: float) -> float | None:
    """highest_market_cap / market_cap_at_call; None при нулевой базе."""

    if market_cap is None or market_cap_at_call <= 0:
        return None
    return market_cap / market_cap_at_call


def observed_market_cap(pick: TokenPick, snapshot: TokenSnapshot) -> float:
    """Капитализация из снапшота либо price × supply_at_call."""

    market_cap = snapshot.market_cap
    if market_cap is None and pick.supply_at_call:
        market_cap = snapshot.price * pick.supply_at_call
    if market_cap is None or not math.isfinite(market_cap) or market_cap <= 0:
        raise PermanentDataError(f"Нет капитализации для {pick.token_address} (пик {pick.id})")
    return market_cap


def evaluate_pick(
    pick: TokenPick,
    market_cap: float,
    *,
    hit_threshold: float,
    now: datetime,
) -> PickUpdate | None:
    """Применяет max/multiplier/hit к пику.

    highest_market_cap не уменьшается, hit_date пишется один раз.
    Возвращает None, если ни одно поле не поменялось.
    """

    previous_high = pick.highest_market_cap
    highest = market_cap if previous_high is None else max(previous_high, market_cap)
    multiplier = compute_multiplier(highest, pick.market_cap_at_call)
    hit_date = pick.hit_date
    is_new_hit = False
    if hit_date is None and multiplier is not None and multiplier >= hit_threshold:
        hit_date = now
        is_new_hit = True

    if (
        highest == previous_high
        and multiplier == pick.highest_multiplier
        and hit_date == pick.hit_date
    ):
        return None
    return PickUpdate(
        pick=pick,
        highest_market_cap=highest,
        highest_multiplier=multiplier,
        hit_date=hit_date,
        is_new_hit=is_new_hit,
    )


def is_qualified(pick: TokenPick, token: Token | None, scoring: ScoringSettings) -> bool:
    """Участвует ли пик в статистике и лидербордах.

    Отсекает пики на микро-капах и токенах с ликвидностью, несоизмеримой
    с объёмом торгов.
    """

    if pick.market_cap_at_call <= 0:
        return False
    if not scoring.qualification_enabled:
        return True
    if pick.market_cap_at_call <= scoring.min_call_market_cap:
        return False
    if token is None or token.liquidity is None or token.volume_24h is None:
        return False
    if pick.market_cap_at_call < scoring.large_cap_threshold:
        return token.liquidity >= token.volume_24h * scoring.min_liquidity_ratio
    return token.liquidity >= scoring.min_liquidity_usd


def stats_multiplier(pick: TokenPick) -> float:
    """Множитель для агрегатов: ещё не пересчитанный пик считается как 1.0."""

    if pick.highest_multiplier is None:
        return 1.0
    return pick.highest_multiplier


__all__ = [
    "PickUpdate",
    "compute_multiplier",
    "evaluate_pick",
    "is_qualified",
    "observed_market_cap",
    "stats_multiplier",
]
