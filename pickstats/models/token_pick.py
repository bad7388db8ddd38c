"""Публичный колл пользователя на токен."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from .base import TimeStampedModel


class TokenPick(TimeStampedModel, table=True):
    """Пик создаёт внешний ingestion, движок только обновляет пиковые поля.

    ``highest_market_cap`` не убывает, ``hit_date`` пишется один раз,
    ``version`` растёт на единицу при каждом сохранённом изменении.
    """

    __tablename__ = "token_picks"

    id: Optional[int] = Field(default=None, primary_key=True)
    token_address: str = Field(max_length=128, index=True)
    chain: str = Field(default="solana", max_length=32)
    user_id: str = Field(max_length=64, index=True)
    group_id: Optional[int] = Field(default=None, index=True)
    price_at_call: float
    market_cap_at_call: float
    supply_at_call: Optional[float] = Field(default=None)
    call_date: datetime = Field(sa_type=DateTime(timezone=True), index=True)
    highest_market_cap: Optional[float] = Field(default=None)
    highest_multiplier: Optional[float] = Field(default=None)
    hit_date: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    version: int = Field(default=0)

    @property
    def token_key(self) -> tuple[str, str]:
        return (self.token_address, self.chain)


__all__ = ["TokenPick"]
