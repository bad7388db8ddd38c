"""Токен и его последний рыночный снапшот."""

from __future__ import annotations

from typing import Optional

from sqlmodel import Field, UniqueConstraint

from .base import TimeStampedModel


class Token(TimeStampedModel, table=True):
    """Пишет только PriceFetcher, один раз за цикл."""

    __tablename__ = "tokens"
    __table_args__ = (UniqueConstraint("address", "chain", name="uq_tokens_address_chain"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    address: str = Field(max_length=128, index=True)
    chain: str = Field(default="solana", max_length=32)
    name: Optional[str] = Field(default=None, max_length=128)
    symbol: Optional[str] = Field(default=None, max_length=32)
    logo_uri: Optional[str] = Field(default=None, max_length=512)
    price: Optional[float] = Field(default=None)
    market_cap: Optional[float] = Field(default=None)
    volume_24h: Optional[float] = Field(default=None)
    liquidity: Optional[float] = Field(default=None)

    @property
    def key(self) -> tuple[str, str]:
        return (self.address, self.chain)


__all__ = ["Token"]
