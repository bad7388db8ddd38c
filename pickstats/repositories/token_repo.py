"""Работа с таблицей tokens."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from pickstats.models import Token

_MARKET_FIELDS = ("name", "symbol", "logo_uri", "price", "market_cap", "volume_24h", "liquidity")


async def get_token(session: AsyncSession, address: str, chain: str) -> Token | None:
    stmt = select(Token).where(Token.address == address, Token.chain == chain)
    return (await session.exec(stmt)).one_or_none()


async def list_tokens(session: AsyncSession, keys: set[tuple[str, str]]) -> dict[tuple[str, str], Token]:
    if not keys:
        return {}
    addresses = {address for address, _ in keys}
    stmt = select(Token).where(col(Token.address).in_(addresses))
    tokens = (await session.exec(stmt)).all()
    return {token.key: token for token in tokens if token.key in keys}


async def upsert_token(session: AsyncSession, token: Token) -> Token:
    """Обновляет снапшот; пустые поля не затирают уже сохранённые значения."""

    existing = await get_token(session, token.address, token.chain)
    if existing is None:
        existing = Token(address=token.address, chain=token.chain)
    for field in _MARKET_FIELDS:
        value = getattr(token, field)
        if value is not None:
            setattr(existing, field, value)
    existing.touch()
    session.add(existing)
    await session.commit()
    await session.refresh(existing)
    return existing


__all__ = ["get_token", "list_tokens", "upsert_token"]
