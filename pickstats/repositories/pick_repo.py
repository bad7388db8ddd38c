"""Работа с таблицей token_picks."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from pickstats.models import TokenPick
from pickstats.services.market.calculator import compute_multiplier


async def list_pending_picks(session: AsyncSession, since: datetime) -> list[TokenPick]:
    """Пики, которые ещё пересчитываются (call_date внутри окна хранения)."""

    stmt = (
        select(TokenPick)
        .where(TokenPick.call_date >= since)
        .order_by(TokenPick.chain, TokenPick.token_address, TokenPick.id)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def list_picks(session: AsyncSession, since: datetime | None = None) -> list[TokenPick]:
    stmt = select(TokenPick)
    if since is not None:
        stmt = stmt.where(TokenPick.call_date >= since)
    result = await session.exec(stmt.order_by(TokenPick.id))
    return list(result.all())


async def upsert_pick(session: AsyncSession, pick: TokenPick) -> tuple[TokenPick, bool]:
    """Идемпотентная запись пиковых полей.

    Даже при гонке двух владельцев lease highest_market_cap не уменьшается,
    а уже записанный hit_date не перезаписывается. highest_multiplier всегда
    выводится из сохранённого пика и базы на колле. Возвращает запись и
    признак того, что хоть одно поле изменилось.
    """

    existing = None
    if pick.id is not None:
        existing = await session.get(TokenPick, pick.id)
    if existing is None:
        pick.highest_multiplier = compute_multiplier(pick.highest_market_cap, pick.market_cap_at_call)
        merged = await session.merge(pick)
        await session.commit()
        await session.refresh(merged)
        return merged, True

    before = (existing.highest_market_cap, existing.highest_multiplier, existing.hit_date)
    if pick.highest_market_cap is not None and (
        existing.highest_market_cap is None or pick.highest_market_cap > existing.highest_market_cap
    ):
        existing.highest_market_cap = pick.highest_market_cap
    existing.highest_multiplier = compute_multiplier(existing.highest_market_cap, existing.market_cap_at_call)
    if existing.hit_date is None and pick.hit_date is not None:
        existing.hit_date = pick.hit_date
    if (existing.highest_market_cap, existing.highest_multiplier, existing.hit_date) == before:
        return existing, False

    existing.version = max(existing.version + 1, pick.version)
    existing.touch()
    session.add(existing)
    await session.commit()
    await session.refresh(existing)
    return existing, True


__all__ = ["list_pending_picks", "list_picks", "upsert_pick"]
