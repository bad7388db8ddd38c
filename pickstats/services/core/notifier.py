"""События об изменениях и их доставка подписчикам.

Доставка at-least-once: потребители дедуплицируют по event_id,
который детерминированно собран из типа, сущности и версии.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

import aiohttp
from aiocache.base import BaseCache
from aiogram import Bot
from loguru import logger

from pickstats.models import TokenPick
from pickstats.models.base import ensure_utc

PICK_UPDATED = "token_pick.updated"
LEADERBOARD_REFRESHED = "leaderboard.refreshed"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    event_type: str
    entity_id: str
    version: int
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_id(self) -> str:
        return f"{self.event_type}:{self.entity_id}:{self.version}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "version": self.version,
            "emitted_at": self.emitted_at.isoformat(),
            "payload": self.payload,
        }


EventCallback = Callable[[ChangeEvent], Awaitable[None]]


def pick_payload(pick: TokenPick) -> dict[str, Any]:
    hit_date = ensure_utc(pick.hit_date)
    return {
        "id": pick.id,
        "token_address": pick.token_address,
        "chain": pick.chain,
        "user_id": pick.user_id,
        "group_id": pick.group_id,
        "market_cap_at_call": pick.market_cap_at_call,
        "highest_market_cap": pick.highest_market_cap,
        "highest_multiplier": round(pick.highest_multiplier, 2) if pick.highest_multiplier is not None else None,
        "hit_date": hit_date.isoformat() if hit_date else None,
        "call_date": ensure_utc(pick.call_date).isoformat(),
        "version": pick.version,
    }


class Notifier:
    """Принимает publish() и раздаёт событие всем подписчикам."""

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> None:
        self._subscribers.append(callback)

    async def publish(self, event_type: str, entity_id: str, version: int, payload: dict[str, Any]) -> ChangeEvent:
        event = ChangeEvent(event_type=event_type, entity_id=entity_id, version=version, payload=payload)
        if self._subscribers:
            await asyncio.gather(*(self._safe_emit(cb, event) for cb in self._subscribers))
        return event

    async def on_pick_written(self, pick: TokenPick) -> None:
        """Подписка на PickStorage.on_write."""

        await self.publish(PICK_UPDATED, str(pick.id), pick.version, pick_payload(pick))

    async def _safe_emit(self, callback: EventCallback, event: ChangeEvent) -> None:
        try:
            await callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Подписчик событий упал на {event}: {error}", event=event.event_id, error=exc)


class WebhookSink:
    """POST события на внешние URL."""

    def __init__(self, session: aiohttp.ClientSession, urls: Sequence[str], timeout: float) -> None:
        self._session = session
        self._urls = list(urls)
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __call__(self, event: ChangeEvent) -> None:
        if not self._urls:
            return
        payload = event.as_dict()
        await asyncio.gather(*(self._post(url, payload) for url in self._urls))

    async def _post(self, url: str, payload: dict) -> None:
        try:
            async with self._session.post(
                url,
                json=payload,
                timeout=self._timeout,
                headers={"X-Event-Id": payload["event_id"]},
            ) as resp:
                if resp.status >= 400:
                    logger.debug("Webhook {url} ответил статусом {status}", url=url, status=resp.status)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Webhook {url} не доступен: {error}", url=url, error=exc)


class TelegramHitSink:
    """Сообщение в Telegram-чат, когда пик впервые становится хитом.

    Повторы того же хита отсекаются через add() в общем кеше, поэтому
    сообщение уходит один раз даже при повторной доставке события. Метка
    живёт дольше окна хранения: после него пик больше не пересчитывается.
    """

    def __init__(self, bot: Bot, chat_id: int, cache: BaseCache, *, retention_days: int = 30) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._cache = cache
        self.dedup_ttl = (retention_days + 1) * 24 * 3600

    async def __call__(self, event: ChangeEvent) -> None:
        if event.event_type != PICK_UPDATED or not event.payload.get("hit_date"):
            return
        try:
            await self._cache.add(f"hit-notified:{event.entity_id}", 1, ttl=self.dedup_ttl)
        except ValueError:
            return
        await self._bot.send_message(chat_id=self._chat_id, text=self.format_message(event.payload))

    @staticmethod
    def format_message(payload: dict[str, Any]) -> str:
        address = payload["token_address"]
        multiplier = payload.get("highest_multiplier") or 0.0
        return (
            f"🎯 Пик #{payload['id']} на <code>{address}</code> сделал x{multiplier:.2f}\n"
            f"Капитализация на колле: {payload['market_cap_at_call']:,.0f} → "
            f"пик: {payload['highest_market_cap'] or 0:,.0f}"
        )


__all__ = [
    "ChangeEvent",
    "EventCallback",
    "LEADERBOARD_REFRESHED",
    "Notifier",
    "PICK_UPDATED",
    "TelegramHitSink",
    "WebhookSink",
    "pick_payload",
]
