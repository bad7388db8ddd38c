"""Распределённая блокировка цикла поверх общего кеша.

Lease берётся атомарным ``add`` (SET NX + EX в Redis) и живёт ttl секунд.
Владелец продлевает его, когда с последнего продления прошло больше ttl/2.
Если инстанс упал, lease просто истекает и цикл подхватывает другой инстанс,
поэтому все записи под блокировкой обязаны быть идемпотентными.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

from aiocache.base import BaseCache
from loguru import logger

from pickstats.errors import LockContention


@dataclass(slots=True)
class Lease:
    """Текущее владение ключом блокировки."""

    key: str
    owner: str
    ttl: int
    acquired_at: float
    renewed_at: float
    lost: bool = False

    def due_for_renewal(self, now: float) -> bool:
        return now - self.renewed_at > self.ttl / 2


@dataclass(slots=True, frozen=True)
class LockStatus:
    key: str
    owner: str
    acquired_at: datetime
    ttl: int
    ttl_remaining: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "owner": self.owner,
            "acquired_at": self.acquired_at.isoformat(),
            "ttl": self.ttl,
            "ttl_remaining": round(self.ttl_remaining, 2),
        }


class LockManager:
    """acquire / renew / release / lock_status для ключа цикла."""

    def __init__(
        self,
        cache: BaseCache,
        *,
        timeout: float = 3.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._timeout = timeout
        self._clock = clock

    async def acquire(self, key: str, ttl: int, owner: str) -> Lease | None:
        """Возвращает Lease либо None, если ключом уже владеет кто-то другой."""

        now = self._clock()
        record = self._record(owner, ttl, acquired_at=now, renewed_at=now)
        try:
            await self._call(self._cache.add(key, record, ttl=ttl))
        except ValueError:
            logger.debug("Блокировка {key} занята, цикл пропускаем", key=key)
            return None
        logger.debug("Блокировка {key} получена владельцем {owner} на {ttl} c", key=key, owner=owner, ttl=ttl)
        return Lease(key=key, owner=owner, ttl=ttl, acquired_at=now, renewed_at=now)

    async def renew(self, lease: Lease) -> bool:
        """Продлевает lease, если мы всё ещё владелец. Иначе помечает его потерянным."""

        if lease.lost:
            return False
        now = self._clock()
        record = await self._call(self._cache.get(lease.key))
        if record is None:
            # lease истёк, но ключ никто не занял: пробуем вернуть его себе
            restored = await self.acquire(lease.key, lease.ttl, lease.owner)
            if restored is None:
                lease.lost = True
                logger.warning("Блокировка {key} истекла и занята другим инстансом", key=lease.key)
                return False
            lease.renewed_at = restored.renewed_at
            return True
        if record.get("owner") != lease.owner:
            lease.lost = True
            logger.warning(
                "Блокировка {key} перехвачена владельцем {other}",
                key=lease.key,
                other=record.get("owner"),
            )
            return False
        updated = self._record(lease.owner, lease.ttl, acquired_at=lease.acquired_at, renewed_at=now)
        await self._call(self._cache.set(lease.key, updated, ttl=lease.ttl))
        lease.renewed_at = now
        logger.trace("Блокировка {key} продлена на {ttl} c", key=lease.key, ttl=lease.ttl)
        return True

    async def renew_if_due(self, lease: Lease) -> bool:
        if lease.lost or not lease.due_for_renewal(self._clock()):
            return not lease.lost
        return await self.renew(lease)

    async def release(self, lease: Lease) -> bool:
        """Удаляет ключ, только если он всё ещё наш."""

        record = await self._call(self._cache.get(lease.key))
        if record is None or record.get("owner") != lease.owner:
            logger.debug("Блокировка {key} уже не наша, release пропущен", key=lease.key)
            return False
        await self._call(self._cache.delete(lease.key))
        logger.debug("Блокировка {key} освобождена", key=lease.key)
        return True

    async def lock_status(self, key: str) -> LockStatus | None:
        record = await self._call(self._cache.get(key))
        if record is None:
            return None
        now = self._clock()
        return LockStatus(
            key=key,
            owner=record["owner"],
            acquired_at=datetime.fromtimestamp(record["acquired_at"], tz=timezone.utc),
            ttl=int(record["ttl"]),
            ttl_remaining=max(0.0, float(record["expires_at"]) - now),
        )

    @asynccontextmanager
    async def hold(self, key: str, ttl: int, owner: str) -> AsyncIterator[Lease]:
        """Держит lease на время блока с фоновым heartbeat.

        Бросает LockContention, если ключ занят. Lease освобождается сразу
        при выходе из блока, в том числе при ошибке или отмене.
        """

        lease = await self.acquire(key, ttl, owner)
        if lease is None:
            status = await self.lock_status(key)
            raise LockContention(key, status.owner if status else None)
        heartbeat = asyncio.create_task(self._heartbeat(lease), name=f"lock-heartbeat:{key}")
        try:
            yield lease
        finally:
            heartbeat.cancel()
            try:
                await self.release(lease)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Не удалось освободить блокировку {key}: {error}", key=key, error=exc)

    async def _heartbeat(self, lease: Lease) -> None:
        interval = max(lease.ttl / 4, 0.05)
        while not lease.lost:
            await asyncio.sleep(interval)
            try:
                await self.renew_if_due(lease)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Heartbeat блокировки {key} упал: {error}", key=lease.key, error=exc)

    def _record(self, owner: str, ttl: int, *, acquired_at: float, renewed_at: float) -> dict[str, Any]:
        return {
            "owner": owner,
            "ttl": ttl,
            "acquired_at": acquired_at,
            "renewed_at": renewed_at,
            "expires_at": renewed_at + ttl,
        }

    async def _call(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self._timeout)


__all__ = ["Lease", "LockManager", "LockStatus"]
