"""Хранилище для движка: сессии, таймауты и события записи."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickstats.errors import StorageError
from pickstats.models import Token, TokenPick
from . import pick_repo, token_repo

T = TypeVar("T")
WriteCallback = Callable[[TokenPick], Awaitable[None]]


class PickStorage:
    """Единственная точка доступа движка к реляционному хранилищу.

    Любой сбой БД или таймаут превращается в StorageError. После коммита,
    изменившего пик, upsert_pick уведомляет подписчиков on_write (аналог
    NOTIFY-триггера).
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *, timeout: float) -> None:
        self._session_maker = session_maker
        self._timeout = timeout
        self._write_callbacks: list[WriteCallback] = []

    def on_write(self, callback: WriteCallback) -> None:
        self._write_callbacks.append(callback)

    async def list_pending_picks(self, since: datetime) -> list[TokenPick]:
        return await self._run("list_pending_picks", lambda s: pick_repo.list_pending_picks(s, since))

    async def list_picks(self, since: datetime | None = None) -> list[TokenPick]:
        return await self._run("list_picks", lambda s: pick_repo.list_picks(s, since))

    async def list_tokens(self, keys: set[tuple[str, str]]) -> dict[tuple[str, str], Token]:
        return await self._run("list_tokens", lambda s: token_repo.list_tokens(s, keys))

    async def upsert_token(self, token: Token) -> Token:
        return await self._run("upsert_token", lambda s: token_repo.upsert_token(s, token))

    async def upsert_pick(self, pick: TokenPick) -> TokenPick:
        saved, changed = await self._run("upsert_pick", lambda s: pick_repo.upsert_pick(s, pick))
        if not changed:
            return saved
        for callback in self._write_callbacks:
            try:
                await callback(saved)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Подписчик on_write упал на пике {pick}: {error}", pick=saved.id, error=exc)
        return saved

    async def _run(self, operation: str, action: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_maker() as session:
                return await asyncio.wait_for(action(session), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StorageError(f"{operation}: таймаут {self._timeout} c") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"{operation}: {exc}") from exc


__all__ = ["PickStorage", "WriteCallback"]
