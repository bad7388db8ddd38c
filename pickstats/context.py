"""Глобальные сервисы и зависимости PickStats.

Все хэндлы (кеш, сессии БД, HTTP, настройки) создаются здесь один раз
и передаются в компоненты через конструкторы.
"""

from __future__ import annotations

from dataclasses import dataclass

import aiohttp
from aiocache.base import BaseCache
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AppSettings, get_settings
from .db import build_engine, build_session_maker
from .repositories import PickStorage
from .services.core.lock_manager import LockManager
from .services.core.notifier import Notifier, TelegramHitSink, WebhookSink
from .services.core.publisher import SnapshotPublisher
from .services.market.price_fetcher import MarketDataProvider, PriceFetcher
from .services.pipeline.cycle import CycleRunner
from .services.pipeline.scheduler import Scheduler
from .services.stats.aggregation import AggregationEngine
from .services.stats.leaderboard import LeaderboardBuilder
from .utils.cache import build_cache
from .utils.retry import RetryPolicy


@dataclass(slots=True)
class EngineContext:
    settings: AppSettings
    cache: BaseCache
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    http: aiohttp.ClientSession
    storage: PickStorage
    lock_manager: LockManager
    notifier: Notifier
    publisher: SnapshotPublisher
    runner: CycleRunner
    scheduler: Scheduler
    bot: Bot | None = None

    async def close(self) -> None:
        await self.http.close()
        if self.bot is not None:
            await self.bot.session.close()
        await self.cache.close()
        await self.engine.dispose()
        logger.debug("Хэндлы контекста закрыты")


def build_context(settings: AppSettings | None = None) -> EngineContext:
    """Собирает движок из настроек. Вызывать внутри запущенного event loop."""

    settings = settings or get_settings()

    cache = build_cache(settings.cache)
    engine = build_engine(settings.database)
    session_maker = build_session_maker(engine)
    storage = PickStorage(session_maker, timeout=settings.engine.storage_timeout_sec)
    http = aiohttp.ClientSession()

    provider_cfg = settings.provider
    fetcher = PriceFetcher(
        MarketDataProvider(http, provider_cfg),
        RetryPolicy(
            max_attempts=provider_cfg.retry_attempts,
            base_delay=provider_cfg.backoff_base_sec,
            max_delay=provider_cfg.backoff_max_sec,
        ),
    )
    lock_manager = LockManager(cache, timeout=settings.lock.cache_timeout_sec)

    notifier = Notifier()
    notifier_cfg = settings.notifier
    if notifier_cfg.webhook_urls:
        notifier.subscribe(
            WebhookSink(http, [str(url) for url in notifier_cfg.webhook_urls], notifier_cfg.webhook_timeout_sec)
        )
    bot: Bot | None = None
    if notifier_cfg.telegram_token is not None and notifier_cfg.telegram_chat_id is not None:
        bot = Bot(
            token=notifier_cfg.telegram_token.get_secret_value(),
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )
        notifier.subscribe(
            TelegramHitSink(
                bot,
                notifier_cfg.telegram_chat_id,
                cache,
                retention_days=settings.engine.retention_days,
            )
        )
    storage.on_write(notifier.on_pick_written)

    publisher = SnapshotPublisher(
        cache,
        notifier,
        ttl=settings.cache.ttl_seconds,
        timeout=settings.cache.timeout_sec,
    )
    runner = CycleRunner(
        settings=settings,
        storage=storage,
        lock_manager=lock_manager,
        fetcher=fetcher,
        aggregation=AggregationEngine(settings.scoring),
        leaderboards=LeaderboardBuilder(settings.scoring.leaderboard_size),
        publisher=publisher,
    )
    scheduler = Scheduler(
        runner,
        interval=settings.engine.cycle_interval_sec,
        grace=settings.engine.shutdown_grace_sec,
    )
    return EngineContext(
        settings=settings,
        cache=cache,
        engine=engine,
        session_maker=session_maker,
        http=http,
        storage=storage,
        lock_manager=lock_manager,
        notifier=notifier,
        publisher=publisher,
        runner=runner,
        scheduler=scheduler,
        bot=bot,
    )


__all__ = ["EngineContext", "build_context"]
