"""Единая точка сборки aiocache (memory / redis)."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from aiocache import SimpleMemoryCache
from aiocache.base import BaseCache

try:
    from aiocache import RedisCache
except (ImportError, AttributeError):  # pragma: no cover - optional dependency
    RedisCache = None  # type: ignore[assignment]

from config.settings import CacheSettings


def build_cache(settings: CacheSettings) -> BaseCache:
    """Создаёт общий кеш по настройкам. Вызывается один раз на процесс."""

    if settings.backend == "redis":
        if RedisCache is None:
            raise RuntimeError(
                "Для использования RedisCache установите пакет 'redis' и aiocache[redis]"
            )
        return RedisCache(
            namespace=settings.namespace,
            timeout=settings.timeout_sec,
            **_build_redis_config(settings.redis_dsn),
        )
    return SimpleMemoryCache(namespace=settings.namespace, timeout=settings.timeout_sec)


def _build_redis_config(dsn: str | None) -> dict[str, Any]:
    if not dsn:
        raise RuntimeError("CACHE__BACKEND=redis, но redis_dsn не указан")
    parsed = urlparse(dsn)
    if parsed.scheme != "redis":
        raise ValueError(f"Неподдерживаемая схема Redis DSN: {parsed.scheme}")
    db = 0
    if parsed.path and parsed.path != "/":
        try:
            db = int(parsed.path.lstrip("/"))
        except ValueError:
            db = 0
    return {
        "endpoint": parsed.hostname or "localhost",
        "port": parsed.port or 6379,
        "password": parsed.password,
        "db": db,
    }


__all__ = ["build_cache"]
