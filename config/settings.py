"""Глобальные настройки PickStats.

Настройки разделены по доменам (движок циклов, блокировка, скоринг, провайдер цен,
кеш, БД, уведомления), поэтому любой параметр цикла можно поменять без правки кода.
Вся конфигурация загружается из переменных окружения через Pydantic Settings,
поэтому сервис легко деплоить в любой инфраструктуре (Docker, Kubernetes).
"""

from __future__ import annotations

import os
import socket
from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


def _default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class EngineSettings(BaseModel):
    """Параметры периодического цикла пересчёта пиков."""

    cycle_interval_sec: PositiveFloat = Field(
        60.0, description="Пауза между концом одного цикла и началом следующего"
    )
    batch_size: PositiveInt = 50
    worker_count: PositiveInt = Field(4, description="Ширина пула батчей (50 × 4 = 200 пиков)")
    retention_days: PositiveInt = Field(30, description="Пики старше окна больше не пересчитываются")
    storage_timeout_sec: PositiveFloat = 10.0
    shutdown_grace_sec: PositiveFloat = 10.0
    instance_id: str = Field(default_factory=_default_instance_id)


class LockSettings(BaseModel):
    """Распределённая блокировка цикла (lease в общем кеше)."""

    key: str = "processing-lock"
    ttl_seconds: PositiveInt = 180
    cache_timeout_sec: PositiveFloat = 3.0


class ScoringSettings(BaseModel):
    """Порог хита и правила квалификации пика для статистики."""

    hit_multiplier: PositiveFloat = 2.0
    qualification_enabled: bool = True
    min_call_market_cap: float = 40_000.0
    large_cap_threshold: float = 1_000_000.0
    min_liquidity_ratio: float = 0.04
    min_liquidity_usd: float = 40_000.0
    leaderboard_size: PositiveInt = 100


class ProviderSettings(BaseModel):
    """Внешний провайдер рыночных данных (Birdeye-совместимый API)."""

    base_url: AnyHttpUrl = Field(
        "https://public-api.birdeye.so",
        description="Базовый URL провайдера, к нему добавляется /defi/token_overview",
    )
    api_key: SecretStr = Field(default=SecretStr(""), description="X-API-KEY провайдера")
    request_timeout: PositiveFloat = 5.0
    retry_attempts: PositiveInt = 3
    backoff_base_sec: float = 0.5
    backoff_max_sec: float = 8.0


class CacheSettings(BaseModel):
    """Настройки кешей (aiocache поддерживает memory / redis)."""

    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = Field(90, description="TTL снапшотов, должен быть больше интервала цикла")
    redis_dsn: str | None = None
    namespace: str = "pickstats"
    timeout_sec: PositiveFloat = 3.0


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite (по умолчанию) и готовность к Postgres."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./pickstats.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False


class NotifierSettings(BaseModel):
    """Куда пересылать события об изменениях."""

    webhook_urls: list[AnyHttpUrl] = Field(default_factory=list)
    webhook_timeout_sec: PositiveFloat = 3.0
    telegram_token: SecretStr | None = Field(None, description="Токен бота для алертов о хитах")
    telegram_chat_id: int | None = None

    @field_validator("telegram_token", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class OpsSettings(BaseModel):
    """Служебный HTTP (статус блокировки и ручной запуск цикла)."""

    jwt_secret: SecretStr = Field(default=SecretStr(""), description="Секрет для ops-токенов")
    jwt_algorithm: str = "HS256"
    jwt_ttl_minutes: int = 60
    host: str = "0.0.0.0"
    port: PositiveInt = 8080


class AppSettings(BaseSettings):
    """Главный контейнер настроек PickStats."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    engine: EngineSettings = EngineSettings()
    lock: LockSettings = LockSettings()
    scoring: ScoringSettings = ScoringSettings()
    provider: ProviderSettings = ProviderSettings()
    cache: CacheSettings = CacheSettings()
    database: DatabaseSettings = DatabaseSettings()
    notifier: NotifierSettings = NotifierSettings()
    ops: OpsSettings = OpsSettings()

    @model_validator(mode="after")
    def _cache_outlives_cycle(self) -> "AppSettings":
        if self.cache.ttl_seconds <= self.engine.cycle_interval_sec:
            raise ValueError(
                "cache.ttl_seconds должен быть больше engine.cycle_interval_sec, "
                "иначе снапшоты истекают раньше следующего цикла"
            )
        return self

    @property
    def is_production(self) -> bool:
        """True, если сервис запущен в продовой среде."""

        return self.environment == "prod"

    @property
    def lock_key(self) -> str:
        """Ключ блокировки цикла с префиксом окружения."""

        return f"{self.environment}-{self.lock.key}"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Вызываем только на границах процесса (main, scripts, web); сервисы получают
    нужные секции через конструктор.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()  # type: ignore[call-arg]
    return _settings


__all__ = [
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "EngineSettings",
    "LockSettings",
    "NotifierSettings",
    "OpsSettings",
    "ProviderSettings",
    "ScoringSettings",
    "get_settings",
]
