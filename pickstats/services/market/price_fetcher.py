"""Снапшоты цен и капитализации токенов от внешнего провайдера.

Провайдер дергается не чаще одного раза на токен за цикл: CycleQuotes
запоминает результат (и неудачу) для каждой пары (address, chain), а
параллельные батчи, которым нужен один и тот же токен, ждут общий запрос.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

import aiohttp
from loguru import logger

from config.settings import ProviderSettings
from pickstats.errors import PermanentDataError, TransientProviderError
from pickstats.models import Token
from pickstats.utils.retry import RetryPolicy, retry_async

TokenKey = tuple[str, str]
TOKEN_OVERVIEW_PATH = "/defi/token_overview"
TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(slots=True, frozen=True)
class TokenSnapshot:
    """Рыночные данные токена на момент запроса."""

    address: str
    chain: str
    price: float
    market_cap: float | None
    volume_24h: float | None
    liquidity: float | None
    name: str | None = None
    symbol: str | None = None
    logo_uri: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> TokenKey:
        return (self.address, self.chain)

    def to_token(self, market_cap: float | None = None) -> Token:
        return Token(
            address=self.address,
            chain=self.chain,
            name=self.name,
            symbol=self.symbol,
            logo_uri=self.logo_uri,
            price=self.price,
            market_cap=market_cap if market_cap is not None else self.market_cap,
            volume_24h=self.volume_24h,
            liquidity=self.liquidity,
        )


class MarketDataProvider:
    """Birdeye-совместимый HTTP клиент (token_overview на один адрес)."""

    def __init__(self, session: aiohttp.ClientSession, settings: ProviderSettings) -> None:
        self._session = session
        self._url = str(settings.base_url).rstrip("/") + TOKEN_OVERVIEW_PATH
        self._api_key = settings.api_key.get_secret_value()
        self._timeout = aiohttp.ClientTimeout(total=settings.request_timeout)

    async def fetch(self, address: str, chain: str) -> TokenSnapshot:
        headers = {"x-chain": chain, "accept": "application/json"}
        if self._api_key:
            headers["X-API-KEY"] = self._api_key
        try:
            async with self._session.get(
                self._url,
                params={"address": address},
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                if resp.status in TRANSIENT_STATUSES:
                    raise TransientProviderError(
                        f"HTTP {resp.status} для {address}",
                        status=resp.status,
                        retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
                    )
                if resp.status != 200:
                    raise PermanentDataError(f"HTTP {resp.status} для {address}")
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    raise PermanentDataError(f"Невалидный JSON для {address}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientProviderError(f"Запрос {address} упал: {exc!r}") from exc
        return parse_overview(address, chain, data)


def parse_overview(address: str, chain: str, data: Any) -> TokenSnapshot:
    """Разбирает ответ провайдера. Нули и мусор никогда не попадают в снапшот."""

    if not isinstance(data, dict) or not data.get("success"):
        raise PermanentDataError(f"Провайдер не вернул данные для {address}")
    item = data.get("data")
    if not isinstance(item, dict):
        raise PermanentDataError(f"Пустой data для {address}")
    price = _positive(item.get("price"))
    if price is None:
        raise PermanentDataError(f"Нет корректной цены для {address}: {item.get('price')!r}")
    market_cap = _positive(item.get("mc"))
    if market_cap is None:
        market_cap = _positive(item.get("marketCap"))
    return TokenSnapshot(
        address=address,
        chain=chain,
        price=price,
        market_cap=market_cap,
        volume_24h=_non_negative(item.get("v24hUSD")),
        liquidity=_non_negative(item.get("liquidity")),
        name=item.get("name") or None,
        symbol=item.get("symbol") or None,
        logo_uri=item.get("logoURI") or None,
    )


class PriceFetcher:
    """Обёртка над провайдером: ретраи и дедупликация на цикл."""

    def __init__(self, provider: MarketDataProvider, policy: RetryPolicy) -> None:
        self._provider = provider
        self._policy = policy

    def begin_cycle(self) -> "CycleQuotes":
        return CycleQuotes(self._provider, self._policy)


class CycleQuotes:
    """Память котировок на один цикл."""

    def __init__(self, provider: MarketDataProvider, policy: RetryPolicy) -> None:
        self._provider = provider
        self._policy = policy
        self._tasks: dict[TokenKey, asyncio.Task[TokenSnapshot | None]] = {}
        self.fetched = 0
        self.failed = 0

    @property
    def calls(self) -> int:
        return len(self._tasks)

    async def get_many(self, keys: Iterable[TokenKey]) -> dict[TokenKey, TokenSnapshot]:
        """Снапшоты для набора токенов; пропущенные токены отсутствуют в ответе."""

        snapshots: dict[TokenKey, TokenSnapshot] = {}
        for key in dict.fromkeys(keys):
            snapshot = await self.get(key)
            if snapshot is not None:
                snapshots[key] = snapshot
        return snapshots

    async def get(self, key: TokenKey) -> TokenSnapshot | None:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.create_task(self._load(key), name=f"quote:{key[1]}:{key[0]}")
            self._tasks[key] = task
        return await asyncio.shield(task)

    async def _load(self, key: TokenKey) -> TokenSnapshot | None:
        address, chain = key
        try:
            snapshot = await retry_async(
                lambda: self._provider.fetch(address, chain),
                self._policy,
                label=f"quote {chain}:{address}",
            )
        except TransientProviderError as exc:
            self.failed += 1
            logger.warning("Токен {addr} пропущен в этом цикле: {error}", addr=address, error=exc)
            return None
        except PermanentDataError as exc:
            self.failed += 1
            logger.info("Токен {addr} пропущен, плохие данные: {error}", addr=address, error=exc)
            return None
        self.fetched += 1
        return snapshot

    async def close(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)


def _to_float(value: Any) -> float | None:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _positive(value: Any) -> float | None:
    parsed = _to_float(value)
    return parsed if parsed is not None and parsed > 0 else None


def _non_negative(value: Any) -> float | None:
    parsed = _to_float(value)
    return parsed if parsed is not None and parsed >= 0 else None


def _parse_retry_after(value: str | None) -> float | None:
    return _non_negative(value) if value else None


__all__ = [
    "CycleQuotes",
    "MarketDataProvider",
    "PriceFetcher",
    "TokenKey",
    "TokenSnapshot",
    "parse_overview",
]
