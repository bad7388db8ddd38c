"""Shared fixtures and doubles for the PickStats engine tests."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable

import pytest
from aiocache import SimpleMemoryCache

from config.settings import (
    AppSettings,
    CacheSettings,
    EngineSettings,
    LockSettings,
    ScoringSettings,
)
from pickstats.errors import PermanentDataError, StorageError, TransientProviderError
from pickstats.models import Token, TokenPick
from pickstats.services.market.calculator import compute_multiplier
from pickstats.services.market.price_fetcher import TokenSnapshot

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_pick(
    pick_id: int,
    *,
    address: str = "TokA",
    chain: str = "solana",
    user_id: str = "alice",
    group_id: int | None = None,
    market_cap_at_call: float = 100_000.0,
    call_date: datetime | None = None,
    highest_market_cap: float | None = None,
    highest_multiplier: float | None = None,
    hit_date: datetime | None = None,
    supply_at_call: float | None = None,
    version: int = 0,
) -> TokenPick:
    return TokenPick(
        id=pick_id,
        token_address=address,
        chain=chain,
        user_id=user_id,
        group_id=group_id,
        price_at_call=1.0,
        market_cap_at_call=market_cap_at_call,
        supply_at_call=supply_at_call,
        call_date=call_date or NOW - timedelta(hours=1),
        highest_market_cap=highest_market_cap,
        highest_multiplier=highest_multiplier,
        hit_date=hit_date,
        version=version,
    )


def make_snapshot(address: str, market_cap: float | None, *, chain: str = "solana", price: float = 1.0) -> TokenSnapshot:
    return TokenSnapshot(
        address=address,
        chain=chain,
        price=price,
        market_cap=market_cap,
        volume_24h=1_000.0,
        liquidity=500.0,
        symbol=address.upper(),
    )


class FakeProvider:
    """Market data double: a market cap or an exception per address."""

    def __init__(self, quotes: dict[str, float | BaseException] | None = None) -> None:
        self.quotes: dict[str, float | BaseException] = dict(quotes or {})
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, address: str, chain: str) -> TokenSnapshot:
        self.calls.append((address, chain))
        value = self.quotes.get(address)
        if value is None:
            raise PermanentDataError(f"unknown token {address}")
        if isinstance(value, BaseException):
            raise value
        return make_snapshot(address, value, chain=chain)

    def calls_for(self, address: str) -> int:
        return sum(1 for called, _ in self.calls if called == address)


class InMemoryStorage:
    """PickStorage double with the same idempotent upsert rules."""

    def __init__(self, picks: Iterable[TokenPick] = ()) -> None:
        self.picks: dict[int, TokenPick] = {pick.id: pick for pick in picks}
        self.tokens: dict[tuple[str, str], Token] = {}
        self.pick_writes: list[TokenPick] = []
        self.token_writes: list[Token] = []
        self.fail_on: set[str] = set()
        self.reads = 0
        self.notified: list[int] = []
        self._callbacks = []

    def on_write(self, callback) -> None:
        self._callbacks.append(callback)

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"{operation}: database is down")

    async def list_pending_picks(self, since: datetime) -> list[TokenPick]:
        self._check("list_pending_picks")
        self.reads += 1
        picks = [pick for pick in self.picks.values() if pick.call_date >= since]
        return sorted(picks, key=lambda p: (p.chain, p.token_address, p.id))

    async def list_picks(self, since: datetime | None = None) -> list[TokenPick]:
        self._check("list_picks")
        self.reads += 1
        return [p for _, p in sorted(self.picks.items()) if since is None or p.call_date >= since]

    async def list_tokens(self, keys: set[tuple[str, str]]) -> dict[tuple[str, str], Token]:
        self._check("list_tokens")
        return {key: token for key, token in self.tokens.items() if key in keys}

    async def upsert_token(self, token: Token) -> Token:
        self._check("upsert_token")
        self.token_writes.append(token)
        self.tokens[token.key] = token
        return token

    async def upsert_pick(self, pick: TokenPick) -> TokenPick:
        self._check("upsert_pick")
        self.pick_writes.append(pick)
        existing = self.picks.get(pick.id)
        if existing is None:
            pick.highest_multiplier = compute_multiplier(pick.highest_market_cap, pick.market_cap_at_call)
            self.picks[pick.id] = pick
            await self._notify(pick)
            return pick

        before = (existing.highest_market_cap, existing.highest_multiplier, existing.hit_date)
        if pick.highest_market_cap is not None and (
            existing.highest_market_cap is None or pick.highest_market_cap > existing.highest_market_cap
        ):
            existing.highest_market_cap = pick.highest_market_cap
        existing.highest_multiplier = compute_multiplier(existing.highest_market_cap, existing.market_cap_at_call)
        if existing.hit_date is None and pick.hit_date is not None:
            existing.hit_date = pick.hit_date
        if (existing.highest_market_cap, existing.highest_multiplier, existing.hit_date) == before:
            return existing
        existing.version = max(existing.version + 1, pick.version)
        await self._notify(existing)
        return existing

    async def _notify(self, pick: TokenPick) -> None:
        self.notified.append(pick.id)
        for callback in self._callbacks:
            await callback(pick)


@pytest.fixture
def memory_cache():
    # SimpleMemoryCache may share its store between instances, so isolate by namespace
    return SimpleMemoryCache(namespace=f"test-{uuid.uuid4().hex}:")


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        environment="dev",
        engine=EngineSettings(
            cycle_interval_sec=60,
            batch_size=50,
            worker_count=4,
            retention_days=30,
            instance_id="test-instance",
        ),
        lock=LockSettings(ttl_seconds=30),
        scoring=ScoringSettings(hit_multiplier=2.0, qualification_enabled=False),
        cache=CacheSettings(ttl_seconds=90),
    )
