"""SQLModel repositories on a temporary SQLite database."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from config.settings import DatabaseSettings
from pickstats.db import build_engine, build_session_maker, init_db
from pickstats.errors import StorageError
from pickstats.models import Token
from pickstats.models.base import ensure_utc
from pickstats.repositories import PickStorage, get_token, upsert_token
from pickstats.services.market.calculator import evaluate_pick

from conftest import NOW, make_pick


async def _storage(tmp_path):
    engine = build_engine(DatabaseSettings(dsn=f"sqlite+aiosqlite:///{tmp_path / 'picks.db'}"))
    await init_db(engine)
    return engine, PickStorage(build_session_maker(engine), timeout=5.0)


@pytest.mark.asyncio
async def test_upsert_pick_is_idempotent_and_monotonic(tmp_path):
    engine, storage = await _storage(tmp_path)
    try:
        await storage.upsert_pick(make_pick(1, market_cap_at_call=100.0))

        first = make_pick(1, market_cap_at_call=100.0, highest_market_cap=250.0, highest_multiplier=2.5, hit_date=NOW, version=1)
        await storage.upsert_pick(first)
        await storage.upsert_pick(first)

        stale = make_pick(
            1,
            market_cap_at_call=100.0,
            highest_market_cap=180.0,
            highest_multiplier=1.8,
            hit_date=NOW + timedelta(hours=1),
            version=1,
        )
        saved = await storage.upsert_pick(stale)

        assert saved.highest_market_cap == 250.0
        assert saved.highest_multiplier == pytest.approx(2.5)
        assert ensure_utc(saved.hit_date) == NOW
        assert saved.version == 1

        picks = await storage.list_picks()
        assert len(picks) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_pending_picks_respect_retention_and_order(tmp_path):
    engine, storage = await _storage(tmp_path)
    try:
        await storage.upsert_pick(make_pick(3, address="TokB", call_date=NOW - timedelta(days=1)))
        await storage.upsert_pick(make_pick(1, address="TokB", call_date=NOW - timedelta(days=2)))
        await storage.upsert_pick(make_pick(2, address="TokA", call_date=NOW - timedelta(days=3)))
        await storage.upsert_pick(make_pick(4, address="TokA", call_date=NOW - timedelta(days=45)))

        pending = await storage.list_pending_picks(NOW - timedelta(days=30))
        assert [pick.id for pick in pending] == [2, 1, 3]
        assert len(await storage.list_picks()) == 4
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_upsert_token_keeps_known_fields(tmp_path):
    engine, storage = await _storage(tmp_path)
    try:
        await storage.upsert_token(Token(address="TokA", chain="solana", symbol="TKA", price=1.0, liquidity=500.0))
        await storage.upsert_token(Token(address="TokA", chain="solana", price=2.0, market_cap=2_000.0))
        await storage.upsert_token(Token(address="TokA", chain="base", price=9.0))

        async with build_session_maker(engine)() as session:
            token = await get_token(session, "TokA", "solana")
        assert token.symbol == "TKA"
        assert token.price == 2.0
        assert token.market_cap == 2_000.0
        assert token.liquidity == 500.0

        tokens = await storage.list_tokens({("TokA", "solana"), ("TokZ", "solana")})
        assert list(tokens) == [("TokA", "solana")]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_write_callbacks_fire_after_commit_and_are_isolated(tmp_path):
    engine, storage = await _storage(tmp_path)
    seen = []

    async def broken(pick):
        raise RuntimeError("sink down")

    async def recorder(pick):
        seen.append((pick.id, pick.version))

    storage.on_write(broken)
    storage.on_write(recorder)
    try:
        await storage.upsert_pick(make_pick(7, version=2))
        assert seen == [(7, 2)]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_database_errors_become_storage_errors(tmp_path, monkeypatch):
    engine, storage = await _storage(tmp_path)

    async def failing(session, since):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr("pickstats.repositories.pick_repo.list_pending_picks", failing)
    try:
        with pytest.raises(StorageError):
            await storage.list_pending_picks(NOW)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_upsert_token_function_inserts_new_rows(tmp_path):
    engine, _ = await _storage(tmp_path)
    try:
        async with build_session_maker(engine)() as session:
            saved = await upsert_token(session, Token(address="TokN", chain="solana", price=3.0))
        assert saved.id is not None
    finally:
        await engine.dispose()


@pytest.mark.parametrize(
    ("market_cap_at_call", "stale_multiplier", "expected"),
    [(100.0, None, 1.0), (0.0, 3.0, None)],
)
@pytest.mark.asyncio
async def test_stale_multiplier_is_repaired_once(tmp_path, market_cap_at_call, stale_multiplier, expected):
    engine, storage = await _storage(tmp_path)
    async with build_session_maker(engine)() as session:
        session.add(
            make_pick(
                1,
                market_cap_at_call=market_cap_at_call,
                highest_market_cap=100.0,
                highest_multiplier=stale_multiplier,
            )
        )
        await session.commit()

    written = []

    async def recorder(pick):
        written.append(pick.version)

    storage.on_write(recorder)
    try:
        for _ in range(3):
            (pick,) = await storage.list_picks()
            update = evaluate_pick(pick, 80.0, hit_threshold=2.0, now=NOW)
            if update is not None:
                await storage.upsert_pick(update.apply())

        (stored,) = await storage.list_picks()
        assert written == [1]
        assert stored.highest_market_cap == 100.0
        assert stored.highest_multiplier == expected
        assert stored.version == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_unchanged_upsert_keeps_version_and_stays_silent(tmp_path):
    engine, storage = await _storage(tmp_path)
    seen = []

    async def recorder(pick):
        seen.append(pick.version)

    storage.on_write(recorder)
    try:
        await storage.upsert_pick(make_pick(1, market_cap_at_call=100.0, highest_market_cap=300.0, version=4))
        saved = await storage.upsert_pick(make_pick(1, market_cap_at_call=100.0, highest_market_cap=200.0, version=9))

        assert saved.version == 4
        assert saved.highest_multiplier == pytest.approx(3.0)
        assert seen == [4]
    finally:
        await engine.dispose()
