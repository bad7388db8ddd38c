"""Утилита для первичной инициализации базы данных (dev/тесты)."""

from __future__ import annotations

import asyncio

from config.settings import get_settings
from pickstats.db import build_engine, init_db


async def _run() -> None:
    engine = build_engine(get_settings().database)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
