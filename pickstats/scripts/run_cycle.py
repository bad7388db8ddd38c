"""Один цикл пересчёта из консоли (cron, отладка)."""

from __future__ import annotations

import asyncio
import json
import sys

from config.settings import get_settings
from pickstats.context import build_context
from pickstats.logging_config import bind_instance, setup_logging
from pickstats.services.pipeline.cycle import CycleOutcome


async def _run() -> int:
    settings = get_settings()
    setup_logging(json=settings.is_production, level="INFO")
    bind_instance(settings.engine.instance_id)
    context = build_context(settings)
    try:
        report = await context.scheduler.run_cycle()
    finally:
        await context.close()
    print(json.dumps(report.as_dict(), ensure_ascii=False, indent=2))
    return 1 if report.outcome is CycleOutcome.ABORTED else 0


def main() -> None:
    sys.exit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
