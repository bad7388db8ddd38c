"""Движок вместе со служебным HTTP в одном процессе."""

from __future__ import annotations

import uvicorn

from config.settings import get_settings
from pickstats.logging_config import bind_instance, setup_logging
from pickstats.web.app import app


def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.is_production, level="INFO")
    bind_instance(settings.engine.instance_id)
    # один воркер: планировщик и блокировка живут в процессе
    uvicorn.run(app, host=settings.ops.host, port=settings.ops.port, timeout_keep_alive=30)


if __name__ == "__main__":
    main()
