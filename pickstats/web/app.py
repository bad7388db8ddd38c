"""FastAPI служебный API: здоровье, статус блокировки и ручной запуск цикла."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from pydantic import BaseModel

from pickstats.context import EngineContext, build_context
from pickstats.loader import on_shutdown, on_startup
from pickstats.utils.security import decode_ops_token

bearer_scheme = HTTPBearer(auto_error=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    environment: str
    instance: str
    scheduler_running: bool
    cycle_in_progress: bool
    last_cycle: dict[str, Any] | None = None


class LockResponse(BaseModel):
    locked: bool
    key: str
    owner: str | None = None
    acquired_at: str | None = None
    ttl: int | None = None
    ttl_remaining: float | None = None


def get_context(request: Request) -> EngineContext:
    return request.app.state.context


def require_operator(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    context = get_context(request)
    try:
        payload = decode_ops_token(context.settings.ops, credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return str(payload["sub"])


def create_app(context: EngineContext | None = None) -> FastAPI:
    """Переданный context тестам не запускает планировщик; без него движок поднимается в lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.context is None
        if owned:
            app.state.context = build_context()
            await on_startup(app.state.context)
        try:
            yield
        finally:
            if owned:
                await on_shutdown(app.state.context)

    app = FastAPI(title="PickStats Ops API", lifespan=lifespan)
    app.state.context = context

    @app.get("/health", response_model=HealthResponse)
    async def health(ctx: EngineContext = Depends(get_context)) -> HealthResponse:
        scheduler = ctx.scheduler
        last = scheduler.last_report
        return HealthResponse(
            environment=ctx.settings.environment,
            instance=ctx.settings.engine.instance_id,
            scheduler_running=scheduler.running,
            cycle_in_progress=scheduler.busy,
            last_cycle=last.as_dict() if last else None,
        )

    @app.get("/api/lock", response_model=LockResponse)
    async def lock_status(ctx: EngineContext = Depends(get_context)) -> LockResponse:
        key = ctx.settings.lock_key
        current = await ctx.lock_manager.lock_status(key)
        if current is None:
            return LockResponse(locked=False, key=key)
        return LockResponse(locked=True, **current.as_dict())

    @app.post("/api/cycle")
    async def trigger_cycle(
        operator: str = Depends(require_operator),
        ctx: EngineContext = Depends(get_context),
    ) -> dict[str, Any]:
        logger.info("Ручной запуск цикла от {operator}", operator=operator)
        report = await ctx.scheduler.run_cycle()
        return report.as_dict()

    return app


app = create_app()

__all__ = ["app", "create_app"]
