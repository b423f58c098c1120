"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.el_common.database import engine
from src.el_common.errors import AppError, InsufficientItemsError, UnknownError
from src.el_common.redis_client import close_redis, get_redis
from src.el_common.response import error_response
from src.el_gateway.middleware.request_log import RequestLogMiddleware
from src.el_inventory.api.router import router as inventory_router
from src.el_trade.api.router import router as trade_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections. Shutdown: dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    if settings.TRADE_EVENTS_ENABLED:
        await get_redis()
    yield
    # Shutdown
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


def _error_data(exc: AppError) -> dict:
    data: dict = {"kind": exc.kind.value, "retryable": exc.retryable}
    if isinstance(exc, InsufficientItemsError):
        data.update(
            side=exc.side.value,
            item_id=exc.item_id,
            required=exc.required,
            available=exc.available,
        )
    return data


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, _error_data(exc))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return await app_error_handler(request, UnknownError(exc))


app.include_router(trade_router, prefix="/api/v1")
app.include_router(inventory_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
