"""
HTTP surface of the decision engine: pricing, allocation and booking routes,
plus health and Prometheus metrics.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fieldops.api.middleware import register_exception_handlers
from fieldops.api.routes import allocation, bookings, engineers, pricing
from fieldops.lib.db import engine, init_db
from fieldops.lib.logging import get_logger, set_correlation_id
from fieldops.lib.metrics import get_metrics_collector
from fieldops.lib.settings import settings

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Correlation-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"{settings.app_name} starting", extra={"database": engine.url.get_backend_name()})
    init_db()
    yield
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Pricing, engineer allocation and booking lifecycle decisions for compliance testing jobs",
    lifespan=lifespan,
)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

for module in (pricing, allocation, bookings, engineers):
    app.include_router(module.router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """Counters for quotes, allocations, claims, transitions and postcode lookups."""
    return PlainTextResponse(
        content=get_metrics_collector().export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
