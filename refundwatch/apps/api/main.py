from __future__ import annotations

from contextlib import asynccontextmanager
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from refundwatch.apps.api.errors import (
    cursor_exception_handler,
    domain_exception_handler,
    http_exception_handler,
    not_found_exception_handler,
    transition_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from refundwatch.apps.api.response import API_VERSION
from refundwatch.apps.api.routes.alarms import router as alarms_router
from refundwatch.apps.api.routes.cases import router as cases_router
from refundwatch.apps.api.routes.health import router as health_router
from refundwatch.core.config import get_settings
from refundwatch.core.errors import (
    CursorError,
    InvalidStatusTransitionError,
    NotFoundError,
    RefundWatchError,
)
from refundwatch.core.logging import configure_logging
from refundwatch.services.alarms.engine import shutdown_alarm_engine
from refundwatch.services.telemetry import increment_counter


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await shutdown_alarm_engine()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=f"{get_settings().app_name} admin API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        increment_counter(f"http_requests_{response.status_code // 100}xx")
        response.headers.setdefault("X-Request-Id", request_id)
        response.headers.setdefault("X-Response-Time-Ms", f"{(time.monotonic() - start) * 1000.0:.1f}")
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InvalidStatusTransitionError, transition_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_exception_handler)
    app.add_exception_handler(CursorError, cursor_exception_handler)
    app.add_exception_handler(RefundWatchError, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(alarms_router, prefix=f"/{API_VERSION}")
    app.include_router(cases_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
