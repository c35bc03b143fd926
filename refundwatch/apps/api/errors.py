from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from refundwatch.apps.api.response import error_response
from refundwatch.core.errors import (
    CursorError,
    InvalidStatusTransitionError,
    NotFoundError,
    RefundWatchError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def transition_exception_handler(request: Request, exc: InvalidStatusTransitionError) -> JSONResponse:
    # Operators get the allowed list so the UI can offer valid next statuses.
    body = exc.to_dict()
    details = {k: v for k, v in body.items() if k not in {"code", "message"}}
    payload = error_response(request=request, code=exc.code, message=exc.message, details=details)
    return JSONResponse(content=payload, status_code=400)


async def not_found_exception_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    payload = error_response(request=request, code="NOT_FOUND", message=str(exc))
    return JSONResponse(content=payload, status_code=404)


async def cursor_exception_handler(request: Request, exc: CursorError) -> JSONResponse:
    payload = error_response(request=request, code="INVALID_CURSOR", message=str(exc))
    return JSONResponse(content=payload, status_code=400)


async def domain_exception_handler(request: Request, exc: RefundWatchError) -> JSONResponse:
    logger.warning("domain_error path=%s error=%s", request.url.path, type(exc).__name__)
    payload = error_response(request=request, code="BAD_REQUEST", message=str(exc))
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_api_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
