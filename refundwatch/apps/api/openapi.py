from __future__ import annotations

from typing import Any

from refundwatch.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {
        "model": ErrorEnvelope,
        "description": "Bad request",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="INVALID_STATUS_TRANSITION",
                    message='federal status transition not allowed: from "taxes_completed" to "in_process". '
                    "Allowed transitions: issues",
                    details={
                        "status_type": "federal",
                        "current_status": "taxes_completed",
                        "attempted_status": "in_process",
                        "allowed_transitions": ["issues"],
                    },
                ),
            }
        },
    },
    404: {
        "model": ErrorEnvelope,
        "description": "Not found",
        "content": {
            "application/json": {
                "example": _error_example(code="NOT_FOUND", message="Tax case case_123 not found"),
            }
        },
    },
    422: {
        "model": ErrorEnvelope,
        "description": "Validation error",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="REQUEST_VALIDATION_ERROR",
                    message="Validation error",
                    details={"errors": [{"loc": ["body", "federal_in_process_days"], "msg": "Input should be less than or equal to 365"}]},
                ),
            }
        },
    },
    500: {
        "model": ErrorEnvelope,
        "description": "Internal error",
        "content": {
            "application/json": {
                "example": _error_example(code="INTERNAL_ERROR", message="Internal server error"),
            }
        },
    },
}
