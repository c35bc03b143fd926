from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from refundwatch.apps.api.deps import get_actor_id, get_engine
from refundwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from refundwatch.apps.api.response import SuccessEnvelope, success_response
from refundwatch.domain.alarms import StatusChangeRequest
from refundwatch.domain.statuses import StatusFamily
from refundwatch.services.alarms.engine import AlarmEngine

router = APIRouter(prefix="/admin/cases", tags=["cases"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/{case_id}/statuses/{family}/next", response_model=SuccessEnvelope[dict[str, Any]])
async def get_next_statuses(
    case_id: str,
    family: StatusFamily,
    request: Request,
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    # Feed status pickers with only the moves the transition map allows.
    statuses = await engine.next_statuses(case_id, family)
    return success_response(
        request=request,
        data={"case_id": case_id, "family": family.value, "statuses": statuses},
    )


@router.patch("/{case_id}/status", response_model=SuccessEnvelope[dict[str, Any]])
async def change_case_status(
    case_id: str,
    request: Request,
    payload: StatusChangeRequest,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = await engine.change_status(case_id, payload, actor_id=actor_id)
    return success_response(request=request, data=result.as_dict())
