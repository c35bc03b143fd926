from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from refundwatch.apps.api.deps import get_actor_id, get_engine
from refundwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from refundwatch.apps.api.response import SuccessEnvelope, list_response, success_response
from refundwatch.domain.alarms import AlarmHistoryFilters, ThresholdUpdate
from refundwatch.domain.statuses import AlarmLevel, AlarmResolution, AlarmType, Track
from refundwatch.services.alarms.dashboard import DashboardFilters
from refundwatch.services.alarms.engine import AlarmEngine
from refundwatch.services.telemetry import counters_snapshot, external_call_stats

router = APIRouter(prefix="/admin/alarms", tags=["alarms"], responses=DEFAULT_ERROR_RESPONSES)


class AlarmResolveRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class AlarmDismissRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


@router.get("/dashboard", response_model=SuccessEnvelope[dict[str, Any]])
async def get_dashboard(
    request: Request,
    hide_completed: bool = Query(default=False),
    level: Literal["warning", "critical", "all"] = Query(default="all"),
    cursor: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    # Limits above the configured maximum are clamped rather than rejected.
    page = await engine.dashboard(
        DashboardFilters(hide_completed=hide_completed, level=level, cursor=cursor, limit=limit)
    )
    return success_response(request=request, data=page.as_dict())


@router.get("/history", response_model=SuccessEnvelope[dict[str, Any]])
async def get_history(
    request: Request,
    case_id: str | None = Query(default=None),
    alarm_type: AlarmType | None = Query(default=None),
    alarm_level: AlarmLevel | None = Query(default=None),
    resolution: AlarmResolution | None = Query(default=None),
    track: Track | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    filters = AlarmHistoryFilters(
        case_id=case_id,
        alarm_type=alarm_type,
        alarm_level=alarm_level,
        resolution=resolution,
        track=track,
        from_date=from_date,
        to_date=to_date,
    )
    rows = await engine.history(filters, limit=limit)
    return list_response(request=request, items=(row.as_dict() for row in rows))


@router.get("/sync/status", response_model=SuccessEnvelope[dict[str, Any]])
async def get_sync_status(request: Request, engine: AlarmEngine = Depends(get_engine)) -> dict[str, Any]:
    return success_response(request=request, data=engine.sync_status().as_dict())


@router.get("/metrics", response_model=SuccessEnvelope[dict[str, Any]])
async def get_alarm_metrics(request: Request) -> dict[str, Any]:
    # Counters are per process; each API or worker replica reports its own.
    payload = {
        "counters": counters_snapshot(),
        "external_calls": {"notifier.webhook": external_call_stats("notifier.webhook")},
    }
    return success_response(request=request, data=payload)


@router.post("/sync", response_model=SuccessEnvelope[dict[str, Any]])
async def trigger_sync(request: Request, engine: AlarmEngine = Depends(get_engine)) -> dict[str, Any]:
    # Runs inline; a concurrent run returns the previous stats with is_running=true.
    status = await engine.run_batch_sync()
    return success_response(request=request, data=status.as_dict())


@router.post("/sync/{case_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def sync_case(case_id: str, request: Request, engine: AlarmEngine = Depends(get_engine)) -> dict[str, Any]:
    result = await engine.reconcile(case_id)
    payload = {
        "case_id": result.case_id,
        "created": result.created,
        "refreshed": result.refreshed,
        "auto_resolved": result.auto_resolved,
        "open_alarms": [record.as_dict() for record in result.open_alarms],
    }
    return success_response(request=request, data=payload)


@router.get("/thresholds/{case_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def get_case_thresholds(
    case_id: str,
    request: Request,
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    view = await engine.get_thresholds(case_id)
    return success_response(request=request, data=view.as_dict())


@router.patch("/thresholds/{case_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def set_case_thresholds(
    case_id: str,
    request: Request,
    payload: ThresholdUpdate,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    view = await engine.set_thresholds(case_id, payload, actor_id=actor_id)
    return success_response(request=request, data=view.as_dict())


@router.delete("/thresholds/{case_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def delete_case_thresholds(
    case_id: str,
    request: Request,
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    deleted = await engine.delete_thresholds(case_id)
    return success_response(request=request, data={"case_id": case_id, "deleted": deleted})


@router.post("/dismiss-all/{case_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def dismiss_all_alarms(
    case_id: str,
    request: Request,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    dismissed = await engine.dismiss_all(case_id, actor_id=actor_id)
    return success_response(request=request, data={"case_id": case_id, "dismissed": dismissed})


@router.post("/{alarm_id}/acknowledge", response_model=SuccessEnvelope[dict[str, Any]])
async def acknowledge_alarm(
    alarm_id: str,
    request: Request,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    record = await engine.acknowledge(alarm_id, actor_id=actor_id)
    return success_response(request=request, data=record.as_dict())


@router.post("/{alarm_id}/resolve", response_model=SuccessEnvelope[dict[str, Any]])
async def resolve_alarm(
    alarm_id: str,
    request: Request,
    payload: AlarmResolveRequest | None = None,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    note = payload.note if payload else None
    record = await engine.resolve(alarm_id, actor_id=actor_id, note=note)
    return success_response(request=request, data=record.as_dict())


@router.post("/{alarm_id}/dismiss", response_model=SuccessEnvelope[dict[str, Any]])
async def dismiss_alarm(
    alarm_id: str,
    request: Request,
    payload: AlarmDismissRequest | None = None,
    actor_id: str | None = Depends(get_actor_id),
    engine: AlarmEngine = Depends(get_engine),
) -> dict[str, Any]:
    reason = payload.reason if payload else None
    record = await engine.dismiss(alarm_id, actor_id=actor_id, reason=reason)
    return success_response(request=request, data=record.as_dict())
