from __future__ import annotations

import logging
from datetime import datetime, timezone

from refundwatch.core.config import get_settings
from refundwatch.core.errors import AlarmNotFoundError
from refundwatch.domain.alarms import AlarmHistoryFilters, AlarmRecord
from refundwatch.domain.statuses import AlarmResolution, can_transition_resolution
from refundwatch.persistence.base import AlarmStore


logger = logging.getLogger(__name__)


async def _load(alarm_store: AlarmStore, alarm_id: str) -> AlarmRecord:
    record = await alarm_store.get_alarm(alarm_id)
    if record is None:
        raise AlarmNotFoundError(alarm_id)
    return record


async def _transition(
    alarm_store: AlarmStore,
    record: AlarmRecord,
    target: AlarmResolution,
    patch: dict,
) -> AlarmRecord:
    # Terminal records and disallowed moves are no-ops that return the stored row.
    if not can_transition_resolution(record.resolution, target):
        return record
    updated = await alarm_store.update_alarm(record.id, {"resolution": target, **patch})
    return updated or record


async def acknowledge_alarm(alarm_store: AlarmStore, alarm_id: str, *, actor_id: str | None) -> AlarmRecord:
    record = await _load(alarm_store, alarm_id)
    updated = await _transition(alarm_store, record, AlarmResolution.ACKNOWLEDGED, {})
    if updated is not record:
        logger.info("alarm_acknowledged alarm_id=%s actor_id=%s", alarm_id, actor_id)
    return updated


async def resolve_alarm(
    alarm_store: AlarmStore,
    alarm_id: str,
    *,
    actor_id: str | None,
    note: str | None = None,
) -> AlarmRecord:
    record = await _load(alarm_store, alarm_id)
    updated = await _transition(
        alarm_store,
        record,
        AlarmResolution.RESOLVED,
        {
            "resolved_at": datetime.now(timezone.utc),
            "resolved_by_id": actor_id,
            "resolved_note": note or None,
        },
    )
    if updated is not record:
        logger.info("alarm_resolved alarm_id=%s actor_id=%s", alarm_id, actor_id)
    return updated


async def dismiss_alarm(
    alarm_store: AlarmStore,
    alarm_id: str,
    *,
    actor_id: str | None,
    reason: str | None = None,
) -> AlarmRecord:
    record = await _load(alarm_store, alarm_id)
    updated = await _transition(
        alarm_store,
        record,
        AlarmResolution.DISMISSED,
        {
            "resolved_at": datetime.now(timezone.utc),
            "resolved_by_id": actor_id,
            "resolved_note": reason or None,
        },
    )
    if updated is not record:
        logger.info("alarm_dismissed alarm_id=%s actor_id=%s", alarm_id, actor_id)
    return updated


async def dismiss_all_for_case(alarm_store: AlarmStore, case_id: str, *, actor_id: str | None) -> int:
    now = datetime.now(timezone.utc)
    dismissed = 0
    for record in await alarm_store.find_open_alarms(case_id):
        await alarm_store.update_alarm(
            record.id,
            {
                "resolution": AlarmResolution.DISMISSED,
                "resolved_at": now,
                "resolved_by_id": actor_id,
            },
        )
        dismissed += 1
    logger.info("alarm_dismiss_all case_id=%s actor_id=%s dismissed=%s", case_id, actor_id, dismissed)
    return dismissed


async def list_alarm_history(
    alarm_store: AlarmStore,
    filters: AlarmHistoryFilters,
    *,
    limit: int | None = None,
) -> list[AlarmRecord]:
    # Newest first; the configured cap bounds operator screens.
    cap = get_settings().alarm_history_max_rows
    effective = min(limit, cap) if limit else cap
    return await alarm_store.list_alarms(filters, limit=max(1, effective))
