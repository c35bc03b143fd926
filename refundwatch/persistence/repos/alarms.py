from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from refundwatch.core.errors import DuplicateOpenAlarmError
from refundwatch.domain.alarms import AlarmHistoryFilters, AlarmRecord, NewAlarmRecord, as_utc
from refundwatch.domain.models import AlarmHistory
from refundwatch.domain.statuses import (
    OPEN_RESOLUTIONS,
    AlarmLevel,
    AlarmResolution,
    AlarmType,
    Track,
)


_OPEN_VALUES = sorted(resolution.value for resolution in OPEN_RESOLUTIONS)
_UPDATABLE_COLUMNS = frozenset(
    {
        "alarm_level",
        "message",
        "actual_days",
        "resolution",
        "resolved_at",
        "resolved_by_id",
        "resolved_note",
        "auto_resolve_reason",
    }
)


def record_from_row(row: AlarmHistory) -> AlarmRecord:
    return AlarmRecord(
        id=row.id,
        case_id=row.tax_case_id,
        alarm_type=AlarmType(row.alarm_type),
        alarm_level=AlarmLevel(row.alarm_level),
        track=Track(row.track),
        message=row.message,
        threshold_days=row.threshold_days,
        actual_days=row.actual_days,
        status_at_trigger=row.status_at_trigger,
        status_changed_at=as_utc(row.status_changed_at),
        resolution=AlarmResolution(row.resolution),
        resolved_at=as_utc(row.resolved_at),
        resolved_by_id=row.resolved_by_id,
        resolved_note=row.resolved_note,
        auto_resolve_reason=row.auto_resolve_reason,
        triggered_at=as_utc(row.triggered_at),
        updated_at=as_utc(row.updated_at),
    )


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


async def list_open_rows(session: AsyncSession, *, case_id: str) -> list[AlarmHistory]:
    result = await session.execute(
        select(AlarmHistory)
        .where(AlarmHistory.tax_case_id == case_id, AlarmHistory.resolution.in_(_OPEN_VALUES))
        .order_by(AlarmHistory.triggered_at.desc(), AlarmHistory.id.desc())
    )
    return list(result.scalars().all())


async def list_history_rows(
    session: AsyncSession,
    *,
    filters: AlarmHistoryFilters,
    limit: int,
) -> list[AlarmHistory]:
    stmt = select(AlarmHistory)
    if filters.case_id:
        stmt = stmt.where(AlarmHistory.tax_case_id == filters.case_id)
    if filters.alarm_type:
        stmt = stmt.where(AlarmHistory.alarm_type == filters.alarm_type.value)
    if filters.alarm_level:
        stmt = stmt.where(AlarmHistory.alarm_level == filters.alarm_level.value)
    if filters.resolution:
        stmt = stmt.where(AlarmHistory.resolution == filters.resolution.value)
    if filters.track:
        stmt = stmt.where(AlarmHistory.track == filters.track.value)
    if filters.from_date:
        stmt = stmt.where(AlarmHistory.triggered_at >= filters.from_date)
    if filters.to_date:
        stmt = stmt.where(AlarmHistory.triggered_at <= filters.to_date)
    stmt = stmt.order_by(AlarmHistory.triggered_at.desc(), AlarmHistory.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


class SqlAlarmStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get_alarm(self, alarm_id: str) -> AlarmRecord | None:
        async with self._sessionmaker() as session:
            row = await session.get(AlarmHistory, alarm_id)
            return record_from_row(row) if row is not None else None

    async def find_open_alarms(self, case_id: str) -> list[AlarmRecord]:
        async with self._sessionmaker() as session:
            return [record_from_row(row) for row in await list_open_rows(session, case_id=case_id)]

    async def find_open_alarm(self, case_id: str, alarm_type: AlarmType, track: Track) -> AlarmRecord | None:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(AlarmHistory)
                .where(
                    AlarmHistory.tax_case_id == case_id,
                    AlarmHistory.alarm_type == alarm_type.value,
                    AlarmHistory.track == track.value,
                    AlarmHistory.resolution.in_(_OPEN_VALUES),
                )
                .order_by(AlarmHistory.triggered_at.desc(), AlarmHistory.id.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return record_from_row(row) if row is not None else None

    async def create_alarm(self, record: NewAlarmRecord) -> AlarmRecord:
        # The partial unique index on open rows turns a lost race into IntegrityError.
        now = datetime.now(timezone.utc)
        row = AlarmHistory(
            id=uuid4().hex,
            tax_case_id=record.case_id,
            alarm_type=record.alarm_type.value,
            alarm_level=record.alarm_level.value,
            track=record.track.value,
            message=record.message,
            threshold_days=record.threshold_days,
            actual_days=record.actual_days,
            status_at_trigger=record.status_at_trigger,
            status_changed_at=record.status_changed_at,
            resolution=AlarmResolution.ACTIVE.value,
            triggered_at=now,
            updated_at=now,
        )
        async with self._sessionmaker() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateOpenAlarmError(
                    record.case_id, record.alarm_type.value, record.track.value
                ) from exc
            return record_from_row(row)

    async def update_alarm(self, alarm_id: str, patch: dict[str, Any]) -> AlarmRecord | None:
        unknown = set(patch) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported alarm fields: {sorted(unknown)}")
        async with self._sessionmaker() as session:
            row = await session.get(AlarmHistory, alarm_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, _column_value(value))
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return record_from_row(row)

    async def count_open_alarms(self, case_id: str) -> int:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(func.count())
                .select_from(AlarmHistory)
                .where(AlarmHistory.tax_case_id == case_id, AlarmHistory.resolution.in_(_OPEN_VALUES))
            )
            return int(result.scalar_one())

    async def list_alarms(self, filters: AlarmHistoryFilters, *, limit: int) -> list[AlarmRecord]:
        async with self._sessionmaker() as session:
            rows = await list_history_rows(session, filters=filters, limit=limit)
            return [record_from_row(row) for row in rows]
