from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from refundwatch.domain.alarms import CaseIdPage, CaseSnapshot, ThresholdOverride, as_utc
from refundwatch.domain.models import AlarmThreshold, TaxCase
from refundwatch.domain.statuses import (
    ALARM_ELIGIBLE_STATUSES,
    COMPLETED_STATUS,
    CaseStatus,
    TrackStatus,
    parse_track_status,
)


_ELIGIBLE_VALUES = sorted(status.value for status in ALARM_ELIGIBLE_STATUSES)


def _parse_case_status(value: str | None) -> CaseStatus | None:
    if value is None:
        return None
    try:
        return CaseStatus(value)
    except ValueError:
        return None


def override_from_row(row: AlarmThreshold | None) -> ThresholdOverride | None:
    if row is None:
        return None
    return ThresholdOverride(
        case_id=row.tax_case_id,
        federal_in_process_days=row.federal_in_process_days,
        state_in_process_days=row.state_in_process_days,
        verification_timeout_days=row.verification_timeout_days,
        letter_sent_timeout_days=row.letter_sent_timeout_days,
        disable_federal_alarms=bool(row.disable_federal_alarms),
        disable_state_alarms=bool(row.disable_state_alarms),
        reason=row.reason,
        created_by_id=row.created_by_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def snapshot_from_row(row: TaxCase) -> CaseSnapshot:
    return CaseSnapshot(
        id=row.id,
        client_user_id=row.client_user_id,
        client_name=row.client_name,
        client_email=row.client_email,
        case_status=_parse_case_status(row.case_status),
        federal_status=parse_track_status(row.federal_status),
        federal_status_changed_at=as_utc(row.federal_status_changed_at),
        state_status=parse_track_status(row.state_status),
        state_status_changed_at=as_utc(row.state_status_changed_at),
        threshold_override=override_from_row(row.alarm_threshold),
    )


def _eligible_stmt(after_id: str | None):
    stmt = select(TaxCase).where(
        or_(
            TaxCase.federal_status.in_(_ELIGIBLE_VALUES),
            TaxCase.state_status.in_(_ELIGIBLE_VALUES),
        )
    )
    if after_id is not None:
        stmt = stmt.where(TaxCase.id > after_id)
    return stmt.order_by(TaxCase.id.asc())


async def list_eligible_case_ids(
    session: AsyncSession,
    *,
    after_id: str | None,
    limit: int,
) -> CaseIdPage:
    # Keyset scan over case ids; fetch one extra row to detect another page.
    stmt = _eligible_stmt(after_id).with_only_columns(TaxCase.id).limit(limit + 1)
    ids = list((await session.execute(stmt)).scalars().all())
    has_more = len(ids) > limit
    page = ids[:limit]
    return CaseIdPage(ids=page, has_more=has_more, next_cursor=page[-1] if has_more and page else None)


async def list_eligible_cases(
    session: AsyncSession,
    *,
    after_id: str | None,
    limit: int,
    hide_completed: bool = False,
) -> list[TaxCase]:
    stmt = _eligible_stmt(after_id)
    if hide_completed:
        completed = COMPLETED_STATUS.value
        stmt = stmt.where(
            ~and_(TaxCase.federal_status == completed, TaxCase.state_status == completed)
        )
    result = await session.execute(stmt.limit(limit))
    return list(result.scalars().all())


class SqlCaseStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get_case(self, case_id: str) -> CaseSnapshot | None:
        async with self._sessionmaker() as session:
            row = await session.get(TaxCase, case_id)
            return snapshot_from_row(row) if row is not None else None

    async def list_alarm_eligible_case_ids(self, *, after_id: str | None, limit: int) -> CaseIdPage:
        async with self._sessionmaker() as session:
            return await list_eligible_case_ids(session, after_id=after_id, limit=limit)

    async def list_alarm_eligible_cases(
        self,
        *,
        after_id: str | None,
        limit: int,
        hide_completed: bool = False,
    ) -> list[CaseSnapshot]:
        async with self._sessionmaker() as session:
            rows = await list_eligible_cases(
                session, after_id=after_id, limit=limit, hide_completed=hide_completed
            )
            return [snapshot_from_row(row) for row in rows]

    async def update_statuses(
        self,
        case_id: str,
        *,
        case_status: CaseStatus | None = None,
        federal_status: TrackStatus | None = None,
        federal_status_changed_at: datetime | None = None,
        state_status: TrackStatus | None = None,
        state_status_changed_at: datetime | None = None,
    ) -> CaseSnapshot | None:
        async with self._sessionmaker() as session:
            row = await session.get(TaxCase, case_id)
            if row is None:
                return None
            if case_status is not None:
                if row.case_status != case_status.value:
                    row.case_status_changed_at = datetime.now(timezone.utc)
                row.case_status = case_status.value
            if federal_status is not None:
                row.federal_status = federal_status.value
            if federal_status_changed_at is not None:
                row.federal_status_changed_at = federal_status_changed_at
            if state_status is not None:
                row.state_status = state_status.value
            if state_status_changed_at is not None:
                row.state_status_changed_at = state_status_changed_at
            await session.commit()
            return snapshot_from_row(row)
