from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from refundwatch.core.errors import DuplicateOpenAlarmError
from refundwatch.domain.alarms import AlarmHistoryFilters, NewAlarmRecord, ThresholdUpdate
from refundwatch.domain.models import Base, TaxCase
from refundwatch.domain.statuses import (
    AlarmLevel,
    AlarmResolution,
    AlarmType,
    CaseStatus,
    Track,
    TrackStatus,
)
from refundwatch.persistence.db import build_sessionmaker
from refundwatch.persistence.repos.alarms import SqlAlarmStore
from refundwatch.persistence.repos.cases import SqlCaseStore
from refundwatch.persistence.repos.thresholds import SqlThresholdStore
from refundwatch.providers.notifier.fake import FakeNotifier
from refundwatch.services.alarms.dashboard import DashboardFilters
from refundwatch.services.alarms.engine import AlarmEngine


@pytest.fixture
async def sessionmaker(tmp_path):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'alarms.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(db_engine)
    await db_engine.dispose()


def _ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


async def _add_case(sessionmaker, case_id: str, **columns) -> None:
    async with sessionmaker() as session:
        session.add(
            TaxCase(
                id=case_id,
                client_user_id=f"user-{case_id}",
                client_name=f"Client {case_id}",
                client_email=f"{case_id}@example.com",
                **columns,
            )
        )
        await session.commit()


def _new_alarm(case_id: str) -> NewAlarmRecord:
    return NewAlarmRecord(
        case_id=case_id,
        alarm_type=AlarmType.POSSIBLE_VERIFICATION,
        alarm_level=AlarmLevel.WARNING,
        track=Track.FEDERAL,
        message="Federal: possible verification (25 days in process)",
        threshold_days=21,
        actual_days=25,
        status_at_trigger="in_process",
        status_changed_at=_ago(25),
    )


@pytest.mark.asyncio
async def test_open_alarm_unique_index_rejects_second_open_row(sessionmaker) -> None:
    await _add_case(sessionmaker, "case-1", federal_status="in_process", federal_status_changed_at=_ago(25))
    store = SqlAlarmStore(sessionmaker)

    first = await store.create_alarm(_new_alarm("case-1"))
    with pytest.raises(DuplicateOpenAlarmError):
        await store.create_alarm(_new_alarm("case-1"))

    await store.update_alarm(first.id, {"resolution": AlarmResolution.RESOLVED, "resolved_at": _ago(0)})
    second = await store.create_alarm(_new_alarm("case-1"))

    assert second.id != first.id
    assert await store.count_open_alarms("case-1") == 1
    found = await store.find_open_alarm("case-1", AlarmType.POSSIBLE_VERIFICATION, Track.FEDERAL)
    assert found.id == second.id
    history = await store.list_alarms(AlarmHistoryFilters(case_id="case-1"), limit=10)
    assert {row.resolution for row in history} == {AlarmResolution.ACTIVE, AlarmResolution.RESOLVED}


@pytest.mark.asyncio
async def test_history_date_range_accepts_naive_and_aware_bounds(sessionmaker) -> None:
    await _add_case(sessionmaker, "case-1")
    store = SqlAlarmStore(sessionmaker)
    record = await store.create_alarm(_new_alarm("case-1"))
    yesterday = _ago(1).replace(tzinfo=None)
    tomorrow = _ago(-1).replace(tzinfo=None)
    buenos_aires = timezone(timedelta(hours=-3))

    in_range = await store.list_alarms(AlarmHistoryFilters(from_date=yesterday, to_date=tomorrow), limit=10)
    assert [row.id for row in in_range] == [record.id]
    assert await store.list_alarms(AlarmHistoryFilters(from_date=tomorrow), limit=10) == []

    # An aware bound an hour ahead, expressed at UTC-3, still lands after the record.
    next_hour = _ago(0).astimezone(buenos_aires) + timedelta(hours=1)
    assert len(await store.list_alarms(AlarmHistoryFilters(to_date=next_hour), limit=10)) == 1
    assert await store.list_alarms(AlarmHistoryFilters(from_date=next_hour), limit=10) == []


@pytest.mark.asyncio
async def test_update_alarm_rejects_unknown_fields(sessionmaker) -> None:
    await _add_case(sessionmaker, "case-1")
    store = SqlAlarmStore(sessionmaker)
    record = await store.create_alarm(_new_alarm("case-1"))

    with pytest.raises(ValueError):
        await store.update_alarm(record.id, {"case_id": "case-2"})
    assert await store.update_alarm("missing", {"actual_days": 3}) is None


@pytest.mark.asyncio
async def test_case_store_scans_eligible_ids_in_pages(sessionmaker) -> None:
    for index in range(5):
        await _add_case(sessionmaker, f"case-{index}", federal_status="in_process", federal_status_changed_at=_ago(1))
    await _add_case(sessionmaker, "case-done", federal_status="taxes_completed", state_status="taxes_completed")
    await _add_case(sessionmaker, "case-letter", state_status="verification_letter_sent")
    store = SqlCaseStore(sessionmaker)

    first = await store.list_alarm_eligible_case_ids(after_id=None, limit=4)
    assert first.ids == ["case-0", "case-1", "case-2", "case-3"]
    assert first.has_more
    second = await store.list_alarm_eligible_case_ids(after_id=first.next_cursor, limit=4)
    assert second.ids == ["case-4", "case-letter"]
    assert not second.has_more
    assert second.next_cursor is None


@pytest.mark.asyncio
async def test_case_store_updates_statuses_and_loads_override(sessionmaker) -> None:
    await _add_case(sessionmaker, "case-1", case_status="preparing", federal_status="in_process")
    cases = SqlCaseStore(sessionmaker)
    thresholds = SqlThresholdStore(sessionmaker)

    override = await thresholds.upsert_override(
        "case-1",
        ThresholdUpdate(federal_in_process_days=5, reason="priority client"),
        actor_id="admin-1",
    )
    assert override.created_by_id == "admin-1"
    updated = await thresholds.upsert_override("case-1", ThresholdUpdate(federal_in_process_days=6), actor_id="admin-2")
    assert updated.created_by_id == "admin-1"
    assert updated.federal_in_process_days == 6

    changed_at = _ago(0)
    snapshot = await cases.update_statuses(
        "case-1",
        case_status=CaseStatus.TAXES_FILED,
        federal_status=TrackStatus.IN_VERIFICATION,
        federal_status_changed_at=changed_at,
    )
    assert snapshot.case_status is CaseStatus.TAXES_FILED
    assert snapshot.federal_status is TrackStatus.IN_VERIFICATION

    loaded = await cases.get_case("case-1")
    assert loaded.threshold_override.federal_in_process_days == 6
    assert loaded.federal_status_changed_at.tzinfo is not None

    assert await thresholds.delete_override("case-1")
    assert not await thresholds.delete_override("case-1")
    assert (await cases.get_case("case-1")).threshold_override is None
    assert await cases.update_statuses("missing", case_status=CaseStatus.PREPARING) is None


@pytest.mark.asyncio
async def test_engine_reconciles_against_sql_stores(sessionmaker) -> None:
    await _add_case(sessionmaker, "case-1", federal_status="in_process", federal_status_changed_at=_ago(40))
    await _add_case(sessionmaker, "case-2", state_status="in_verification", state_status_changed_at=_ago(70))
    await _add_case(sessionmaker, "case-3", federal_status="in_process", federal_status_changed_at=_ago(2))
    notifier = FakeNotifier()
    engine = AlarmEngine(
        case_store=SqlCaseStore(sessionmaker),
        alarm_store=SqlAlarmStore(sessionmaker),
        threshold_store=SqlThresholdStore(sessionmaker),
        notifier=notifier,
    )

    status = await engine.run_batch_sync()
    again = await engine.run_batch_sync()
    page = await engine.dashboard(DashboardFilters())
    await engine.aclose()

    assert status.cases_processed == 3
    assert status.alarms_triggered == 2
    assert again.alarms_triggered == 0
    assert len(notifier.sent) == 2
    assert [item.case_id for item in page.items] == ["case-1", "case-2"]
    assert page.total_critical == 1
    assert page.total_warning == 1
