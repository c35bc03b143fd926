from __future__ import annotations

import pytest

from refundwatch.core.errors import DuplicateOpenAlarmError
from refundwatch.domain.alarms import AlarmHistoryFilters, NewAlarmRecord
from refundwatch.domain.statuses import AlarmLevel, AlarmResolution, AlarmType, Track, TrackStatus
from refundwatch.persistence.memory import InMemoryAlarmStore, InMemoryCaseStore, is_alarm_eligible
from refundwatch.tests.utils.cases import days_ago, make_case


def _new_alarm(case_id: str, track: Track = Track.FEDERAL) -> NewAlarmRecord:
    return NewAlarmRecord(
        case_id=case_id,
        alarm_type=AlarmType.VERIFICATION_TIMEOUT,
        alarm_level=AlarmLevel.WARNING,
        track=track,
        message="Federal: verification timeout exceeded (70 days)",
        threshold_days=63,
        actual_days=70,
        status_at_trigger="in_verification",
        status_changed_at=days_ago(70),
    )


@pytest.mark.asyncio
async def test_alarm_store_guards_open_key() -> None:
    store = InMemoryAlarmStore()
    first = await store.create_alarm(_new_alarm("case-1"))
    await store.create_alarm(_new_alarm("case-1", Track.STATE))

    with pytest.raises(DuplicateOpenAlarmError):
        await store.create_alarm(_new_alarm("case-1"))

    await store.update_alarm(first.id, {"resolution": AlarmResolution.DISMISSED})
    await store.create_alarm(_new_alarm("case-1"))
    assert await store.count_open_alarms("case-1") == 2
    assert len(await store.list_alarms(AlarmHistoryFilters(case_id="case-1"), limit=10)) == 3


@pytest.mark.asyncio
async def test_alarm_store_rejects_unknown_patch_fields() -> None:
    store = InMemoryAlarmStore()
    record = await store.create_alarm(_new_alarm("case-1"))
    with pytest.raises(ValueError):
        await store.update_alarm(record.id, {"threshold_days": 1})


def test_eligibility_covers_in_process_verification_and_letter_sent() -> None:
    assert is_alarm_eligible(make_case("a", federal_status=TrackStatus.IN_PROCESS))
    assert is_alarm_eligible(make_case("b", state_status=TrackStatus.VERIFICATION_IN_PROGRESS))
    assert is_alarm_eligible(make_case("c", state_status=TrackStatus.VERIFICATION_LETTER_SENT))
    assert not is_alarm_eligible(make_case("d", federal_status=TrackStatus.DEPOSIT_PENDING))


@pytest.mark.asyncio
async def test_case_store_pages_eligible_ids() -> None:
    store = InMemoryCaseStore()
    for case_id in ("c", "a", "b"):
        store.add_case(make_case(case_id, federal_status=TrackStatus.IN_PROCESS))
    store.add_case(make_case("z", federal_status=TrackStatus.TAXES_SENT))

    page = await store.list_alarm_eligible_case_ids(after_id=None, limit=2)
    assert page.ids == ["a", "b"]
    assert page.has_more
    page = await store.list_alarm_eligible_case_ids(after_id=page.next_cursor, limit=2)
    assert page.ids == ["c"]
    assert not page.has_more
