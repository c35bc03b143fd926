"""In-process store implementations.

These back the engine in tests and local runs without a database. They honour
the same contracts as the SQLAlchemy stores, including the conditional insert
that rejects a second open alarm for one case/type/track.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from refundwatch.core.errors import DuplicateOpenAlarmError
from refundwatch.domain.alarms import (
    AlarmHistoryFilters,
    AlarmRecord,
    CaseIdPage,
    CaseSnapshot,
    NewAlarmRecord,
    ThresholdOverride,
    ThresholdUpdate,
)
from refundwatch.domain.statuses import (
    ALARM_ELIGIBLE_STATUSES,
    COMPLETED_STATUS,
    OPEN_RESOLUTIONS,
    AlarmResolution,
    AlarmType,
    CaseStatus,
    Track,
    TrackStatus,
)


_UPDATABLE_ALARM_FIELDS = frozenset(
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


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_alarm_eligible(case: CaseSnapshot) -> bool:
    return case.federal_status in ALARM_ELIGIBLE_STATUSES or case.state_status in ALARM_ELIGIBLE_STATUSES


def is_fully_completed(case: CaseSnapshot) -> bool:
    return case.federal_status == COMPLETED_STATUS and case.state_status == COMPLETED_STATUS


class InMemoryThresholdStore:
    def __init__(self) -> None:
        self._overrides: dict[str, ThresholdOverride] = {}

    async def get_override(self, case_id: str) -> ThresholdOverride | None:
        return self._overrides.get(case_id)

    def peek(self, case_id: str) -> ThresholdOverride | None:
        return self._overrides.get(case_id)

    async def upsert_override(
        self,
        case_id: str,
        fields: ThresholdUpdate,
        *,
        actor_id: str | None,
    ) -> ThresholdOverride:
        now = _utc_now()
        existing = self._overrides.get(case_id)
        row = ThresholdOverride(
            case_id=case_id,
            federal_in_process_days=fields.federal_in_process_days,
            state_in_process_days=fields.state_in_process_days,
            verification_timeout_days=fields.verification_timeout_days,
            letter_sent_timeout_days=fields.letter_sent_timeout_days,
            disable_federal_alarms=fields.disable_federal_alarms,
            disable_state_alarms=fields.disable_state_alarms,
            reason=fields.reason,
            # Creator and creation time are fixed by the first upsert.
            created_by_id=existing.created_by_id if existing else actor_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._overrides[case_id] = row
        return row

    async def delete_override(self, case_id: str) -> bool:
        return self._overrides.pop(case_id, None) is not None


class InMemoryCaseStore:
    def __init__(self, threshold_store: InMemoryThresholdStore | None = None) -> None:
        self._cases: dict[str, CaseSnapshot] = {}
        self._thresholds = threshold_store

    def add_case(self, case: CaseSnapshot) -> CaseSnapshot:
        self._cases[case.id] = case
        return case

    def _with_override(self, case: CaseSnapshot) -> CaseSnapshot:
        if self._thresholds is None:
            return case
        return replace(case, threshold_override=self._thresholds.peek(case.id))

    async def get_case(self, case_id: str) -> CaseSnapshot | None:
        case = self._cases.get(case_id)
        return self._with_override(case) if case is not None else None

    def _eligible_after(self, after_id: str | None) -> list[CaseSnapshot]:
        rows = [case for case in self._cases.values() if is_alarm_eligible(case)]
        if after_id is not None:
            rows = [case for case in rows if case.id > after_id]
        return sorted(rows, key=lambda case: case.id)

    async def list_alarm_eligible_case_ids(self, *, after_id: str | None, limit: int) -> CaseIdPage:
        rows = self._eligible_after(after_id)
        page = rows[:limit]
        has_more = len(rows) > limit
        return CaseIdPage(
            ids=[case.id for case in page],
            has_more=has_more,
            next_cursor=page[-1].id if has_more and page else None,
        )

    async def list_alarm_eligible_cases(
        self,
        *,
        after_id: str | None,
        limit: int,
        hide_completed: bool = False,
    ) -> list[CaseSnapshot]:
        rows = self._eligible_after(after_id)
        if hide_completed:
            rows = [case for case in rows if not is_fully_completed(case)]
        return [self._with_override(case) for case in rows[:limit]]

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
        case = self._cases.get(case_id)
        if case is None:
            return None
        changes: dict[str, Any] = {}
        if case_status is not None:
            changes["case_status"] = case_status
        if federal_status is not None:
            changes["federal_status"] = federal_status
        if federal_status_changed_at is not None:
            changes["federal_status_changed_at"] = federal_status_changed_at
        if state_status is not None:
            changes["state_status"] = state_status
        if state_status_changed_at is not None:
            changes["state_status_changed_at"] = state_status_changed_at
        case = replace(case, **changes)
        self._cases[case_id] = case
        return self._with_override(case)


class InMemoryAlarmStore:
    def __init__(self) -> None:
        self._alarms: dict[str, AlarmRecord] = {}

    def all(self) -> list[AlarmRecord]:
        return list(self._alarms.values())

    def insert_raw(self, record: AlarmRecord) -> AlarmRecord:
        # Bypass the open-alarm guard; used to seed legacy or corrupted history.
        self._alarms[record.id] = record
        return record

    async def get_alarm(self, alarm_id: str) -> AlarmRecord | None:
        return self._alarms.get(alarm_id)

    async def find_open_alarms(self, case_id: str) -> list[AlarmRecord]:
        return [
            row
            for row in self._alarms.values()
            if row.case_id == case_id and row.resolution in OPEN_RESOLUTIONS
        ]

    async def find_open_alarm(self, case_id: str, alarm_type: AlarmType, track: Track) -> AlarmRecord | None:
        matches = [row for row in await self.find_open_alarms(case_id) if row.key == (alarm_type, track)]
        if not matches:
            return None
        return max(matches, key=lambda row: row.triggered_at or datetime.min.replace(tzinfo=timezone.utc))

    async def create_alarm(self, record: NewAlarmRecord) -> AlarmRecord:
        if await self.find_open_alarm(record.case_id, record.alarm_type, record.track) is not None:
            raise DuplicateOpenAlarmError(record.case_id, record.alarm_type.value, record.track.value)
        now = _utc_now()
        row = AlarmRecord(
            id=uuid4().hex,
            case_id=record.case_id,
            alarm_type=record.alarm_type,
            alarm_level=record.alarm_level,
            track=record.track,
            message=record.message,
            threshold_days=record.threshold_days,
            actual_days=record.actual_days,
            status_at_trigger=record.status_at_trigger,
            status_changed_at=record.status_changed_at,
            resolution=AlarmResolution.ACTIVE,
            triggered_at=now,
            updated_at=now,
        )
        self._alarms[row.id] = row
        return row

    async def update_alarm(self, alarm_id: str, patch: dict[str, Any]) -> AlarmRecord | None:
        row = self._alarms.get(alarm_id)
        if row is None:
            return None
        unknown = set(patch) - _UPDATABLE_ALARM_FIELDS
        if unknown:
            raise ValueError(f"Unsupported alarm fields: {sorted(unknown)}")
        row = replace(row, **patch, updated_at=_utc_now())
        self._alarms[alarm_id] = row
        return row

    async def count_open_alarms(self, case_id: str) -> int:
        return len(await self.find_open_alarms(case_id))

    async def list_alarms(self, filters: AlarmHistoryFilters, *, limit: int) -> list[AlarmRecord]:
        rows = [row for row in self._alarms.values() if _matches(row, filters)]
        rows.sort(
            key=lambda row: row.triggered_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return rows[:limit]


def _matches(row: AlarmRecord, filters: AlarmHistoryFilters) -> bool:
    if filters.case_id is not None and row.case_id != filters.case_id:
        return False
    if filters.alarm_type is not None and row.alarm_type != filters.alarm_type:
        return False
    if filters.alarm_level is not None and row.alarm_level != filters.alarm_level:
        return False
    if filters.resolution is not None and row.resolution != filters.resolution:
        return False
    if filters.track is not None and row.track != filters.track:
        return False
    if filters.from_date is not None and (row.triggered_at is None or row.triggered_at < filters.from_date):
        return False
    if filters.to_date is not None and (row.triggered_at is None or row.triggered_at > filters.to_date):
        return False
    return True
