from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from refundwatch.domain.alarms import (
    AlarmHistoryFilters,
    AlarmRecord,
    CaseIdPage,
    CaseSnapshot,
    NewAlarmRecord,
    ThresholdOverride,
    ThresholdUpdate,
)
from refundwatch.domain.statuses import AlarmType, CaseStatus, Track, TrackStatus


class CaseStore(Protocol):
    async def get_case(self, case_id: str) -> CaseSnapshot | None:
        ...

    async def list_alarm_eligible_case_ids(self, *, after_id: str | None, limit: int) -> CaseIdPage:
        ...

    async def list_alarm_eligible_cases(
        self,
        *,
        after_id: str | None,
        limit: int,
        hide_completed: bool = False,
    ) -> list[CaseSnapshot]:
        ...

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
        ...


class AlarmStore(Protocol):
    async def get_alarm(self, alarm_id: str) -> AlarmRecord | None:
        ...

    async def find_open_alarms(self, case_id: str) -> list[AlarmRecord]:
        ...

    async def find_open_alarm(self, case_id: str, alarm_type: AlarmType, track: Track) -> AlarmRecord | None:
        ...

    async def create_alarm(self, record: NewAlarmRecord) -> AlarmRecord:
        # Must raise DuplicateOpenAlarmError when an open row for the same case/type/track exists.
        ...

    async def update_alarm(self, alarm_id: str, patch: dict[str, Any]) -> AlarmRecord | None:
        ...

    async def count_open_alarms(self, case_id: str) -> int:
        ...

    async def list_alarms(self, filters: AlarmHistoryFilters, *, limit: int) -> list[AlarmRecord]:
        ...


class ThresholdStore(Protocol):
    async def get_override(self, case_id: str) -> ThresholdOverride | None:
        ...

    async def upsert_override(
        self,
        case_id: str,
        fields: ThresholdUpdate,
        *,
        actor_id: str | None,
    ) -> ThresholdOverride:
        ...

    async def delete_override(self, case_id: str) -> bool:
        ...
