from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from refundwatch.core.errors import CaseNotFoundError, DuplicateOpenAlarmError
from refundwatch.domain.alarms import (
    AlarmRecord,
    CaseSnapshot,
    ComputedAlarm,
    NewAlarmRecord,
    ReconcileResult,
)
from refundwatch.domain.statuses import AlarmResolution, AlarmType, Track
from refundwatch.persistence.base import AlarmStore, CaseStore
from refundwatch.providers.notifier.dispatcher import NotificationDispatcher
from refundwatch.services.alarms.calculator import calculate_case_alarms
from refundwatch.services.alarms.thresholds import ThresholdResolver
from refundwatch.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

AUTO_RESOLVE_REASON = "Status changed - alarm condition no longer met"
SUPERSEDED_REASON = "Superseded by duplicate open alarm"

_TEMPLATE_KEYS = {
    AlarmType.VERIFICATION_TIMEOUT: "notifications.alarm_verification_timeout",
    AlarmType.LETTER_SENT_TIMEOUT: "notifications.alarm_letter_sent",
}
_GENERAL_TEMPLATE_KEY = "notifications.alarm_general"

AlarmKey = tuple[AlarmType, Track]


def template_key_for(alarm_type: AlarmType) -> str:
    return _TEMPLATE_KEYS.get(alarm_type, _GENERAL_TEMPLATE_KEY)


class KeyedLock:
    """One asyncio.Lock per key, dropped once no task holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


def _triggered_sort_key(record: AlarmRecord) -> datetime:
    return record.triggered_at or datetime.min.replace(tzinfo=timezone.utc)


class AlarmReconciler:
    def __init__(
        self,
        *,
        case_store: CaseStore,
        alarm_store: AlarmStore,
        resolver: ThresholdResolver,
        dispatcher: NotificationDispatcher,
        locks: KeyedLock | None = None,
    ) -> None:
        self._cases = case_store
        self._alarms = alarm_store
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._locks = locks or KeyedLock()

    async def reconcile(self, case_id: str, *, now: datetime | None = None) -> ReconcileResult:
        """Bring a case's open alarm records in line with its current statuses.

        Runs are serialized per case id; distinct cases reconcile concurrently.
        Running twice without an intervening status change is a no-op apart
        from refreshed elapsed-day counts.
        """
        async with self._locks.hold(case_id):
            return await self._reconcile_locked(case_id, now or datetime.now(timezone.utc))

    async def _reconcile_locked(self, case_id: str, now: datetime) -> ReconcileResult:
        case = await self._cases.get_case(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        thresholds = await self._resolver.resolve(case_id)
        computed = {alarm.key: alarm for alarm in calculate_case_alarms(case, thresholds, now=now)}

        result = ReconcileResult(case_id=case_id)
        open_by_key = await self._canonical_open_records(case_id, now, result)

        for key, record in open_by_key.items():
            if key not in computed:
                await self._auto_resolve(record, AUTO_RESOLVE_REASON, now)
                result.auto_resolved += 1

        for key, alarm in computed.items():
            existing = open_by_key.get(key)
            if existing is not None:
                result.open_alarms.append(await self._refresh(existing, alarm, result))
                continue
            record = await self._create(case, alarm, result)
            if record is not None:
                result.open_alarms.append(record)

        if result.created or result.auto_resolved:
            logger.info(
                "alarm_reconcile case_id=%s created=%s refreshed=%s auto_resolved=%s",
                case_id,
                result.created,
                result.refreshed,
                result.auto_resolved,
            )
        return result

    async def _canonical_open_records(
        self,
        case_id: str,
        now: datetime,
        result: ReconcileResult,
    ) -> dict[AlarmKey, AlarmRecord]:
        grouped: dict[AlarmKey, list[AlarmRecord]] = defaultdict(list)
        for record in await self._alarms.find_open_alarms(case_id):
            grouped[record.key].append(record)

        canonical: dict[AlarmKey, AlarmRecord] = {}
        for key, records in grouped.items():
            records.sort(key=_triggered_sort_key, reverse=True)
            canonical[key] = records[0]
            if len(records) == 1:
                continue
            # Data repair: keep the most recently triggered row, retire the rest.
            logger.error(
                "alarm_duplicate_open_records case_id=%s alarm_type=%s track=%s count=%s kept=%s",
                case_id,
                key[0].value,
                key[1].value,
                len(records),
                records[0].id,
            )
            increment_counter("alarm_duplicates_repaired", len(records) - 1)
            for duplicate in records[1:]:
                await self._auto_resolve(duplicate, SUPERSEDED_REASON, now)
                result.auto_resolved += 1
        return canonical

    async def _auto_resolve(self, record: AlarmRecord, reason: str, now: datetime) -> None:
        await self._alarms.update_alarm(
            record.id,
            {
                "resolution": AlarmResolution.AUTO_RESOLVED,
                "resolved_at": now,
                "auto_resolve_reason": reason,
            },
        )
        increment_counter("alarms_auto_resolved")

    async def _refresh(self, record: AlarmRecord, alarm: ComputedAlarm, result: ReconcileResult) -> AlarmRecord:
        if record.actual_days == alarm.days_since_status_change and record.message == alarm.message:
            return record
        updated = await self._alarms.update_alarm(
            record.id,
            {"actual_days": alarm.days_since_status_change, "message": alarm.message},
        )
        result.refreshed += 1
        increment_counter("alarms_refreshed")
        return updated or record

    async def _create(
        self,
        case: CaseSnapshot,
        alarm: ComputedAlarm,
        result: ReconcileResult,
    ) -> AlarmRecord | None:
        status = case.track_status(alarm.track)
        changed_at = case.track_changed_at(alarm.track)
        if status is None or changed_at is None:
            return None
        new_record = NewAlarmRecord(
            case_id=case.id,
            alarm_type=alarm.type,
            alarm_level=alarm.level,
            track=alarm.track,
            message=alarm.message,
            threshold_days=alarm.threshold,
            actual_days=alarm.days_since_status_change,
            status_at_trigger=status.value,
            status_changed_at=changed_at,
        )
        try:
            record = await self._alarms.create_alarm(new_record)
        except DuplicateOpenAlarmError:
            # Another writer opened the same alarm first; refresh the winner instead.
            logger.warning(
                "alarm_create_conflict case_id=%s alarm_type=%s track=%s",
                case.id,
                alarm.type.value,
                alarm.track.value,
            )
            winner = await self._alarms.find_open_alarm(case.id, alarm.type, alarm.track)
            if winner is None:
                raise
            return await self._refresh(winner, alarm, result)

        result.created += 1
        increment_counter("alarms_created")
        self._notify(case, alarm)
        return record

    def _notify(self, case: CaseSnapshot, alarm: ComputedAlarm) -> None:
        if not case.client_user_id:
            logger.warning("alarm_notification_skipped case_id=%s reason=no_client_user", case.id)
            return
        self._dispatcher.dispatch(
            case.client_user_id,
            template_key_for(alarm.type),
            {
                "track": alarm.track.value,
                "days": alarm.days_since_status_change,
                "alarm_type": alarm.type.value,
            },
        )
