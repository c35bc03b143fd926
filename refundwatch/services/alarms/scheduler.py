from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from refundwatch.core.config import get_settings
from refundwatch.persistence.base import AlarmStore, CaseStore
from refundwatch.services.alarms.reconciler import AlarmReconciler
from refundwatch.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatus:
    last_sync_at: datetime | None = None
    cases_processed: int = 0
    alarms_triggered: int = 0
    alarms_auto_resolved: int = 0
    errors: int = 0
    batches: int = 0
    outcome: str | None = None
    is_running: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "cases_processed": self.cases_processed,
            "alarms_triggered": self.alarms_triggered,
            "alarms_auto_resolved": self.alarms_auto_resolved,
            "errors": self.errors,
            "batches": self.batches,
            "outcome": self.outcome,
            "is_running": self.is_running,
        }


class SyncRunState:
    """Process-local run gate plus the statistics of the last finished run.

    Not a distributed lock: only one process may run the daily sync.
    """

    def __init__(self) -> None:
        self._running = False
        self._last = SyncStatus()

    @property
    def is_running(self) -> bool:
        return self._running

    def try_acquire(self) -> bool:
        # Check-and-set without an await in between, so it is atomic on the event loop.
        if self._running:
            return False
        self._running = True
        return True

    def release(self) -> None:
        self._running = False

    def record(self, status: SyncStatus) -> None:
        self._last = replace(status, is_running=False)

    def status(self) -> SyncStatus:
        return replace(self._last, is_running=self._running)


@dataclass
class _RunStats:
    cases_processed: int = 0
    alarms_triggered: int = 0
    alarms_auto_resolved: int = 0
    errors: int = 0
    batches: int = 0


class AlarmSyncScheduler:
    def __init__(
        self,
        *,
        case_store: CaseStore,
        alarm_store: AlarmStore,
        reconciler: AlarmReconciler,
        state: SyncRunState,
        batch_size: int | None = None,
        scan_page_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._cases = case_store
        self._alarms = alarm_store
        self._reconciler = reconciler
        self._state = state
        self._batch_size = max(1, batch_size or settings.alarm_sync_batch_size)
        self._scan_page_size = max(1, scan_page_size or settings.alarm_sync_scan_page_size)

    @property
    def state(self) -> SyncRunState:
        return self._state

    async def collect_eligible_case_ids(self) -> list[str]:
        case_ids: list[str] = []
        after_id: str | None = None
        while True:
            page = await self._cases.list_alarm_eligible_case_ids(after_id=after_id, limit=self._scan_page_size)
            case_ids.extend(page.ids)
            if not page.has_more or not page.next_cursor:
                return case_ids
            after_id = page.next_cursor

    async def _open_counts(self, case_ids: list[str]) -> list[int | None]:
        counts = await asyncio.gather(
            *(self._alarms.count_open_alarms(case_id) for case_id in case_ids),
            return_exceptions=True,
        )
        return [count if isinstance(count, int) else None for count in counts]

    async def _run_batch(self, case_ids: list[str], stats: _RunStats) -> None:
        before = await self._open_counts(case_ids)
        results = await asyncio.gather(
            *(self._reconciler.reconcile(case_id) for case_id in case_ids),
            return_exceptions=True,
        )
        after = await self._open_counts(case_ids)
        stats.batches += 1

        for case_id, result, count_before, count_after in zip(case_ids, results, before, after):
            if isinstance(result, BaseException):
                stats.errors += 1
                increment_counter("alarm_sync_errors")
                logger.error(
                    "alarm_sync_case_failed case_id=%s error=%s",
                    case_id,
                    type(result).__name__,
                    exc_info=result,
                )
                continue
            stats.cases_processed += 1
            if count_before is None or count_after is None:
                continue
            diff = count_after - count_before
            if diff > 0:
                stats.alarms_triggered += diff
            elif diff < 0:
                stats.alarms_auto_resolved += -diff

    async def run_batch_sync(self) -> SyncStatus:
        """Reconcile every alarm-eligible case in fixed-size concurrent batches.

        Returns the last completed statistics immediately when a run is already
        in progress. Per-case failures are counted and never abort the run.
        """
        if not self._state.try_acquire():
            logger.warning("alarm_sync_skipped reason=already_running")
            return self._state.status()

        stats = _RunStats()
        outcome = "failed"
        try:
            case_ids = await self.collect_eligible_case_ids()
            logger.info(
                "alarm_sync_started eligible_cases=%s batch_size=%s",
                len(case_ids),
                self._batch_size,
            )
            for start in range(0, len(case_ids), self._batch_size):
                await self._run_batch(case_ids[start : start + self._batch_size], stats)
            outcome = "completed" if stats.errors == 0 else "completed_with_errors"
        except Exception:  # noqa: BLE001 - a crashed run must still publish stats and free the gate.
            logger.exception("alarm_sync_failed batches=%s", stats.batches)
        finally:
            self._state.record(
                SyncStatus(
                    last_sync_at=datetime.now(timezone.utc),
                    cases_processed=stats.cases_processed,
                    alarms_triggered=stats.alarms_triggered,
                    alarms_auto_resolved=stats.alarms_auto_resolved,
                    errors=stats.errors,
                    batches=stats.batches,
                    outcome=outcome,
                )
            )
            self._state.release()

        logger.info(
            "alarm_sync_complete cases_processed=%s alarms_triggered=%s alarms_auto_resolved=%s errors=%s outcome=%s",
            stats.cases_processed,
            stats.alarms_triggered,
            stats.alarms_auto_resolved,
            stats.errors,
            outcome,
        )
        return self._state.status()
