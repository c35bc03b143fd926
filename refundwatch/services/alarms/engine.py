from __future__ import annotations

import logging
from datetime import datetime

from refundwatch.core.config import get_settings
from refundwatch.core.errors import CaseNotFoundError
from refundwatch.domain.alarms import (
    AlarmHistoryFilters,
    AlarmRecord,
    EffectiveThresholds,
    ReconcileResult,
    StatusChangeRequest,
    ThresholdUpdate,
)
from refundwatch.domain.statuses import StatusFamily
from refundwatch.persistence.base import AlarmStore, CaseStore, ThresholdStore
from refundwatch.persistence.memory import InMemoryAlarmStore, InMemoryCaseStore, InMemoryThresholdStore
from refundwatch.providers.notifier.base import Notifier
from refundwatch.providers.notifier.dispatcher import NotificationDispatcher
from refundwatch.providers.notifier.factory import get_notifier
from refundwatch.services.alarms import lifecycle
from refundwatch.services.alarms import thresholds as threshold_admin
from refundwatch.services.alarms.dashboard import AlarmDashboard, DashboardFilters, DashboardPage
from refundwatch.services.alarms.reconciler import AlarmReconciler, KeyedLock
from refundwatch.services.alarms.scheduler import AlarmSyncScheduler, SyncRunState, SyncStatus
from refundwatch.services.alarms.status_updates import StatusChangeResult, apply_status_change
from refundwatch.services.alarms.thresholds import ThresholdResolver, ThresholdsView
from refundwatch.services.alarms.transitions import get_valid_next_statuses


logger = logging.getLogger(__name__)


class AlarmEngine:
    """Wires the stores, notifier and alarm services into one process-wide facade."""

    def __init__(
        self,
        *,
        case_store: CaseStore,
        alarm_store: AlarmStore,
        threshold_store: ThresholdStore,
        notifier: Notifier | None = None,
        defaults: EffectiveThresholds | None = None,
        state: SyncRunState | None = None,
        batch_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self.case_store = case_store
        self.alarm_store = alarm_store
        self.threshold_store = threshold_store
        self.defaults = defaults
        self.notifier = notifier
        self.dispatcher = NotificationDispatcher(notifier, max_concurrency=settings.notify_max_concurrency)
        self.resolver = ThresholdResolver(threshold_store, defaults)
        self.reconciler = AlarmReconciler(
            case_store=case_store,
            alarm_store=alarm_store,
            resolver=self.resolver,
            dispatcher=self.dispatcher,
            locks=KeyedLock(),
        )
        self.dashboard_view = AlarmDashboard(case_store, defaults=defaults)
        self.scheduler = AlarmSyncScheduler(
            case_store=case_store,
            alarm_store=alarm_store,
            reconciler=self.reconciler,
            state=state or SyncRunState(),
            batch_size=batch_size,
        )

    @classmethod
    def in_memory(cls, *, notifier: Notifier | None = None, **kwargs) -> "AlarmEngine":
        threshold_store = InMemoryThresholdStore()
        return cls(
            case_store=InMemoryCaseStore(threshold_store),
            alarm_store=InMemoryAlarmStore(),
            threshold_store=threshold_store,
            notifier=notifier,
            **kwargs,
        )

    async def reconcile(self, case_id: str, *, now: datetime | None = None) -> ReconcileResult:
        return await self.reconciler.reconcile(case_id, now=now)

    async def dashboard(self, filters: DashboardFilters | None = None) -> DashboardPage:
        return await self.dashboard_view.dashboard(filters)

    async def run_batch_sync(self) -> SyncStatus:
        return await self.scheduler.run_batch_sync()

    def sync_status(self) -> SyncStatus:
        return self.scheduler.state.status()

    async def acknowledge(self, alarm_id: str, *, actor_id: str | None) -> AlarmRecord:
        return await lifecycle.acknowledge_alarm(self.alarm_store, alarm_id, actor_id=actor_id)

    async def resolve(self, alarm_id: str, *, actor_id: str | None, note: str | None = None) -> AlarmRecord:
        return await lifecycle.resolve_alarm(self.alarm_store, alarm_id, actor_id=actor_id, note=note)

    async def dismiss(self, alarm_id: str, *, actor_id: str | None, reason: str | None = None) -> AlarmRecord:
        return await lifecycle.dismiss_alarm(self.alarm_store, alarm_id, actor_id=actor_id, reason=reason)

    async def dismiss_all(self, case_id: str, *, actor_id: str | None) -> int:
        return await lifecycle.dismiss_all_for_case(self.alarm_store, case_id, actor_id=actor_id)

    async def history(self, filters: AlarmHistoryFilters, *, limit: int | None = None) -> list[AlarmRecord]:
        return await lifecycle.list_alarm_history(self.alarm_store, filters, limit=limit)

    async def get_thresholds(self, case_id: str) -> ThresholdsView:
        return await threshold_admin.get_thresholds(
            case_store=self.case_store,
            threshold_store=self.threshold_store,
            case_id=case_id,
            defaults=self.defaults,
        )

    async def set_thresholds(self, case_id: str, fields: ThresholdUpdate, *, actor_id: str | None) -> ThresholdsView:
        return await threshold_admin.set_thresholds(
            case_store=self.case_store,
            threshold_store=self.threshold_store,
            case_id=case_id,
            fields=fields,
            actor_id=actor_id,
            defaults=self.defaults,
        )

    async def delete_thresholds(self, case_id: str) -> bool:
        return await threshold_admin.delete_thresholds(
            case_store=self.case_store,
            threshold_store=self.threshold_store,
            case_id=case_id,
        )

    async def change_status(
        self,
        case_id: str,
        request: StatusChangeRequest,
        *,
        actor_id: str | None,
    ) -> StatusChangeResult:
        return await apply_status_change(
            case_store=self.case_store,
            reconciler=self.reconciler,
            case_id=case_id,
            request=request,
            actor_id=actor_id,
        )

    async def next_statuses(self, case_id: str, family: StatusFamily) -> list[str]:
        case = await self.case_store.get_case(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        current = {
            StatusFamily.CASE: case.case_status,
            StatusFamily.FEDERAL: case.federal_status,
            StatusFamily.STATE: case.state_status,
        }[family]
        return get_valid_next_statuses(family, current)

    async def aclose(self) -> None:
        # Let queued client notifications finish before shutdown.
        await self.dispatcher.drain()
        # Notifiers holding network clients expose aclose; the others have nothing to release.
        close = getattr(self.notifier, "aclose", None)
        if close is not None:
            await close()


_engine: AlarmEngine | None = None


def build_sql_engine() -> AlarmEngine:
    # Import lazily so in-memory users never build a database engine.
    from refundwatch.persistence.db import SessionLocal
    from refundwatch.persistence.repos.alarms import SqlAlarmStore
    from refundwatch.persistence.repos.cases import SqlCaseStore
    from refundwatch.persistence.repos.thresholds import SqlThresholdStore

    return AlarmEngine(
        case_store=SqlCaseStore(SessionLocal),
        alarm_store=SqlAlarmStore(SessionLocal),
        threshold_store=SqlThresholdStore(SessionLocal),
        notifier=get_notifier(),
    )


def get_alarm_engine() -> AlarmEngine:
    global _engine
    if _engine is None:
        _engine = build_sql_engine()
        logger.info("alarm_engine_initialized notifier=%s", get_settings().notifier_provider)
    return _engine


def reset_alarm_engine() -> None:
    # Allow tests to rebuild the engine after tweaking settings.
    global _engine
    _engine = None


async def shutdown_alarm_engine() -> None:
    # Drain pending notifications if the process ever built the engine.
    if _engine is not None:
        await _engine.aclose()
