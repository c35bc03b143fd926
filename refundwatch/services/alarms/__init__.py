from refundwatch.services.alarms.calculator import CRITICAL_ESCALATION_RATIO, calculate_alarms, highest_level
from refundwatch.services.alarms.dashboard import AlarmDashboard, DashboardFilters, DashboardPage
from refundwatch.services.alarms.engine import AlarmEngine, get_alarm_engine
from refundwatch.services.alarms.reconciler import AlarmReconciler
from refundwatch.services.alarms.scheduler import AlarmSyncScheduler, SyncRunState, SyncStatus
from refundwatch.services.alarms.thresholds import ThresholdResolver, resolve_thresholds
from refundwatch.services.alarms.transitions import get_valid_next_statuses, is_valid_transition

__all__ = [
    "AlarmDashboard",
    "AlarmEngine",
    "AlarmReconciler",
    "AlarmSyncScheduler",
    "CRITICAL_ESCALATION_RATIO",
    "DashboardFilters",
    "DashboardPage",
    "SyncRunState",
    "SyncStatus",
    "ThresholdResolver",
    "calculate_alarms",
    "get_alarm_engine",
    "get_valid_next_statuses",
    "highest_level",
    "is_valid_transition",
    "resolve_thresholds",
]
