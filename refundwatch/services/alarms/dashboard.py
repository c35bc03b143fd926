from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from refundwatch.core.config import get_settings
from refundwatch.domain.alarms import CaseSnapshot, ComputedAlarm, EffectiveThresholds
from refundwatch.domain.statuses import AlarmLevel
from refundwatch.persistence.base import CaseStore
from refundwatch.services.alarms.calculator import calculate_case_alarms, highest_level
from refundwatch.services.alarms.thresholds import default_thresholds, resolve_thresholds
from refundwatch.services.pagination import decode_case_cursor, encode_case_cursor


LEVEL_FILTERS = ("warning", "critical", "all")


@dataclass(frozen=True)
class DashboardFilters:
    hide_completed: bool = False
    level: str = "all"
    cursor: str | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.level not in LEVEL_FILTERS:
            raise ValueError(f"level must be one of {', '.join(LEVEL_FILTERS)}")


@dataclass(frozen=True)
class DashboardItem:
    case_id: str
    client_name: str | None
    client_email: str | None
    alarms: list[ComputedAlarm]
    highest_level: AlarmLevel
    federal_status: str | None
    state_status: str | None
    federal_status_changed_at: datetime | None
    state_status_changed_at: datetime | None
    has_custom_thresholds: bool

    @property
    def max_days(self) -> int:
        return max(alarm.days_since_status_change for alarm in self.alarms)

    def as_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "alarms": [alarm.as_dict() for alarm in self.alarms],
            "highest_level": self.highest_level.value,
            "federal_status": self.federal_status,
            "state_status": self.state_status,
            "federal_status_changed_at": (
                self.federal_status_changed_at.isoformat() if self.federal_status_changed_at else None
            ),
            "state_status_changed_at": (
                self.state_status_changed_at.isoformat() if self.state_status_changed_at else None
            ),
            "has_custom_thresholds": self.has_custom_thresholds,
        }


@dataclass
class DashboardPage:
    items: list[DashboardItem] = field(default_factory=list)
    total_critical: int = 0
    total_warning: int = 0
    has_more: bool = False
    next_cursor: str | None = None

    @property
    def total_with_alarms(self) -> int:
        return len(self.items)

    def as_dict(self) -> dict[str, Any]:
        return {
            "items": [item.as_dict() for item in self.items],
            "total_with_alarms": self.total_with_alarms,
            "total_critical": self.total_critical,
            "total_warning": self.total_warning,
            "has_more": self.has_more,
            "next_cursor": self.next_cursor,
        }


def _sort_key(item: DashboardItem) -> tuple[int, int]:
    # Critical first, then the longest-stalled case.
    return (0 if item.highest_level is AlarmLevel.CRITICAL else 1, -item.max_days)


def _build_item(case: CaseSnapshot, alarms: list[ComputedAlarm], level: AlarmLevel) -> DashboardItem:
    return DashboardItem(
        case_id=case.id,
        client_name=case.client_name,
        client_email=case.client_email,
        alarms=alarms,
        highest_level=level,
        federal_status=case.federal_status.value if case.federal_status else None,
        state_status=case.state_status.value if case.state_status else None,
        federal_status_changed_at=case.federal_status_changed_at,
        state_status_changed_at=case.state_status_changed_at,
        has_custom_thresholds=case.threshold_override is not None,
    )


class AlarmDashboard:
    """Live alarm view computed from case statuses, independent of stored history."""

    def __init__(self, case_store: CaseStore, *, defaults: EffectiveThresholds | None = None) -> None:
        self._cases = case_store
        self._defaults = defaults

    def _clamp_limit(self, limit: int | None) -> int:
        settings = get_settings()
        if not limit or limit < 1:
            return settings.dashboard_default_limit
        return min(limit, settings.dashboard_max_limit)

    async def dashboard(self, filters: DashboardFilters | None = None, *, now: datetime | None = None) -> DashboardPage:
        filters = filters or DashboardFilters()
        settings = get_settings()
        limit = self._clamp_limit(filters.limit)
        after_id = decode_case_cursor(filters.cursor, settings.ui_cursor_secret) if filters.cursor else None
        now = now or datetime.now(timezone.utc)
        defaults = self._defaults or default_thresholds(settings)

        # Fetch one extra row to detect another page of the pre-filter scan.
        cases = await self._cases.list_alarm_eligible_cases(
            after_id=after_id,
            limit=limit + 1,
            hide_completed=filters.hide_completed,
        )
        has_more = len(cases) > limit
        scanned = cases[:limit]

        page = DashboardPage(has_more=has_more)
        for case in scanned:
            thresholds = resolve_thresholds(case.threshold_override, defaults)
            alarms = calculate_case_alarms(case, thresholds, now=now)
            level = highest_level(alarms)
            if level is None:
                continue
            if filters.level != "all" and level.value != filters.level:
                continue
            if level is AlarmLevel.CRITICAL:
                page.total_critical += 1
            else:
                page.total_warning += 1
            page.items.append(_build_item(case, alarms, level))

        page.items.sort(key=_sort_key)
        if has_more and scanned:
            page.next_cursor = encode_case_cursor(scanned[-1].id, settings.ui_cursor_secret)
        return page
