from __future__ import annotations

from datetime import datetime, timedelta, timezone

from refundwatch.domain.alarms import CaseSnapshot
from refundwatch.domain.statuses import CaseStatus, TrackStatus


# Fixed clock for deterministic elapsed-day assertions.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: int, *, now: datetime = NOW) -> datetime:
    return now - timedelta(days=days)


def make_case(
    case_id: str,
    *,
    federal_status: TrackStatus | None = None,
    federal_days: int | None = None,
    state_status: TrackStatus | None = None,
    state_days: int | None = None,
    case_status: CaseStatus | None = CaseStatus.TAXES_FILED,
    client_user_id: str | None = "user-1",
    now: datetime = NOW,
) -> CaseSnapshot:
    # Build a case whose tracks changed status the given number of days before ``now``.
    return CaseSnapshot(
        id=case_id,
        client_user_id=client_user_id,
        client_name=f"Client {case_id}",
        client_email=f"{case_id}@example.com",
        case_status=case_status,
        federal_status=federal_status,
        federal_status_changed_at=days_ago(federal_days, now=now) if federal_days is not None else None,
        state_status=state_status,
        state_status_changed_at=days_ago(state_days, now=now) if state_days is not None else None,
    )
