from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from refundwatch.domain.alarms import CaseSnapshot, ComputedAlarm, EffectiveThresholds
from refundwatch.domain.statuses import (
    IN_PROCESS_STATUSES,
    LETTER_SENT_STATUSES,
    VERIFICATION_STATUSES,
    AlarmLevel,
    AlarmType,
    Track,
    TrackStatus,
    parse_track_status,
)


# Elapsed days above threshold * ratio escalate an alarm from warning to critical.
CRITICAL_ESCALATION_RATIO = 1.5

_TRACK_LABELS = {Track.FEDERAL: "Federal", Track.STATE: "State"}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_days(changed_at: datetime, now: datetime) -> int:
    # Whole days elapsed, floored.
    return (_as_utc(now) - _as_utc(changed_at)).days


def severity_for(days: int, threshold: int) -> AlarmLevel:
    if days > threshold * CRITICAL_ESCALATION_RATIO:
        return AlarmLevel.CRITICAL
    return AlarmLevel.WARNING


def _message(alarm_type: AlarmType, track: Track, days: int) -> str:
    label = _TRACK_LABELS[track]
    if alarm_type is AlarmType.POSSIBLE_VERIFICATION:
        return f"{label}: possible verification ({days} days in process)"
    if alarm_type is AlarmType.VERIFICATION_TIMEOUT:
        return f"{label}: verification timeout exceeded ({days} days)"
    return f"{label}: verification letter sent without response ({days} days)"


def _track_alarm(
    track: Track,
    status: TrackStatus | None,
    changed_at: datetime | None,
    thresholds: EffectiveThresholds,
    now: datetime,
) -> ComputedAlarm | None:
    if status is None or changed_at is None or thresholds.is_disabled(track):
        return None
    if status in IN_PROCESS_STATUSES:
        alarm_type = AlarmType.POSSIBLE_VERIFICATION
        threshold = thresholds.in_process_days(track)
    elif status in VERIFICATION_STATUSES:
        alarm_type = AlarmType.VERIFICATION_TIMEOUT
        threshold = thresholds.verification_timeout_days
    elif status in LETTER_SENT_STATUSES:
        alarm_type = AlarmType.LETTER_SENT_TIMEOUT
        threshold = thresholds.letter_sent_timeout_days
    else:
        return None

    days = elapsed_days(changed_at, now)
    if days <= threshold:
        return None
    return ComputedAlarm(
        type=alarm_type,
        level=severity_for(days, threshold),
        track=track,
        message=_message(alarm_type, track, days),
        threshold=threshold,
        days_since_status_change=days,
    )


def calculate_alarms(
    federal_status: TrackStatus | str | None,
    federal_changed_at: datetime | None,
    state_status: TrackStatus | str | None,
    state_changed_at: datetime | None,
    thresholds: EffectiveThresholds,
    *,
    now: datetime | None = None,
) -> list[ComputedAlarm]:
    """Compute the alarms a case currently qualifies for.

    Pure function of its inputs: each track is checked on its own, and a track
    without a status-change timestamp never alarms.
    """
    now = now or datetime.now(timezone.utc)
    alarms: list[ComputedAlarm] = []
    for track, status, changed_at in (
        (Track.FEDERAL, parse_track_status(federal_status), federal_changed_at),
        (Track.STATE, parse_track_status(state_status), state_changed_at),
    ):
        alarm = _track_alarm(track, status, changed_at, thresholds, now)
        if alarm is not None:
            alarms.append(alarm)
    return alarms


def calculate_case_alarms(
    case: CaseSnapshot,
    thresholds: EffectiveThresholds,
    *,
    now: datetime | None = None,
) -> list[ComputedAlarm]:
    return calculate_alarms(
        case.federal_status,
        case.federal_status_changed_at,
        case.state_status,
        case.state_status_changed_at,
        thresholds,
        now=now,
    )


def highest_level(alarms: Iterable[ComputedAlarm]) -> AlarmLevel | None:
    levels = {alarm.level for alarm in alarms}
    if not levels:
        return None
    if AlarmLevel.CRITICAL in levels:
        return AlarmLevel.CRITICAL
    return AlarmLevel.WARNING
