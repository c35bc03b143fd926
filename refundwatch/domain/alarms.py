from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator

from refundwatch.domain.statuses import (
    AlarmLevel,
    AlarmResolution,
    AlarmType,
    CaseStatus,
    Track,
    TrackStatus,
)


@dataclass(frozen=True)
class ThresholdOverride:
    # Per-case replacement values; None means "use the system default".
    case_id: str
    federal_in_process_days: int | None = None
    state_in_process_days: int | None = None
    verification_timeout_days: int | None = None
    letter_sent_timeout_days: int | None = None
    disable_federal_alarms: bool = False
    disable_state_alarms: bool = False
    reason: str | None = None
    created_by_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class EffectiveThresholds:
    federal_in_process_days: int
    state_in_process_days: int
    verification_timeout_days: int
    letter_sent_timeout_days: int
    disable_federal_alarms: bool = False
    disable_state_alarms: bool = False

    def in_process_days(self, track: Track) -> int:
        if track is Track.FEDERAL:
            return self.federal_in_process_days
        return self.state_in_process_days

    def is_disabled(self, track: Track) -> bool:
        if track is Track.FEDERAL:
            return self.disable_federal_alarms
        return self.disable_state_alarms

    def as_dict(self) -> dict[str, Any]:
        return {
            "federal_in_process_days": self.federal_in_process_days,
            "state_in_process_days": self.state_in_process_days,
            "verification_timeout_days": self.verification_timeout_days,
            "letter_sent_timeout_days": self.letter_sent_timeout_days,
            "disable_federal_alarms": self.disable_federal_alarms,
            "disable_state_alarms": self.disable_state_alarms,
        }


@dataclass(frozen=True)
class ComputedAlarm:
    # Recomputed on every read; never persisted directly.
    type: AlarmType
    level: AlarmLevel
    track: Track
    message: str
    threshold: int
    days_since_status_change: int

    @property
    def key(self) -> tuple[AlarmType, Track]:
        return (self.type, self.track)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "level": self.level.value,
            "track": self.track.value,
            "message": self.message,
            "threshold": self.threshold,
            "days_since_status_change": self.days_since_status_change,
        }


@dataclass(frozen=True)
class CaseSnapshot:
    id: str
    client_user_id: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    case_status: CaseStatus | None = None
    federal_status: TrackStatus | None = None
    federal_status_changed_at: datetime | None = None
    state_status: TrackStatus | None = None
    state_status_changed_at: datetime | None = None
    threshold_override: ThresholdOverride | None = None

    def track_status(self, track: Track) -> TrackStatus | None:
        return self.federal_status if track is Track.FEDERAL else self.state_status

    def track_changed_at(self, track: Track) -> datetime | None:
        if track is Track.FEDERAL:
            return self.federal_status_changed_at
        return self.state_status_changed_at


@dataclass(frozen=True)
class CaseIdPage:
    ids: list[str]
    has_more: bool
    next_cursor: str | None


@dataclass(frozen=True)
class NewAlarmRecord:
    case_id: str
    alarm_type: AlarmType
    alarm_level: AlarmLevel
    track: Track
    message: str
    threshold_days: int
    actual_days: int
    status_at_trigger: str
    status_changed_at: datetime


@dataclass(frozen=True)
class AlarmRecord:
    id: str
    case_id: str
    alarm_type: AlarmType
    alarm_level: AlarmLevel
    track: Track
    message: str
    threshold_days: int
    actual_days: int
    status_at_trigger: str
    status_changed_at: datetime
    resolution: AlarmResolution = AlarmResolution.ACTIVE
    resolved_at: datetime | None = None
    resolved_by_id: str | None = None
    resolved_note: str | None = None
    auto_resolve_reason: str | None = None
    triggered_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[AlarmType, Track]:
        return (self.alarm_type, self.track)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "alarm_type": self.alarm_type.value,
            "alarm_level": self.alarm_level.value,
            "track": self.track.value,
            "message": self.message,
            "threshold_days": self.threshold_days,
            "actual_days": self.actual_days,
            "status_at_trigger": self.status_at_trigger,
            "status_changed_at": _iso(self.status_changed_at),
            "resolution": self.resolution.value,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by_id": self.resolved_by_id,
            "resolved_note": self.resolved_note,
            "auto_resolve_reason": self.auto_resolve_reason,
            "triggered_at": _iso(self.triggered_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class AlarmHistoryFilters:
    case_id: str | None = None
    alarm_type: AlarmType | None = None
    alarm_level: AlarmLevel | None = None
    resolution: AlarmResolution | None = None
    track: Track | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None

    def __post_init__(self) -> None:
        # Query strings usually carry naive timestamps; bounds are always compared in UTC.
        object.__setattr__(self, "from_date", as_utc(self.from_date))
        object.__setattr__(self, "to_date", as_utc(self.to_date))


@dataclass
class ReconcileResult:
    case_id: str
    created: int = 0
    refreshed: int = 0
    auto_resolved: int = 0
    open_alarms: list[AlarmRecord] = field(default_factory=list)


class ThresholdUpdate(BaseModel):
    # Operator-supplied override values; omitted day limits fall back to defaults.
    federal_in_process_days: int | None = Field(default=None, ge=1, le=365)
    state_in_process_days: int | None = Field(default=None, ge=1, le=365)
    verification_timeout_days: int | None = Field(default=None, ge=1, le=365)
    letter_sent_timeout_days: int | None = Field(default=None, ge=1, le=365)
    disable_federal_alarms: bool = False
    disable_state_alarms: bool = False
    reason: str | None = Field(default=None, max_length=1000)


class StatusChangeRequest(BaseModel):
    case_status: CaseStatus | None = None
    federal_status: TrackStatus | None = None
    state_status: TrackStatus | None = None
    # Admin escape hatch for invalid transitions; requires a written reason.
    force: bool = False
    override_reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _require_override_reason(self) -> "StatusChangeRequest":
        if self.force and not (self.override_reason or "").strip():
            raise ValueError("override_reason is required when force is true")
        return self


def as_utc(value: datetime | None) -> datetime | None:
    # Naive timestamps are UTC; aware ones are converted so SQLite string comparisons line up.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
