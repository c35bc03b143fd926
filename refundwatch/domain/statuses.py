from __future__ import annotations

from enum import Enum


class CaseStatus(str, Enum):
    AWAITING_FORM = "awaiting_form"
    AWAITING_DOCS = "awaiting_docs"
    DOCUMENTS_SENT = "documents_sent"
    PREPARING = "preparing"
    TAXES_FILED = "taxes_filed"
    CASE_ISSUES = "case_issues"


class TrackStatus(str, Enum):
    # Federal and state tracks share one vocabulary; each track is validated independently.
    IN_PROCESS = "in_process"
    IN_VERIFICATION = "in_verification"
    VERIFICATION_IN_PROGRESS = "verification_in_progress"
    VERIFICATION_LETTER_SENT = "verification_letter_sent"
    DEPOSIT_PENDING = "deposit_pending"
    CHECK_IN_TRANSIT = "check_in_transit"
    TAXES_SENT = "taxes_sent"
    TAXES_COMPLETED = "taxes_completed"
    ISSUES = "issues"


class StatusFamily(str, Enum):
    CASE = "case"
    FEDERAL = "federal"
    STATE = "state"


class Track(str, Enum):
    FEDERAL = "federal"
    STATE = "state"


class AlarmType(str, Enum):
    POSSIBLE_VERIFICATION = "possible_verification"
    VERIFICATION_TIMEOUT = "verification_timeout"
    LETTER_SENT_TIMEOUT = "letter_sent_timeout"


class AlarmLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class AlarmResolution(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    AUTO_RESOLVED = "auto_resolved"


# Status families that drive elapsed-time alarms.
IN_PROCESS_STATUSES = frozenset({TrackStatus.IN_PROCESS})
VERIFICATION_STATUSES = frozenset({TrackStatus.IN_VERIFICATION, TrackStatus.VERIFICATION_IN_PROGRESS})
LETTER_SENT_STATUSES = frozenset({TrackStatus.VERIFICATION_LETTER_SENT})
ALARM_ELIGIBLE_STATUSES = IN_PROCESS_STATUSES | VERIFICATION_STATUSES | LETTER_SENT_STATUSES

COMPLETED_STATUS = TrackStatus.TAXES_COMPLETED

OPEN_RESOLUTIONS = frozenset({AlarmResolution.ACTIVE, AlarmResolution.ACKNOWLEDGED})
TERMINAL_RESOLUTIONS = frozenset(
    {AlarmResolution.RESOLVED, AlarmResolution.DISMISSED, AlarmResolution.AUTO_RESOLVED}
)

# One-way resolution lifecycle; terminal states have no outgoing edges.
RESOLUTION_TRANSITIONS: dict[AlarmResolution, frozenset[AlarmResolution]] = {
    AlarmResolution.ACTIVE: frozenset(
        {
            AlarmResolution.ACKNOWLEDGED,
            AlarmResolution.RESOLVED,
            AlarmResolution.DISMISSED,
            AlarmResolution.AUTO_RESOLVED,
        }
    ),
    AlarmResolution.ACKNOWLEDGED: frozenset(
        {AlarmResolution.RESOLVED, AlarmResolution.DISMISSED, AlarmResolution.AUTO_RESOLVED}
    ),
    AlarmResolution.RESOLVED: frozenset(),
    AlarmResolution.DISMISSED: frozenset(),
    AlarmResolution.AUTO_RESOLVED: frozenset(),
}


def can_transition_resolution(current: AlarmResolution, target: AlarmResolution) -> bool:
    return target in RESOLUTION_TRANSITIONS[AlarmResolution(current)]


def parse_track_status(value: TrackStatus | str | None) -> TrackStatus | None:
    # Map raw producer strings onto the closed vocabulary; unknown values read as "no status".
    if value is None or isinstance(value, TrackStatus):
        return value
    try:
        return TrackStatus(value)
    except ValueError:
        return None
