from __future__ import annotations

from enum import Enum

from refundwatch.core.errors import InvalidStatusTransitionError
from refundwatch.domain.statuses import CaseStatus, StatusFamily, TrackStatus


CASE_STATUS_TRANSITIONS: dict[CaseStatus, tuple[CaseStatus, ...]] = {
    CaseStatus.AWAITING_FORM: (CaseStatus.AWAITING_DOCS, CaseStatus.CASE_ISSUES),
    CaseStatus.AWAITING_DOCS: (
        CaseStatus.AWAITING_FORM,
        CaseStatus.DOCUMENTS_SENT,
        CaseStatus.PREPARING,
        CaseStatus.CASE_ISSUES,
    ),
    CaseStatus.DOCUMENTS_SENT: (CaseStatus.AWAITING_DOCS, CaseStatus.PREPARING, CaseStatus.CASE_ISSUES),
    CaseStatus.PREPARING: (
        CaseStatus.AWAITING_DOCS,
        CaseStatus.DOCUMENTS_SENT,
        CaseStatus.TAXES_FILED,
        CaseStatus.CASE_ISSUES,
    ),
    CaseStatus.TAXES_FILED: (CaseStatus.CASE_ISSUES,),
    CaseStatus.CASE_ISSUES: (
        CaseStatus.AWAITING_FORM,
        CaseStatus.AWAITING_DOCS,
        CaseStatus.DOCUMENTS_SENT,
        CaseStatus.PREPARING,
        CaseStatus.TAXES_FILED,
    ),
}

# Federal and state tracks share one topology; each track is validated on its own.
TRACK_STATUS_TRANSITIONS: dict[TrackStatus, tuple[TrackStatus, ...]] = {
    TrackStatus.IN_PROCESS: (
        TrackStatus.IN_VERIFICATION,
        TrackStatus.DEPOSIT_PENDING,
        TrackStatus.CHECK_IN_TRANSIT,
        TrackStatus.ISSUES,
    ),
    TrackStatus.IN_VERIFICATION: (
        TrackStatus.VERIFICATION_IN_PROGRESS,
        TrackStatus.DEPOSIT_PENDING,
        TrackStatus.CHECK_IN_TRANSIT,
        TrackStatus.ISSUES,
    ),
    TrackStatus.VERIFICATION_IN_PROGRESS: (
        TrackStatus.VERIFICATION_LETTER_SENT,
        TrackStatus.DEPOSIT_PENDING,
        TrackStatus.CHECK_IN_TRANSIT,
        TrackStatus.ISSUES,
    ),
    TrackStatus.VERIFICATION_LETTER_SENT: (
        TrackStatus.DEPOSIT_PENDING,
        TrackStatus.CHECK_IN_TRANSIT,
        TrackStatus.ISSUES,
    ),
    TrackStatus.DEPOSIT_PENDING: (TrackStatus.TAXES_SENT, TrackStatus.TAXES_COMPLETED, TrackStatus.ISSUES),
    TrackStatus.CHECK_IN_TRANSIT: (TrackStatus.TAXES_SENT, TrackStatus.ISSUES),
    TrackStatus.TAXES_SENT: (TrackStatus.TAXES_COMPLETED, TrackStatus.ISSUES),
    # Completed is terminal except for reopening through issues.
    TrackStatus.TAXES_COMPLETED: (TrackStatus.ISSUES,),
    TrackStatus.ISSUES: (
        TrackStatus.IN_PROCESS,
        TrackStatus.IN_VERIFICATION,
        TrackStatus.DEPOSIT_PENDING,
        TrackStatus.CHECK_IN_TRANSIT,
        TrackStatus.TAXES_SENT,
    ),
}

_FAMILY_MAPS: dict[StatusFamily, tuple[type[Enum], dict]] = {
    StatusFamily.CASE: (CaseStatus, CASE_STATUS_TRANSITIONS),
    StatusFamily.FEDERAL: (TrackStatus, TRACK_STATUS_TRANSITIONS),
    StatusFamily.STATE: (TrackStatus, TRACK_STATUS_TRANSITIONS),
}


def _check_exhaustive() -> None:
    # Every enum member needs an entry and every edge must stay inside the enum.
    for family, (enum_cls, transitions) in _FAMILY_MAPS.items():
        missing = set(enum_cls) - set(transitions)
        if missing:
            names = sorted(member.value for member in missing)
            raise RuntimeError(f"{family.value} transition map is missing statuses: {names}")
        for source, targets in transitions.items():
            for target in targets:
                if not isinstance(target, enum_cls):
                    raise RuntimeError(f"{family.value} transition {source.value} -> {target!r} is invalid")


_check_exhaustive()


def _value(status: Enum | str | None) -> str | None:
    if status is None:
        return None
    return status.value if isinstance(status, Enum) else str(status)


def _family(family: StatusFamily | str) -> StatusFamily:
    return StatusFamily(family)


def _allowed_from(family: StatusFamily, current: str) -> list[str] | None:
    enum_cls, transitions = _FAMILY_MAPS[family]
    try:
        member = enum_cls(current)
    except ValueError:
        return None
    return [target.value for target in transitions[member]]


def is_valid_transition(
    family: StatusFamily | str,
    current: Enum | str | None,
    target: Enum | str,
) -> bool:
    """Return whether a status move is allowed for the given family.

    A missing current status accepts any first status and staying on the same
    status is always allowed. An unknown current status allows nothing else.
    """
    current_value = _value(current)
    target_value = _value(target)
    if current_value is None:
        return True
    if current_value == target_value:
        return True
    allowed = _allowed_from(_family(family), current_value)
    if allowed is None:
        return False
    return target_value in allowed


def get_valid_next_statuses(family: StatusFamily | str, current: Enum | str | None) -> list[str]:
    """List the statuses selectable from ``current``, always including ``current`` itself."""
    resolved = _family(family)
    current_value = _value(current)
    if current_value is None:
        enum_cls, _transitions = _FAMILY_MAPS[resolved]
        return [member.value for member in enum_cls]
    allowed = _allowed_from(resolved, current_value)
    if allowed is None:
        return [current_value]
    return list(dict.fromkeys([current_value, *allowed]))


def ensure_valid_transition(
    family: StatusFamily | str,
    current: Enum | str | None,
    target: Enum | str,
) -> None:
    if is_valid_transition(family, current, target):
        return
    current_value = _value(current)
    allowed = [status for status in get_valid_next_statuses(family, current) if status != current_value]
    raise InvalidStatusTransitionError(
        family=_family(family).value,
        current_status=current_value,
        attempted_status=_value(target) or "",
        allowed=allowed,
    )
