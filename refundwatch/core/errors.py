from __future__ import annotations

from typing import Any


class RefundWatchError(Exception):
    """Base error for refundwatch."""


class InvalidStatusTransitionError(RefundWatchError):
    """A status move that the family's transition map does not allow."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        *,
        family: str,
        current_status: str | None,
        attempted_status: str,
        allowed: list[str],
    ) -> None:
        self.family = family
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.allowed = allowed
        super().__init__(self.message)

    @property
    def message(self) -> str:
        allowed = ", ".join(self.allowed) or "none"
        return (
            f"{self.family} status transition not allowed: "
            f'from "{self.current_status or "no status"}" to "{self.attempted_status}". '
            f"Allowed transitions: {allowed}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "status_type": self.family,
            "current_status": self.current_status,
            "attempted_status": self.attempted_status,
            "allowed_transitions": list(self.allowed),
            "message": self.message,
        }


class NotFoundError(RefundWatchError):
    """Requested entity does not exist."""


class CaseNotFoundError(NotFoundError):
    """Tax case id not present in the case store."""

    def __init__(self, case_id: str) -> None:
        self.case_id = case_id
        super().__init__(f"Tax case {case_id} not found")


class AlarmNotFoundError(NotFoundError):
    """Alarm record id not present in the alarm store."""

    def __init__(self, alarm_id: str) -> None:
        self.alarm_id = alarm_id
        super().__init__(f"Alarm {alarm_id} not found")


class DuplicateOpenAlarmError(RefundWatchError):
    """Storage rejected a second open alarm for the same case/type/track."""

    def __init__(self, case_id: str, alarm_type: str, track: str) -> None:
        self.case_id = case_id
        self.alarm_type = alarm_type
        self.track = track
        super().__init__(f"Open alarm already exists for case={case_id} type={alarm_type} track={track}")


class NotifierError(RefundWatchError):
    """Client notification delivery failure."""


class NotifierConfigError(NotifierError):
    """Missing or invalid notifier configuration."""


class CursorError(RefundWatchError, ValueError):
    """Malformed or tampered pagination cursor."""
