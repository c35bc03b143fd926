from __future__ import annotations

import pytest

from refundwatch.core.errors import InvalidStatusTransitionError
from refundwatch.domain.statuses import CaseStatus, StatusFamily, TrackStatus
from refundwatch.services.alarms.transitions import (
    CASE_STATUS_TRANSITIONS,
    TRACK_STATUS_TRANSITIONS,
    ensure_valid_transition,
    get_valid_next_statuses,
    is_valid_transition,
)


def test_transition_maps_cover_every_status() -> None:
    assert set(CASE_STATUS_TRANSITIONS) == set(CaseStatus)
    assert set(TRACK_STATUS_TRANSITIONS) == set(TrackStatus)


def test_missing_current_status_accepts_any_target() -> None:
    for status in TrackStatus:
        assert is_valid_transition(StatusFamily.FEDERAL, None, status)
    assert get_valid_next_statuses("state", None) == [status.value for status in TrackStatus]


def test_same_status_is_always_allowed() -> None:
    for status in CaseStatus:
        assert is_valid_transition("case", status, status)
    assert is_valid_transition("federal", "not_a_status", "not_a_status")


def test_track_transitions_follow_map() -> None:
    assert is_valid_transition("federal", TrackStatus.IN_PROCESS, TrackStatus.IN_VERIFICATION)
    assert is_valid_transition("state", "deposit_pending", "taxes_completed")
    assert not is_valid_transition("federal", TrackStatus.IN_PROCESS, TrackStatus.TAXES_COMPLETED)
    assert not is_valid_transition("state", TrackStatus.TAXES_COMPLETED, TrackStatus.IN_PROCESS)


def test_unknown_current_status_allows_only_itself() -> None:
    assert not is_valid_transition("case", "legacy_status", CaseStatus.PREPARING)
    assert get_valid_next_statuses("case", "legacy_status") == ["legacy_status"]


def test_next_statuses_lead_with_current_without_duplicates() -> None:
    statuses = get_valid_next_statuses(StatusFamily.CASE, CaseStatus.TAXES_FILED)
    assert statuses == ["taxes_filed", "case_issues"]
    assert len(statuses) == len(set(statuses))


def test_ensure_valid_transition_reports_allowed_targets() -> None:
    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        ensure_valid_transition("federal", TrackStatus.TAXES_COMPLETED, TrackStatus.IN_PROCESS)

    body = exc_info.value.to_dict()
    assert body["code"] == "INVALID_STATUS_TRANSITION"
    assert body["status_type"] == "federal"
    assert body["current_status"] == "taxes_completed"
    assert body["attempted_status"] == "in_process"
    assert body["allowed_transitions"] == ["issues"]
    assert "taxes_completed" in body["message"]


def test_ensure_valid_transition_passes_allowed_move() -> None:
    ensure_valid_transition("case", CaseStatus.AWAITING_FORM, CaseStatus.AWAITING_DOCS)
