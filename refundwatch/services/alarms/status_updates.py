from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from refundwatch.core.errors import CaseNotFoundError, InvalidStatusTransitionError
from refundwatch.domain.alarms import CaseSnapshot, ReconcileResult, StatusChangeRequest
from refundwatch.domain.statuses import StatusFamily
from refundwatch.persistence.base import CaseStore
from refundwatch.services.alarms.reconciler import AlarmReconciler
from refundwatch.services.alarms.transitions import ensure_valid_transition


logger = logging.getLogger(__name__)


@dataclass
class StatusChangeResult:
    case: CaseSnapshot
    changed: list[str] = field(default_factory=list)
    forced: bool = False
    reconcile: ReconcileResult | None = None

    def as_dict(self) -> dict[str, Any]:
        case = self.case
        payload: dict[str, Any] = {
            "case_id": case.id,
            "case_status": case.case_status.value if case.case_status else None,
            "federal_status": case.federal_status.value if case.federal_status else None,
            "federal_status_changed_at": (
                case.federal_status_changed_at.isoformat() if case.federal_status_changed_at else None
            ),
            "state_status": case.state_status.value if case.state_status else None,
            "state_status_changed_at": (
                case.state_status_changed_at.isoformat() if case.state_status_changed_at else None
            ),
            "changed": list(self.changed),
            "forced": self.forced,
        }
        if self.reconcile is not None:
            payload["alarms"] = {
                "created": self.reconcile.created,
                "refreshed": self.reconcile.refreshed,
                "auto_resolved": self.reconcile.auto_resolved,
                "open": [record.as_dict() for record in self.reconcile.open_alarms],
            }
        return payload


async def apply_status_change(
    *,
    case_store: CaseStore,
    reconciler: AlarmReconciler,
    case_id: str,
    request: StatusChangeRequest,
    actor_id: str | None,
    now: datetime | None = None,
) -> StatusChangeResult:
    """Validate and persist a status update, then reconcile the case's alarms.

    Each changed family is checked against its transition map unless the
    request forces the move with a written reason. A track's changed-at is
    stamped only when that track's status actually changes.
    """
    case = await case_store.get_case(case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    now = now or datetime.now(timezone.utc)

    moves = [
        (StatusFamily.CASE, case.case_status, request.case_status),
        (StatusFamily.FEDERAL, case.federal_status, request.federal_status),
        (StatusFamily.STATE, case.state_status, request.state_status),
    ]
    changed = [(family, current, target) for family, current, target in moves if target and target != current]

    overridden: list[str] = []
    for family, current, target in changed:
        try:
            ensure_valid_transition(family, current, target)
        except InvalidStatusTransitionError:
            if not request.force:
                raise
            overridden.append(family.value)

    if overridden:
        logger.warning(
            "status_transition_override case_id=%s actor_id=%s families=%s reason=%s",
            case_id,
            actor_id,
            ",".join(overridden),
            request.override_reason,
        )

    changed_families = {family for family, _current, _target in changed}
    updated = await case_store.update_statuses(
        case_id,
        case_status=request.case_status,
        federal_status=request.federal_status,
        federal_status_changed_at=now if StatusFamily.FEDERAL in changed_families else None,
        state_status=request.state_status,
        state_status_changed_at=now if StatusFamily.STATE in changed_families else None,
    )
    if updated is None:
        raise CaseNotFoundError(case_id)

    logger.info(
        "case_status_updated case_id=%s actor_id=%s changed=%s",
        case_id,
        actor_id,
        ",".join(family.value for family, _current, _target in changed) or "none",
    )
    result = StatusChangeResult(
        case=updated,
        changed=[family.value for family, _current, _target in changed],
        forced=bool(overridden),
    )
    result.reconcile = await reconciler.reconcile(case_id, now=now)
    return result
