from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
import logging

from refundwatch.core.config import Settings, get_settings
from refundwatch.core.errors import CaseNotFoundError
from refundwatch.domain.alarms import EffectiveThresholds, ThresholdOverride, ThresholdUpdate
from refundwatch.persistence.base import CaseStore, ThresholdStore


logger = logging.getLogger(__name__)


def default_thresholds(settings: Settings | None = None) -> EffectiveThresholds:
    # System-wide limits; settings allow per-environment tuning.
    settings = settings or get_settings()
    return EffectiveThresholds(
        federal_in_process_days=settings.alarm_federal_in_process_days,
        state_in_process_days=settings.alarm_state_in_process_days,
        verification_timeout_days=settings.alarm_verification_timeout_days,
        letter_sent_timeout_days=settings.alarm_letter_sent_timeout_days,
    )


def resolve_thresholds(
    override: ThresholdOverride | None,
    defaults: EffectiveThresholds | None = None,
) -> EffectiveThresholds:
    """Merge a per-case override over the defaults, field by field.

    Unset override fields fall back to the default value; disable flags only
    come from the override.
    """
    defaults = defaults or default_thresholds()
    if override is None:
        return defaults

    def _pick(value: int | None, fallback: int) -> int:
        return value if value is not None else fallback

    return EffectiveThresholds(
        federal_in_process_days=_pick(override.federal_in_process_days, defaults.federal_in_process_days),
        state_in_process_days=_pick(override.state_in_process_days, defaults.state_in_process_days),
        verification_timeout_days=_pick(override.verification_timeout_days, defaults.verification_timeout_days),
        letter_sent_timeout_days=_pick(override.letter_sent_timeout_days, defaults.letter_sent_timeout_days),
        disable_federal_alarms=bool(override.disable_federal_alarms),
        disable_state_alarms=bool(override.disable_state_alarms),
    )


class ThresholdResolver:
    def __init__(self, threshold_store: ThresholdStore, defaults: EffectiveThresholds | None = None) -> None:
        self._store = threshold_store
        self._defaults = defaults

    @property
    def defaults(self) -> EffectiveThresholds:
        return self._defaults or default_thresholds()

    async def resolve(self, case_id: str) -> EffectiveThresholds:
        # A missing override is the common case, not an error.
        override = await self._store.get_override(case_id)
        return resolve_thresholds(override, self.defaults)


@dataclass(frozen=True)
class ThresholdsView:
    case_id: str
    client_name: str | None
    thresholds: EffectiveThresholds
    is_custom: bool
    reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "case_id": self.case_id,
            "client_name": self.client_name,
            "thresholds": self.thresholds.as_dict(),
            "is_custom": self.is_custom,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


async def get_thresholds(
    *,
    case_store: CaseStore,
    threshold_store: ThresholdStore,
    case_id: str,
    defaults: EffectiveThresholds | None = None,
) -> ThresholdsView:
    case = await case_store.get_case(case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    override = await threshold_store.get_override(case_id)
    return ThresholdsView(
        case_id=case_id,
        client_name=case.client_name,
        thresholds=resolve_thresholds(override, defaults),
        is_custom=override is not None,
        reason=override.reason if override else None,
        created_at=override.created_at if override else None,
        updated_at=override.updated_at if override else None,
    )


async def set_thresholds(
    *,
    case_store: CaseStore,
    threshold_store: ThresholdStore,
    case_id: str,
    fields: ThresholdUpdate,
    actor_id: str | None,
    defaults: EffectiveThresholds | None = None,
) -> ThresholdsView:
    if await case_store.get_case(case_id) is None:
        raise CaseNotFoundError(case_id)
    await threshold_store.upsert_override(case_id, fields, actor_id=actor_id)
    logger.info(
        "alarm_thresholds_set case_id=%s actor_id=%s reason=%s",
        case_id,
        actor_id,
        fields.reason,
    )
    return await get_thresholds(
        case_store=case_store,
        threshold_store=threshold_store,
        case_id=case_id,
        defaults=defaults,
    )


async def delete_thresholds(
    *,
    case_store: CaseStore,
    threshold_store: ThresholdStore,
    case_id: str,
) -> bool:
    if await case_store.get_case(case_id) is None:
        raise CaseNotFoundError(case_id)
    deleted = await threshold_store.delete_override(case_id)
    logger.info("alarm_thresholds_deleted case_id=%s deleted=%s", case_id, deleted)
    return deleted
