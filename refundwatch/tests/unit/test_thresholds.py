from __future__ import annotations

import pytest

from refundwatch.core.config import get_settings
from refundwatch.core.errors import CaseNotFoundError
from refundwatch.domain.alarms import EffectiveThresholds, ThresholdOverride, ThresholdUpdate
from refundwatch.domain.statuses import TrackStatus
from refundwatch.persistence.memory import InMemoryCaseStore, InMemoryThresholdStore
from refundwatch.services.alarms.thresholds import (
    ThresholdResolver,
    default_thresholds,
    delete_thresholds,
    get_thresholds,
    resolve_thresholds,
    set_thresholds,
)
from refundwatch.tests.utils.cases import make_case


DEFAULTS = EffectiveThresholds(
    federal_in_process_days=21,
    state_in_process_days=50,
    verification_timeout_days=63,
    letter_sent_timeout_days=63,
)


def test_default_thresholds_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("ALARM_FEDERAL_IN_PROCESS_DAYS", "30")
    get_settings.cache_clear()
    thresholds = default_thresholds()
    assert thresholds.federal_in_process_days == 30
    assert thresholds.state_in_process_days == 50
    assert not thresholds.disable_federal_alarms


def test_override_fields_win_and_unset_fields_fall_back() -> None:
    override = ThresholdOverride(
        case_id="case-1",
        federal_in_process_days=10,
        disable_state_alarms=True,
    )
    effective = resolve_thresholds(override, DEFAULTS)
    assert effective.federal_in_process_days == 10
    assert effective.state_in_process_days == 50
    assert effective.verification_timeout_days == 63
    assert effective.disable_state_alarms
    assert not effective.disable_federal_alarms


def test_missing_override_returns_defaults() -> None:
    assert resolve_thresholds(None, DEFAULTS) is DEFAULTS


@pytest.mark.asyncio
async def test_resolver_reads_override_from_store() -> None:
    store = InMemoryThresholdStore()
    await store.upsert_override(
        "case-1",
        ThresholdUpdate(verification_timeout_days=30),
        actor_id="admin-1",
    )
    resolver = ThresholdResolver(store, DEFAULTS)
    assert (await resolver.resolve("case-1")).verification_timeout_days == 30
    assert await resolver.resolve("case-2") == DEFAULTS


@pytest.mark.asyncio
async def test_threshold_admin_round_trip() -> None:
    threshold_store = InMemoryThresholdStore()
    case_store = InMemoryCaseStore(threshold_store)
    case_store.add_case(make_case("case-1", federal_status=TrackStatus.IN_PROCESS, federal_days=5))

    view = await get_thresholds(
        case_store=case_store, threshold_store=threshold_store, case_id="case-1", defaults=DEFAULTS
    )
    assert not view.is_custom
    assert view.thresholds == DEFAULTS
    assert view.client_name == "Client case-1"

    view = await set_thresholds(
        case_store=case_store,
        threshold_store=threshold_store,
        case_id="case-1",
        fields=ThresholdUpdate(federal_in_process_days=7, reason="client travelling"),
        actor_id="admin-1",
        defaults=DEFAULTS,
    )
    assert view.is_custom
    assert view.thresholds.federal_in_process_days == 7
    assert view.reason == "client travelling"
    assert view.as_dict()["thresholds"]["federal_in_process_days"] == 7
    first = threshold_store.peek("case-1")

    await set_thresholds(
        case_store=case_store,
        threshold_store=threshold_store,
        case_id="case-1",
        fields=ThresholdUpdate(federal_in_process_days=9),
        actor_id="admin-2",
        defaults=DEFAULTS,
    )
    second = threshold_store.peek("case-1")
    assert second.created_by_id == "admin-1"
    assert second.created_at == first.created_at
    assert second.federal_in_process_days == 9

    assert await delete_thresholds(case_store=case_store, threshold_store=threshold_store, case_id="case-1")
    assert not await delete_thresholds(case_store=case_store, threshold_store=threshold_store, case_id="case-1")


@pytest.mark.asyncio
async def test_threshold_admin_requires_existing_case() -> None:
    threshold_store = InMemoryThresholdStore()
    case_store = InMemoryCaseStore(threshold_store)
    with pytest.raises(CaseNotFoundError):
        await get_thresholds(case_store=case_store, threshold_store=threshold_store, case_id="missing")
    with pytest.raises(CaseNotFoundError):
        await set_thresholds(
            case_store=case_store,
            threshold_store=threshold_store,
            case_id="missing",
            fields=ThresholdUpdate(),
            actor_id=None,
        )
