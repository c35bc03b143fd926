from __future__ import annotations

import pytest

from refundwatch.core.config import get_settings
from refundwatch.core.errors import CursorError
from refundwatch.domain.alarms import ThresholdUpdate
from refundwatch.domain.statuses import AlarmLevel, TrackStatus
from refundwatch.services.alarms.dashboard import DashboardFilters
from refundwatch.services.alarms.engine import AlarmEngine
from refundwatch.tests.utils.cases import NOW, make_case


def _seed_population(engine: AlarmEngine) -> None:
    # Inserted out of severity order: three warnings and two criticals.
    engine.case_store.add_case(make_case("case-a", federal_status=TrackStatus.IN_PROCESS, federal_days=25))
    engine.case_store.add_case(make_case("case-b", federal_status=TrackStatus.IN_PROCESS, federal_days=40))
    engine.case_store.add_case(make_case("case-c", state_status=TrackStatus.IN_PROCESS, state_days=60))
    engine.case_store.add_case(make_case("case-d", state_status=TrackStatus.IN_VERIFICATION, state_days=200))
    engine.case_store.add_case(make_case("case-e", federal_status=TrackStatus.IN_VERIFICATION, federal_days=70))
    # Eligible but below threshold, and a fully completed case.
    engine.case_store.add_case(make_case("case-f", federal_status=TrackStatus.IN_PROCESS, federal_days=3))
    engine.case_store.add_case(
        make_case(
            "case-g",
            federal_status=TrackStatus.TAXES_COMPLETED,
            federal_days=100,
            state_status=TrackStatus.TAXES_COMPLETED,
            state_days=100,
        )
    )


@pytest.mark.asyncio
async def test_critical_filter_returns_only_critical_cases(engine: AlarmEngine) -> None:
    _seed_population(engine)

    page = await engine.dashboard_view.dashboard(
        DashboardFilters(level="critical", hide_completed=True),
        now=NOW,
    )

    assert [item.case_id for item in page.items] == ["case-d", "case-b"]
    assert all(item.highest_level is AlarmLevel.CRITICAL for item in page.items)
    assert page.total_critical == 2
    assert page.total_warning == 0
    assert page.total_with_alarms == 2
    assert not page.has_more
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_all_levels_sorted_critical_first_then_by_days(engine: AlarmEngine) -> None:
    _seed_population(engine)

    page = await engine.dashboard_view.dashboard(DashboardFilters(), now=NOW)

    assert [item.case_id for item in page.items] == ["case-d", "case-b", "case-e", "case-c", "case-a"]
    assert page.total_critical == 2
    assert page.total_warning == 3
    body = page.as_dict()
    assert body["total_with_alarms"] == 5
    assert body["items"][0]["alarms"][0]["type"] == "verification_timeout"


@pytest.mark.asyncio
async def test_warning_filter_and_custom_threshold_flag(engine: AlarmEngine) -> None:
    _seed_population(engine)
    await engine.set_thresholds("case-f", ThresholdUpdate(federal_in_process_days=2), actor_id="admin-1")

    page = await engine.dashboard_view.dashboard(DashboardFilters(level="warning"), now=NOW)

    ids = [item.case_id for item in page.items]
    assert "case-f" in ids
    assert all(item.highest_level is AlarmLevel.WARNING for item in page.items)
    flags = {item.case_id: item.has_custom_thresholds for item in page.items}
    assert flags["case-f"] is True
    assert flags["case-a"] is False


@pytest.mark.asyncio
async def test_cursor_pages_over_scanned_cases(engine: AlarmEngine) -> None:
    _seed_population(engine)

    first = await engine.dashboard_view.dashboard(DashboardFilters(limit=2), now=NOW)
    assert first.has_more
    assert first.next_cursor
    assert {item.case_id for item in first.items} == {"case-a", "case-b"}

    seen = {item.case_id for item in first.items}
    cursor = first.next_cursor
    while cursor:
        page = await engine.dashboard_view.dashboard(DashboardFilters(limit=2, cursor=cursor), now=NOW)
        seen.update(item.case_id for item in page.items)
        cursor = page.next_cursor

    assert seen == {"case-a", "case-b", "case-c", "case-d", "case-e"}


@pytest.mark.asyncio
async def test_page_may_hold_fewer_items_than_limit(engine: AlarmEngine) -> None:
    engine.case_store.add_case(make_case("case-1", federal_status=TrackStatus.IN_PROCESS, federal_days=1))
    engine.case_store.add_case(make_case("case-2", federal_status=TrackStatus.IN_PROCESS, federal_days=2))
    engine.case_store.add_case(make_case("case-3", federal_status=TrackStatus.IN_PROCESS, federal_days=30))

    page = await engine.dashboard_view.dashboard(DashboardFilters(limit=2), now=NOW)

    assert page.items == []
    assert page.has_more
    assert page.next_cursor


@pytest.mark.asyncio
async def test_tampered_cursor_is_rejected(engine: AlarmEngine) -> None:
    _seed_population(engine)
    first = await engine.dashboard_view.dashboard(DashboardFilters(limit=2), now=NOW)
    encoded, signature = first.next_cursor.split(".", 1)
    tampered = f"{encoded}.{'0' * len(signature)}"

    with pytest.raises(CursorError):
        await engine.dashboard_view.dashboard(DashboardFilters(limit=2, cursor=tampered), now=NOW)


@pytest.mark.asyncio
async def test_limit_is_clamped_to_configured_maximum(monkeypatch, engine: AlarmEngine) -> None:
    monkeypatch.setenv("DASHBOARD_MAX_LIMIT", "3")
    get_settings.cache_clear()
    _seed_population(engine)

    page = await engine.dashboard_view.dashboard(DashboardFilters(limit=500), now=NOW)

    assert page.has_more
    assert len(page.items) <= 3


def test_unknown_level_filter_is_rejected() -> None:
    with pytest.raises(ValueError):
        DashboardFilters(level="info")
