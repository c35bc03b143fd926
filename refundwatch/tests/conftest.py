from __future__ import annotations

import pytest

from refundwatch.core.config import get_settings
from refundwatch.providers.notifier.fake import FakeNotifier
from refundwatch.services.alarms.engine import AlarmEngine, reset_alarm_engine
from refundwatch.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolate_process_state() -> None:
    # Counters, cached settings and the engine singleton are process-wide.
    get_settings.cache_clear()
    reset_telemetry()
    reset_alarm_engine()
    yield
    get_settings.cache_clear()
    reset_telemetry()
    reset_alarm_engine()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
async def engine(notifier: FakeNotifier) -> AlarmEngine:
    alarm_engine = AlarmEngine.in_memory(notifier=notifier)
    yield alarm_engine
    await alarm_engine.aclose()
