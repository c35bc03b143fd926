from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from refundwatch.core.config import get_settings
from refundwatch.core.errors import NotifierConfigError, NotifierError
from refundwatch.providers.notifier.dispatcher import NotificationDispatcher
from refundwatch.providers.notifier.factory import get_notifier
from refundwatch.providers.notifier.fake import FakeNotifier
from refundwatch.providers.notifier.log_notifier import LogNotifier
from refundwatch.providers.notifier.webhook import WebhookNotifier, build_notification_signature
from refundwatch.services.alarms.engine import AlarmEngine
from refundwatch.services.telemetry import counters_snapshot, external_call_stats


@pytest.mark.asyncio
async def test_webhook_posts_signed_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier(url="https://hooks.example.com/notify", secret="shh", client=client)

    await notifier.notify("user-1", "notifications.alarm_general", {"track": "federal", "days": 25})
    await notifier.aclose()

    request = captured[0]
    body = request.content
    assert json.loads(body) == {
        "user_id": "user-1",
        "template_key": "notifications.alarm_general",
        "variables": {"track": "federal", "days": 25},
    }
    assert request.headers["X-Notification-Template"] == "notifications.alarm_general"
    assert request.headers["X-Notification-Signature"] == build_notification_signature("shh", body)
    assert external_call_stats("notifier.webhook") == {"total": 1, "failed": 0}


@pytest.mark.asyncio
async def test_webhook_error_status_raises() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    notifier = WebhookNotifier(url="https://hooks.example.com/notify", client=client)

    with pytest.raises(NotifierError):
        await notifier.notify("user-1", "notifications.alarm_general", {})
    await notifier.aclose()

    assert external_call_stats("notifier.webhook") == {"total": 1, "failed": 1}


@pytest.mark.asyncio
async def test_webhook_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier(url="https://hooks.example.com/notify", client=client)

    with pytest.raises(NotifierError):
        await notifier.notify("user-1", "notifications.alarm_general", {})
    await notifier.aclose()


def test_webhook_requires_url() -> None:
    with pytest.raises(NotifierConfigError):
        WebhookNotifier()


def test_factory_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("NOTIFIER_PROVIDER", "none")
    get_settings.cache_clear()
    assert get_notifier() is None

    monkeypatch.setenv("NOTIFIER_PROVIDER", "log")
    get_settings.cache_clear()
    assert isinstance(get_notifier(), LogNotifier)

    monkeypatch.setenv("NOTIFIER_PROVIDER", "fake")
    get_settings.cache_clear()
    assert isinstance(get_notifier(), FakeNotifier)

    monkeypatch.setenv("NOTIFIER_PROVIDER", "webhook")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/notify")
    get_settings.cache_clear()
    assert isinstance(get_notifier(), WebhookNotifier)

    monkeypatch.setenv("NOTIFIER_PROVIDER", "carrier-pigeon")
    get_settings.cache_clear()
    with pytest.raises(NotifierConfigError):
        get_notifier()


@pytest.mark.asyncio
async def test_dispatcher_delivers_in_background() -> None:
    notifier = FakeNotifier()
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch("user-1", "notifications.alarm_letter_sent", {"days": 70})
    assert dispatcher.pending == 1
    await dispatcher.drain()

    assert dispatcher.pending == 0
    assert notifier.sent[0].template_key == "notifications.alarm_letter_sent"
    assert counters_snapshot()["alarm_notifications_sent"] == 1


@pytest.mark.asyncio
async def test_dispatcher_swallows_delivery_failures() -> None:
    dispatcher = NotificationDispatcher(FakeNotifier(fail=True))

    dispatcher.dispatch("user-1", "notifications.alarm_general", {})
    await dispatcher.drain()

    assert counters_snapshot()["alarm_notifications_failed"] == 1
    assert "alarm_notifications_sent" not in counters_snapshot()


@pytest.mark.asyncio
async def test_dispatcher_bounds_concurrent_deliveries() -> None:
    in_flight = {"now": 0, "peak": 0}

    class SlowNotifier:
        async def notify(self, user_id, template_key, variables) -> None:
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1

    dispatcher = NotificationDispatcher(SlowNotifier(), max_concurrency=2)
    for index in range(6):
        dispatcher.dispatch(f"user-{index}", "notifications.alarm_general", {})
    await dispatcher.drain()

    assert in_flight["peak"] == 2


def test_dispatcher_without_notifier_is_noop() -> None:
    dispatcher = NotificationDispatcher(None)
    dispatcher.dispatch("user-1", "notifications.alarm_general", {})
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_engine_close_releases_webhook_client() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(202)))
    notifier = WebhookNotifier(url="https://hooks.example.com/notify", client=client)
    engine = AlarmEngine.in_memory(notifier=notifier)

    engine.dispatcher.dispatch("user-1", "notifications.alarm_general", {})
    await engine.aclose()

    assert client.is_closed
    assert external_call_stats("notifier.webhook") == {"total": 1, "failed": 0}


@pytest.mark.asyncio
async def test_engine_close_tolerates_notifiers_without_aclose() -> None:
    notifier = FakeNotifier()
    engine = AlarmEngine.in_memory(notifier=notifier)

    engine.dispatcher.dispatch("user-1", "notifications.alarm_general", {})
    await engine.aclose()

    assert len(notifier.sent) == 1
