from __future__ import annotations

from refundwatch.core.config import get_settings
from refundwatch.core.errors import NotifierConfigError
from refundwatch.providers.notifier.fake import FakeNotifier
from refundwatch.providers.notifier.log_notifier import LogNotifier
from refundwatch.providers.notifier.webhook import WebhookNotifier


def get_notifier():
    settings = get_settings()
    provider = (settings.notifier_provider or "none").lower()

    if provider == "none":
        return None
    if provider == "log":
        return LogNotifier()
    if provider == "fake":
        return FakeNotifier()
    if provider == "webhook":
        return WebhookNotifier()

    raise NotifierConfigError(f"Unsupported notifier provider: {provider}")
