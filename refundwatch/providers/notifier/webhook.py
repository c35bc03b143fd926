from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any

import httpx

from refundwatch.core.config import get_settings
from refundwatch.core.errors import NotifierConfigError, NotifierError
from refundwatch.services.telemetry import record_external_call


_INTEGRATION = "notifier.webhook"


def build_notification_signature(secret: str, payload: bytes) -> str:
    # HMAC SHA256 over the exact request body so receivers can verify origin.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class WebhookNotifier:
    def __init__(
        self,
        *,
        url: str | None = None,
        secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._url = url or settings.notify_webhook_url
        self._secret = secret or settings.notify_webhook_secret
        self._timeout_s = settings.notify_webhook_timeout_ms / 1000.0
        self._client = client
        if not self._url:
            raise NotifierConfigError("NOTIFY_WEBHOOK_URL is required for the webhook notifier")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse one client per notifier for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def notify(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        payload = {"user_id": user_id, "template_key": template_key, "variables": variables}
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Notification-Template": template_key}
        if self._secret:
            headers["X-Notification-Signature"] = build_notification_signature(self._secret, body)

        start = time.monotonic()
        try:
            response = await self._get_client().post(self._url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise NotifierError(f"Notification webhook request failed: {exc}") from exc

        success = response.status_code < 400
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
        if not success:
            raise NotifierError(f"Notification webhook responded with status {response.status_code}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
