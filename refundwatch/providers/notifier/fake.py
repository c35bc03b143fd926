from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from refundwatch.core.errors import NotifierError


@dataclass(frozen=True)
class SentNotification:
    user_id: str
    template_key: str
    variables: dict[str, Any]


class FakeNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        # Record deliveries so tests can assert on template keys and variables.
        self.sent: list[SentNotification] = []
        self.fail = fail

    async def notify(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        if self.fail:
            raise NotifierError("fake notifier configured to fail")
        self.sent.append(SentNotification(user_id=user_id, template_key=template_key, variables=dict(variables)))
