from __future__ import annotations

from typing import Any, Protocol


class Notifier(Protocol):
    async def notify(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        ...
