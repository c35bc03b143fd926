from __future__ import annotations

import logging
from typing import Any


logger = logging.getLogger(__name__)


class LogNotifier:
    """Writes client notifications to the application log instead of delivering them."""

    async def notify(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        logger.info(
            "client_notification user_id=%s template=%s variables=%s",
            user_id,
            template_key,
            variables,
        )
