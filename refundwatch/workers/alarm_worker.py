from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from arq import cron
from arq.connections import RedisSettings

from refundwatch.core.config import get_settings
from refundwatch.core.errors import CaseNotFoundError
from refundwatch.core.logging import configure_logging
from refundwatch.services.alarms.engine import get_alarm_engine, shutdown_alarm_engine


logger = logging.getLogger(__name__)


async def sync_all_alarms(ctx) -> dict:
    # Daily reconciliation across every alarm-eligible case.
    settings = get_settings()
    if not settings.alarm_sync_enabled:
        logger.info("alarm_sync_skipped reason=disabled")
        return {"outcome": "disabled"}
    status = await get_alarm_engine().run_batch_sync()
    return status.as_dict()


async def reconcile_case(ctx, case_id: str) -> str:
    # Queued after out-of-band status updates so alarms converge without waiting for the cron.
    try:
        result = await get_alarm_engine().reconcile(case_id)
    except CaseNotFoundError:
        logger.warning("alarm_reconcile_skipped case_id=%s reason=case_not_found", case_id)
        return "missing"
    return f"created={result.created} auto_resolved={result.auto_resolved}"


async def _startup(ctx) -> None:
    configure_logging()
    ctx["engine"] = get_alarm_engine()


async def _shutdown(ctx) -> None:
    # Let in-flight client notifications finish before the worker exits.
    await shutdown_alarm_engine()


def _cron_jobs() -> list:
    settings = get_settings()
    return [
        cron(
            sync_all_alarms,
            hour={settings.alarm_sync_cron_hour},
            minute={settings.alarm_sync_cron_minute},
            run_at_startup=False,
            unique=True,
        )
    ]


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.alarm_queue_name
    # Cron hour/minute are evaluated in the operations timezone.
    timezone = ZoneInfo(settings.alarm_sync_timezone)
    functions = [reconcile_case, sync_all_alarms]
    cron_jobs = _cron_jobs()
    on_startup = _startup
    on_shutdown = _shutdown
