from __future__ import annotations

import argparse
import asyncio
import json

from refundwatch.core.logging import configure_logging
from refundwatch.services.alarms.engine import get_alarm_engine, shutdown_alarm_engine


async def _run(case_id: str | None) -> None:
    # Run one reconciliation pass from the CLI for operator workflows.
    configure_logging()
    engine = get_alarm_engine()
    try:
        if case_id:
            result = await engine.reconcile(case_id)
            print(
                json.dumps(
                    {
                        "case_id": result.case_id,
                        "created": result.created,
                        "refreshed": result.refreshed,
                        "auto_resolved": result.auto_resolved,
                    }
                )
            )
        else:
            status = await engine.run_batch_sync()
            print(json.dumps(status.as_dict()))
    finally:
        await shutdown_alarm_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile tax case alarms")
    parser.add_argument("--case-id", default=None, help="Reconcile a single case instead of the whole population")
    args = parser.parse_args()
    asyncio.run(_run(args.case_id))


if __name__ == "__main__":
    main()
