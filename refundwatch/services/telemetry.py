from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def increment_counter(name: str, value: int = 1) -> None:
    # Track low-cardinality alarm engine counters in process.
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture notifier delivery latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def external_call_stats(integration: str) -> dict[str, int]:
    samples = [sample for sample in _external_samples if sample.integration == integration]
    failed = sum(1 for sample in samples if not sample.success)
    return {"total": len(samples), "failed": failed}


def reset_telemetry() -> None:
    # Tests reset counters between cases to assert on deltas.
    _counters.clear()
    _external_samples.clear()
