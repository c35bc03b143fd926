from __future__ import annotations

from fastapi import Header

from refundwatch.services.alarms.engine import AlarmEngine, get_alarm_engine


def get_engine() -> AlarmEngine:
    # Tests swap this dependency for an in-memory engine.
    return get_alarm_engine()


def get_actor_id(x_actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str | None:
    # Operator identity is asserted by the upstream gateway; authentication lives there.
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None
