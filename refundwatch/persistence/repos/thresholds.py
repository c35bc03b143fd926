from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from refundwatch.domain.alarms import ThresholdOverride, ThresholdUpdate
from refundwatch.domain.models import AlarmThreshold
from refundwatch.persistence.repos.cases import override_from_row


async def get_threshold_row(session: AsyncSession, *, case_id: str) -> AlarmThreshold | None:
    result = await session.execute(select(AlarmThreshold).where(AlarmThreshold.tax_case_id == case_id))
    return result.scalar_one_or_none()


class SqlThresholdStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get_override(self, case_id: str) -> ThresholdOverride | None:
        async with self._sessionmaker() as session:
            return override_from_row(await get_threshold_row(session, case_id=case_id))

    async def upsert_override(
        self,
        case_id: str,
        fields: ThresholdUpdate,
        *,
        actor_id: str | None,
    ) -> ThresholdOverride:
        # Keep a single override row per case; the creator is recorded on first write only.
        now = datetime.now(timezone.utc)
        values = fields.model_dump()
        async with self._sessionmaker() as session:
            row = await get_threshold_row(session, case_id=case_id)
            if row is None:
                row = AlarmThreshold(
                    id=uuid4().hex,
                    tax_case_id=case_id,
                    created_by_id=actor_id,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = now
            await session.commit()
            return override_from_row(row)

    async def delete_override(self, case_id: str) -> bool:
        async with self._sessionmaker() as session:
            result = await session.execute(
                delete(AlarmThreshold).where(AlarmThreshold.tax_case_id == case_id)
            )
            await session.commit()
            return bool(result.rowcount)
