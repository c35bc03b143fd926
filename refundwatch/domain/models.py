from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# Partial-index predicate shared by Postgres and SQLite for the one-open-alarm invariant.
_OPEN_ALARM_PREDICATE = "resolution IN ('active', 'acknowledged')"


class TaxCase(Base):
    __tablename__ = "tax_cases"
    __table_args__ = (
        Index("ix_tax_cases_track_statuses", "federal_status", "state_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Client identity is denormalized here so notifications and dashboards avoid profile joins.
    client_user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    client_name: Mapped[str | None] = mapped_column(String, nullable=True)
    client_email: Mapped[str | None] = mapped_column(String, nullable=True)
    case_status: Mapped[str | None] = mapped_column(String, nullable=True)
    case_status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    federal_status: Mapped[str | None] = mapped_column(String, nullable=True)
    federal_status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    state_status: Mapped[str | None] = mapped_column(String, nullable=True)
    state_status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    alarm_threshold: Mapped["AlarmThreshold | None"] = relationship(
        back_populates="tax_case",
        uselist=False,
        lazy="selectin",
    )


class AlarmThreshold(Base):
    __tablename__ = "alarm_thresholds"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # At most one override per case; upserts key on this column.
    tax_case_id: Mapped[str] = mapped_column(
        String, ForeignKey("tax_cases.id", ondelete="CASCADE"), unique=True
    )
    federal_in_process_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    state_in_process_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    verification_timeout_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    letter_sent_timeout_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disable_federal_alarms: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disable_state_alarms: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tax_case: Mapped[TaxCase] = relationship(back_populates="alarm_threshold")


class AlarmHistory(Base):
    __tablename__ = "alarm_history"
    __table_args__ = (
        Index("ix_alarm_history_case_resolution", "tax_case_id", "resolution"),
        Index("ix_alarm_history_resolution_triggered_at", "resolution", "triggered_at"),
        # Storage-level guard: a second open row for the same case/type/track is rejected.
        Index(
            "uq_alarm_history_open_case_type_track",
            "tax_case_id",
            "alarm_type",
            "track",
            unique=True,
            postgresql_where=text(_OPEN_ALARM_PREDICATE),
            sqlite_where=text(_OPEN_ALARM_PREDICATE),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tax_case_id: Mapped[str] = mapped_column(
        String, ForeignKey("tax_cases.id", ondelete="CASCADE"), index=True
    )
    alarm_type: Mapped[str] = mapped_column(String, index=True)
    alarm_level: Mapped[str] = mapped_column(String, index=True)
    track: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(Text)
    threshold_days: Mapped[int] = mapped_column(Integer)
    actual_days: Mapped[int] = mapped_column(Integer)
    status_at_trigger: Mapped[str] = mapped_column(String)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    resolution: Mapped[str] = mapped_column(String, default="active", nullable=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_id: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_resolve_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
