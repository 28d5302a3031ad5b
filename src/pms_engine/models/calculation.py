"""Derived PMS calculation and station summary models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from pms_engine.models.base import Base, TimestampMixin, utcnow
from pms_engine.models.enums import ApprovalState, CalculationMethod, sql_in


class PmsCalculation(Base, TimestampMixin):
    """Volume sold by one pump on one date, derived from its meter readings.

    Readings are referenced by (pump_id, calculation_date, reading_type),
    not by foreign key, so recomputation always re-resolves the current rows.
    """

    __tablename__ = "pms_calculation"

    calculation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pump_id: Mapped[UUID] = mapped_column(
        ForeignKey("pump_configuration.pump_id", ondelete="CASCADE"),
        nullable=False,
    )
    calculation_date: Mapped[date] = mapped_column(Date, nullable=False)

    opening_value: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    closing_value: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    raw_delta: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    volume_sold: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)

    rollover_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollover_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 1), nullable=True)
    rollover_confirmation_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    deviation_percent: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_revenue: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    is_estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    calculation_method: Mapped[str] = mapped_column(
        String, nullable=False, default=CalculationMethod.METER_READINGS.value
    )
    approval_state: Mapped[str] = mapped_column(
        String, nullable=False, default=ApprovalState.AUTO_APPROVED.value
    )
    # Set when an input reading changes; forces recomputation.
    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    calculated_by: Mapped[UUID] = mapped_column(ForeignKey("app_user.user_id"), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    approved_by: Mapped[UUID | None] = mapped_column(ForeignKey("app_user.user_id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("pump_id", "calculation_date", name="pms_calculation_pump_date_unique"),
        CheckConstraint("volume_sold >= 0", name="pms_calculation_volume_check"),
        CheckConstraint(
            f"approval_state IN ({sql_in(ApprovalState)})",
            name="pms_calculation_approval_state_check",
        ),
        CheckConstraint(
            f"calculation_method IN ({sql_in(CalculationMethod)})",
            name="pms_calculation_method_check",
        ),
        Index("pms_calculation_date_idx", "calculation_date", "pump_id"),
    )


class PmsSalesRecord(Base, TimestampMixin):
    """Station-wide PMS totals for one date, rebuilt from calculations."""

    __tablename__ = "pms_sales_record"

    pms_sales_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    station_id: Mapped[UUID] = mapped_column(
        ForeignKey("station.station_id", ondelete="CASCADE"),
        nullable=False,
    )
    record_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_volume: Mapped[Decimal] = mapped_column(Numeric(14, 1), nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    average_unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    pump_count: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_volume: Mapped[Decimal] = mapped_column(
        Numeric(14, 1), nullable=False, default=Decimal("0")
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("station_id", "record_date", name="pms_sales_record_station_date_unique"),
    )
