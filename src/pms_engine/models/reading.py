"""Meter reading and discrete pump sale models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from pms_engine.models.base import Base, utcnow
from pms_engine.models.enums import CorrectionState, EstimationMethod, ReadingType, sql_in


class MeterReading(Base):
    """Cumulative pump meter value for one (pump, date, reading type) key."""

    __tablename__ = "meter_reading"

    reading_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pump_id: Mapped[UUID] = mapped_column(
        ForeignKey("pump_configuration.pump_id", ondelete="CASCADE"),
        nullable=False,
    )
    reading_date: Mapped[date] = mapped_column(Date, nullable=False)
    reading_type: Mapped[str] = mapped_column(String, nullable=False)
    meter_value: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    recorded_by: Mapped[UUID] = mapped_column(ForeignKey("app_user.user_id"), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    is_estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimation_method: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Correction bookkeeping
    correction_state: Mapped[str] = mapped_column(
        String, nullable=False, default=CorrectionState.RECORDED.value
    )
    is_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 1), nullable=True)
    modified_by: Mapped[UUID | None] = mapped_column(ForeignKey("app_user.user_id"), nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    override_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "pump_id",
            "reading_date",
            "reading_type",
            name="meter_reading_pump_date_type_unique",
        ),
        CheckConstraint("meter_value >= 0", name="meter_reading_value_check"),
        CheckConstraint(
            f"reading_type IN ({sql_in(ReadingType)})",
            name="meter_reading_type_check",
        ),
        CheckConstraint(
            f"estimation_method IS NULL OR estimation_method IN ({sql_in(EstimationMethod)})",
            name="meter_reading_estimation_method_check",
        ),
        CheckConstraint(
            "(is_estimated AND estimation_method IS NOT NULL) "
            "OR (NOT is_estimated AND estimation_method IS NULL)",
            name="meter_reading_estimation_consistency_check",
        ),
        CheckConstraint(
            f"correction_state IN ({sql_in(CorrectionState)})",
            name="meter_reading_correction_state_check",
        ),
        Index("meter_reading_date_idx", "reading_date", "pump_id"),
    )


class PumpSaleTransaction(Base):
    """A discrete sale recorded through an alternate channel (e.g. POS)."""

    __tablename__ = "pump_sale_transaction"

    pump_sale_transaction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pump_id: Mapped[UUID] = mapped_column(
        ForeignKey("pump_configuration.pump_id", ondelete="CASCADE"),
        nullable=False,
    )
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    volume: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    external_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("volume >= 0", name="pump_sale_volume_check"),
        Index("pump_sale_pump_date_idx", "pump_id", "sale_date"),
    )
