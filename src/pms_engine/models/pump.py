"""Pump configuration and status history models."""

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

from pms_engine.models.base import Base, TimestampMixin, utcnow
from pms_engine.models.enums import PumpStatus, sql_in


class PumpConfiguration(Base, TimestampMixin):
    """Configuration of one physical pump."""

    __tablename__ = "pump_configuration"

    pump_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    station_id: Mapped[UUID] = mapped_column(
        ForeignKey("station.station_id", ondelete="CASCADE"),
        nullable=False,
    )
    pms_product_id: Mapped[UUID] = mapped_column(
        ForeignKey("product.product_id"),
        nullable=False,
    )
    pump_number: Mapped[str] = mapped_column(String, nullable=False)
    meter_capacity: Mapped[Decimal] = mapped_column(Numeric(12, 1), nullable=False)
    install_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_calibration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PumpStatus.ACTIVE.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("station_id", "pump_number", name="pump_station_number_unique"),
        CheckConstraint("meter_capacity > 0", name="pump_meter_capacity_check"),
        CheckConstraint(f"status IN ({sql_in(PumpStatus)})", name="pump_status_check"),
    )

    @property
    def accepts_readings(self) -> bool:
        return self.is_active and self.status == PumpStatus.ACTIVE.value


class PumpStatusChange(Base):
    """Append-only status history (doubles as calibration history)."""

    __tablename__ = "pump_status_change"

    pump_status_change_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pump_id: Mapped[UUID] = mapped_column(
        ForeignKey("pump_configuration.pump_id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str] = mapped_column(String, nullable=False)
    to_status: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[UUID] = mapped_column(ForeignKey("app_user.user_id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("pump_status_change_pump_idx", "pump_id", "changed_at"),)
