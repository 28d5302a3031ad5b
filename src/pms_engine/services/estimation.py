"""Estimation of missing meter readings.

Methods are tried in order: discrete sale transactions for the pump and
date, then the pump's trailing average daily volume. An estimate is never
silently treated as a measurement; every result carries its method.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.calculators.rollover import advance_meter, quantize_volume, rewind_meter
from pms_engine.config import ReconciliationConfig
from pms_engine.models import (
    EstimationMethod,
    MeterReading,
    PumpConfiguration,
    PumpSaleTransaction,
    ReadingType,
)
from pms_engine.services.deviation import pump_trailing_average
from pms_engine.services.errors import InsufficientDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Estimate:
    """An estimated meter value for one slot."""

    reading_type: ReadingType
    value: Decimal
    method: EstimationMethod
    basis: dict[str, Any] = field(default_factory=dict)
    is_estimated: bool = True

    @property
    def note(self) -> str:
        parts = ", ".join(f"{k}={v}" for k, v in self.basis.items())
        return f"Estimated ({self.method.value}): {parts}" if parts else f"Estimated ({self.method.value})"


@dataclass(frozen=True)
class VolumeEstimate:
    volume: Decimal
    method: EstimationMethod
    basis: dict[str, Any]


class EstimationResolver:
    """Produces estimates for missing opening/closing readings."""

    def __init__(self, session: AsyncSession, config: ReconciliationConfig | None = None):
        self.session = session
        self.config = config or ReconciliationConfig()

    async def transaction_volume(self, pump_id, on: date) -> Decimal | None:
        """Total volume of recorded sale transactions, or None when there are none."""
        result = await self.session.execute(
            select(func.count(), func.coalesce(func.sum(PumpSaleTransaction.volume), 0)).where(
                PumpSaleTransaction.pump_id == pump_id,
                PumpSaleTransaction.sale_date == on,
            )
        )
        count, total = result.one()
        if not count:
            return None
        return quantize_volume(Decimal(str(total)))

    async def historical_average(self, pump_id, on: date) -> Decimal | None:
        return await pump_trailing_average(
            self.session, pump_id, on, self.config.estimation_lookback_days
        )

    async def previous_closing(self, pump_id, on: date) -> Decimal | None:
        result = await self.session.execute(
            select(MeterReading.meter_value).where(
                MeterReading.pump_id == pump_id,
                MeterReading.reading_date == on - timedelta(days=1),
                MeterReading.reading_type == ReadingType.CLOSING.value,
            )
        )
        value = result.scalar_one_or_none()
        return Decimal(str(value)) if value is not None else None

    async def estimate_volume(self, pump: PumpConfiguration, on: date, slot: ReadingType) -> VolumeEstimate:
        """Volume dispensed on a date, from transactions first, then history."""
        sold = await self.transaction_volume(pump.pump_id, on)
        if sold is not None:
            return VolumeEstimate(
                sold, EstimationMethod.TRANSACTION_BASED, {"transaction_volume": sold}
            )

        average = await self.historical_average(pump.pump_id, on)
        if average is not None:
            return VolumeEstimate(
                average, EstimationMethod.HISTORICAL_AVERAGE, {"trailing_average": average}
            )

        logger.warning(
            "No transactions or history to estimate %s reading for pump %s on %s",
            slot.value,
            pump.pump_number,
            on,
        )
        raise InsufficientDataError(pump.pump_id, slot.value)

    async def resolve(
        self,
        pump: PumpConfiguration,
        on: date,
        opening: Decimal | None,
        closing: Decimal | None,
    ) -> list[Estimate]:
        """Estimates for whichever of opening/closing is missing.

        With both missing the opening is carried forward from the previous
        day's closing reading.
        """
        capacity = Decimal(pump.meter_capacity)
        estimates: list[Estimate] = []

        if opening is None:
            slot = ReadingType.OPENING
            if closing is not None:
                ve = await self.estimate_volume(pump, on, slot)
                value = rewind_meter(closing, ve.volume, capacity)
                estimates.append(Estimate(slot, value, ve.method, {**ve.basis, "closing": closing}))
                return estimates

            carried = await self.previous_closing(pump.pump_id, on)
            if carried is None:
                logger.warning(
                    "No readings and no previous closing for pump %s on %s",
                    pump.pump_number,
                    on,
                )
                raise InsufficientDataError(pump.pump_id, slot.value)
            ve = await self.estimate_volume(pump, on, ReadingType.CLOSING)
            estimates.append(Estimate(slot, carried, ve.method, {"previous_closing": carried}))
            opening = carried

        if closing is None:
            slot = ReadingType.CLOSING
            if not estimates:
                ve = await self.estimate_volume(pump, on, slot)
            value = advance_meter(opening, ve.volume, capacity)
            estimates.append(Estimate(slot, value, ve.method, {**ve.basis, "opening": opening}))

        return estimates
