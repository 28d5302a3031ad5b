"""Trailing baselines and the deviation report."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.calculators.deviation import is_flagged, trailing_average
from pms_engine.config import ReconciliationConfig
from pms_engine.models import ApprovalState, PmsCalculation, PumpConfiguration, Station, utcnow
from pms_engine.services.errors import NotFoundError, ValidationError
from pms_engine.services.state_machine import CalculationApprovalStateMachine
from pms_engine.services.validation import parse_decimal, parse_uuid


async def baseline_volumes(
    session: AsyncSession,
    pump_id: UUID,
    before: date,
    days: int,
) -> list[Decimal]:
    """Volumes of baseline-eligible calculations in [before - days, before).

    Pending, rejected, stale, and rollover-unconfirmed calculations never
    contribute to a baseline.
    """
    result = await session.execute(
        select(PmsCalculation.volume_sold).where(
            PmsCalculation.pump_id == pump_id,
            PmsCalculation.calculation_date >= before - timedelta(days=days),
            PmsCalculation.calculation_date < before,
            PmsCalculation.approval_state.in_(
                [s.value for s in CalculationApprovalStateMachine.BASELINE_ELIGIBLE]
            ),
            PmsCalculation.is_stale.is_(False),
            PmsCalculation.rollover_confirmation_required.is_(False),
        )
    )
    return [Decimal(v) for v in result.scalars().all()]


async def pump_trailing_average(
    session: AsyncSession, pump_id: UUID, before: date, days: int
) -> Decimal | None:
    return trailing_average(await baseline_volumes(session, pump_id, before, days))


@dataclass
class DeviationEntry:
    calculation: PmsCalculation
    pump_number: str
    trailing_average: Decimal | None

    def to_dict(self) -> dict[str, Any]:
        data = self.calculation.to_dict()
        data["pump_number"] = self.pump_number
        data["trailing_average"] = self.trailing_average
        return data


class DeviationReporter:
    """Read-side scan for calculations that stray from their pump's baseline."""

    def __init__(self, session: AsyncSession, config: ReconciliationConfig | None = None):
        self.session = session
        self.config = config or ReconciliationConfig()

    async def get_calculations_with_deviations(
        self,
        station_id: Any,
        threshold_percent: Any = None,
        days: int | None = None,
        today: date | None = None,
    ) -> list[DeviationEntry]:
        """Calculations in the last ``days`` whose |deviation| meets the threshold.

        Newest first; ties broken by the larger absolute deviation. Rejected
        calculations and stale ones awaiting recomputation are excluded.
        """
        station_uuid = parse_uuid(station_id, "station_id")
        if threshold_percent is None:
            threshold = self.config.deviation_threshold_percent
        else:
            threshold = parse_decimal(threshold_percent, "threshold_percent")
            if threshold < 0:
                raise ValidationError("threshold_percent cannot be negative", field="threshold_percent")
        lookback = self.config.deviation_report_days if days is None else days
        if lookback < 1:
            raise ValidationError("days must be at least 1", field="days")
        if await self.session.get(Station, station_uuid) is None:
            raise NotFoundError("station", station_uuid)

        end = today or utcnow().date()
        start = end - timedelta(days=lookback)
        rows = await self.session.execute(
            select(PmsCalculation, PumpConfiguration.pump_number)
            .join(PumpConfiguration, PumpConfiguration.pump_id == PmsCalculation.pump_id)
            .where(
                PumpConfiguration.station_id == station_uuid,
                PmsCalculation.calculation_date >= start,
                PmsCalculation.calculation_date <= end,
                PmsCalculation.approval_state != ApprovalState.REJECTED.value,
                PmsCalculation.is_stale.is_(False),
            )
        )

        entries: list[DeviationEntry] = []
        for calculation, pump_number in rows.all():
            if not is_flagged(Decimal(calculation.deviation_percent), threshold):
                continue
            average = await pump_trailing_average(
                self.session,
                calculation.pump_id,
                calculation.calculation_date,
                self.config.deviation_lookback_days,
            )
            entries.append(DeviationEntry(calculation, pump_number, average))

        entries.sort(
            key=lambda e: (
                e.calculation.calculation_date,
                abs(Decimal(e.calculation.deviation_percent)),
            ),
            reverse=True,
        )
        return entries
