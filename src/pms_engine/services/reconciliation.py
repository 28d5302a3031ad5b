"""Reconciliation engine: meter readings to daily PMS volume per pump."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.calculators.deviation import (
    deviation_percent,
    is_flagged,
    quantize_money,
    revenue,
)
from pms_engine.calculators.rollover import (
    confirmed_rollover_volume,
    detect_rollover,
    quantize_volume,
)
from pms_engine.config import ReconciliationConfig
from pms_engine.database import acquire_calculation_lock
from pms_engine.models import (
    ApprovalState,
    CalculationMethod,
    MeterReading,
    PmsCalculation,
    PmsSalesRecord,
    Product,
    ProductType,
    PumpConfiguration,
    PumpStatus,
    ReadingType,
    utcnow,
)
from pms_engine.services.actors import Actor, Capability
from pms_engine.services.audit import AuditEvent, AuditRecorder
from pms_engine.services.deviation import pump_trailing_average
from pms_engine.services.errors import (
    ConflictError,
    InsufficientDataError,
    NotFoundError,
    PmsError,
    ValidationError,
)
from pms_engine.services.estimation import EstimationResolver
from pms_engine.services.pump_registry import PumpRegistry
from pms_engine.services.reading_store import ReadingStore
from pms_engine.services.state_machine import CalculationApprovalStateMachine
from pms_engine.services.validation import parse_date, parse_uuid, validate_meter_value

logger = logging.getLogger(__name__)


class PumpOutcome(str, Enum):
    """What happened to one pump during a calculation run."""

    CALCULATED = "calculated"
    RECALCULATED = "recalculated"
    SKIPPED = "skipped"
    INCOMPLETE = "incomplete"
    FAILED = "failed"


def calculation_snapshot(calc: PmsCalculation) -> dict[str, Any]:
    return {
        "opening_value": calc.opening_value,
        "closing_value": calc.closing_value,
        "volume_sold": calc.volume_sold,
        "rollover_applied": calc.rollover_applied,
        "rollover_amount": calc.rollover_amount,
        "rollover_confirmation_required": calc.rollover_confirmation_required,
        "deviation_percent": calc.deviation_percent,
        "total_revenue": calc.total_revenue,
        "is_estimated": calc.is_estimated,
        "calculation_method": calc.calculation_method,
        "approval_state": calc.approval_state,
    }


def calculation_to_dict(
    calc: PmsCalculation,
    pump_number: str | None = None,
    threshold: Decimal | None = None,
) -> dict[str, Any]:
    data = calc.to_dict()
    if pump_number is not None:
        data["pump_number"] = pump_number
    if threshold is not None:
        data["deviation_flagged"] = is_flagged(Decimal(calc.deviation_percent), threshold)
    return data


@dataclass
class PumpCalculationOutcome:
    pump_id: UUID
    pump_number: str
    outcome: PumpOutcome
    calculation: PmsCalculation | None = None
    reason: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CalculationRun:
    """Per-pump outcomes of calculatePmsForDate for one station and date."""

    station_id: UUID
    calculation_date: date
    threshold: Decimal
    outcomes: list[PumpCalculationOutcome] = field(default_factory=list)
    sales_record: PmsSalesRecord | None = None

    @property
    def calculations(self) -> list[PmsCalculation]:
        return [o.calculation for o in self.outcomes if o.calculation is not None]

    @property
    def total_volume(self) -> Decimal:
        return quantize_volume(
            sum((Decimal(c.volume_sold) for c in self.calculations), Decimal("0"))
        )

    @property
    def total_revenue(self) -> Decimal:
        return quantize_money(
            sum((Decimal(c.total_revenue) for c in self.calculations), Decimal("0"))
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "station_id": self.station_id,
            "calculation_date": self.calculation_date,
            "total_volume": self.total_volume,
            "total_revenue": self.total_revenue,
            "outcomes": [
                {
                    "pump_id": o.pump_id,
                    "pump_number": o.pump_number,
                    "outcome": o.outcome.value,
                    "reason": o.reason,
                    "error_kind": o.error_kind,
                    "details": o.details,
                    "calculation": (
                        calculation_to_dict(o.calculation, o.pump_number, self.threshold)
                        if o.calculation is not None
                        else None
                    ),
                }
                for o in self.outcomes
            ],
            "sales_record": self.sales_record.to_dict() if self.sales_record else None,
        }


class ReconciliationEngine:
    """Service computing and governing daily PMS calculations.

    Operations:
    - calculate_for_date: reconcile every active PMS pump at a station
    - confirm_rollover: resolve an ambiguous meter wrap by hand
    - approve_estimated_calculation: approve or reject an estimate-derived result
    - get_calculations: range query with pump numbers
    """

    def __init__(
        self,
        session: AsyncSession,
        config: ReconciliationConfig | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.session = session
        self.config = config or ReconciliationConfig()
        self.audit = audit or AuditRecorder.for_session(session)
        self.readings = ReadingStore(session, self.config, self.audit)
        self.estimator = EstimationResolver(session, self.config)
        self.pumps = PumpRegistry(session, self.audit)

    @staticmethod
    def lock_key(pump_id: UUID, on: date) -> str:
        return f"pms_calculation:{pump_id}:{on.isoformat()}"

    async def _find_calculation(
        self, pump_id: UUID, on: date, for_update: bool = False
    ) -> PmsCalculation | None:
        stmt = select(PmsCalculation).where(
            PmsCalculation.pump_id == pump_id,
            PmsCalculation.calculation_date == on,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _active_pms_pumps(self, station_id: UUID) -> list[tuple[PumpConfiguration, Decimal]]:
        rows = await self.session.execute(
            select(PumpConfiguration, Product.unit_price)
            .join(Product, Product.product_id == PumpConfiguration.pms_product_id)
            .where(
                PumpConfiguration.station_id == station_id,
                PumpConfiguration.is_active.is_(True),
                PumpConfiguration.status == PumpStatus.ACTIVE.value,
                Product.product_type == ProductType.PMS.value,
            )
            .order_by(PumpConfiguration.pump_number)
        )
        return [(pump, Decimal(price)) for pump, price in rows.all()]

    async def calculate_for_date(
        self,
        actor: Actor,
        station_id: Any,
        calculation_date: Any,
        force_recalculate: bool = False,
    ) -> CalculationRun:
        """Reconcile every active PMS pump at a station for one date.

        Idempotent: an existing, non-stale calculation is returned unchanged
        unless ``force_recalculate`` is set. Each pump is processed in its
        own savepoint so one pump's failure leaves the others intact.
        """
        actor.require(Capability.RUN_CALCULATIONS)
        station_uuid = parse_uuid(station_id, "station_id")
        on = parse_date(calculation_date, "calculation_date")
        await self.pumps.get_station(station_uuid)

        pumps = await self._active_pms_pumps(station_uuid)
        if not pumps:
            raise NotFoundError("active_pumps", station_uuid)

        run = CalculationRun(
            station_id=station_uuid,
            calculation_date=on,
            threshold=self.config.deviation_threshold_percent,
        )
        for pump, unit_price in pumps:
            run.outcomes.append(
                await self._calculate_pump(actor, pump, unit_price, on, force_recalculate)
            )

        run.sales_record = await self.rebuild_sales_record(station_uuid, on)
        logger.info(
            "PMS calculation for station %s on %s: %s",
            station_uuid,
            on,
            ", ".join(f"{o.pump_number}={o.outcome.value}" for o in run.outcomes),
        )
        return run

    async def _calculate_pump(
        self,
        actor: Actor,
        pump: PumpConfiguration,
        unit_price: Decimal,
        on: date,
        force: bool,
    ) -> PumpCalculationOutcome:
        outcome = PumpCalculationOutcome(pump.pump_id, pump.pump_number, PumpOutcome.CALCULATED)
        try:
            async with self.session.begin_nested():
                await acquire_calculation_lock(self.session, self.lock_key(pump.pump_id, on))
                prior = await self._find_calculation(pump.pump_id, on, for_update=True)
                if prior is not None and not force and not prior.is_stale:
                    outcome.outcome = PumpOutcome.SKIPPED
                    outcome.calculation = prior
                    return outcome

                opening, closing = await self._resolve_readings(actor, pump, on)
                before = calculation_snapshot(prior) if prior is not None else None
                calc = await self._upsert_calculation(
                    actor, pump, on, opening, closing, unit_price, prior
                )
                outcome.outcome = (
                    PumpOutcome.RECALCULATED if prior is not None else PumpOutcome.CALCULATED
                )
                outcome.calculation = calc
        except InsufficientDataError as e:
            outcome.outcome = PumpOutcome.INCOMPLETE
            outcome.reason = "insufficient_data"
            outcome.error_kind = e.kind.value
            outcome.details = dict(e.details)
            return outcome
        except PmsError as e:
            logger.warning("Calculation failed for pump %s on %s: %s", pump.pump_number, on, e.message)
            outcome.outcome = PumpOutcome.FAILED
            outcome.reason = e.message
            outcome.error_kind = e.kind.value
            outcome.details = dict(e.details)
            return outcome
        except IntegrityError:
            logger.warning("Concurrent write while calculating pump %s on %s", pump.pump_number, on)
            outcome.outcome = PumpOutcome.FAILED
            outcome.reason = "concurrent_modification"
            outcome.error_kind = "conflict"
            return outcome

        if calc.rollover_confirmation_required:
            logger.warning(
                "Ambiguous rollover for pump %s on %s: volume %s exceeds %s of capacity %s",
                pump.pump_number,
                on,
                calc.volume_sold,
                self.config.rollover_confirmation_fraction,
                pump.meter_capacity,
            )
        await self.audit.record(
            AuditEvent(
                action="calculation.calculated",
                entity_type="pms_calculation",
                entity_id=calc.calculation_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after=calculation_snapshot(calc),
            )
        )
        return outcome

    async def _resolve_readings(
        self, actor: Actor, pump: PumpConfiguration, on: date
    ) -> tuple[MeterReading, MeterReading]:
        """Current opening/closing rows, estimating and persisting any missing slot."""
        opening = await self.readings.find_reading(pump.pump_id, on, ReadingType.OPENING)
        closing = await self.readings.find_reading(pump.pump_id, on, ReadingType.CLOSING)
        if opening is not None and closing is not None:
            return opening, closing

        estimates = await self.estimator.resolve(
            pump,
            on,
            Decimal(opening.meter_value) if opening is not None else None,
            Decimal(closing.meter_value) if closing is not None else None,
        )
        for estimate in estimates:
            reading = await self.readings.store_estimate(
                actor,
                pump,
                on,
                estimate.reading_type,
                estimate.value,
                estimate.method,
                notes=estimate.note,
            )
            if estimate.reading_type is ReadingType.OPENING:
                opening = reading
            else:
                closing = reading
        return opening, closing

    async def _upsert_calculation(
        self,
        actor: Actor,
        pump: PumpConfiguration,
        on: date,
        opening: MeterReading,
        closing: MeterReading,
        unit_price: Decimal,
        prior: PmsCalculation | None,
    ) -> PmsCalculation:
        capacity = Decimal(pump.meter_capacity)
        wrap = detect_rollover(
            Decimal(opening.meter_value),
            Decimal(closing.meter_value),
            capacity,
            self.config.rollover_confirmation_fraction,
        )
        is_estimated = opening.is_estimated or closing.is_estimated
        average = await pump_trailing_average(
            self.session, pump.pump_id, on, self.config.deviation_lookback_days
        )
        now = utcnow()
        values = {
            "opening_value": Decimal(opening.meter_value),
            "closing_value": Decimal(closing.meter_value),
            "raw_delta": wrap.raw_delta,
            "volume_sold": wrap.volume_sold,
            "rollover_applied": wrap.rollover_applied,
            "rollover_amount": wrap.rollover_amount,
            "rollover_confirmation_required": wrap.confirmation_required,
            "deviation_percent": deviation_percent(wrap.volume_sold, average),
            "unit_price": unit_price,
            "total_revenue": revenue(wrap.volume_sold, unit_price),
            "is_estimated": is_estimated,
            "calculation_method": (
                CalculationMethod.ESTIMATED.value
                if is_estimated
                else CalculationMethod.METER_READINGS.value
            ),
            "approval_state": CalculationApprovalStateMachine.initial_state(is_estimated).value,
            "is_stale": False,
            "calculated_by": actor.user_id,
            "calculated_at": now,
            "approved_by": None,
            "approved_at": None,
            "approval_notes": None,
            "updated_at": now,
        }

        if prior is None:
            calc = PmsCalculation(pump_id=pump.pump_id, calculation_date=on, **values)
            try:
                async with self.session.begin_nested():
                    self.session.add(calc)
                    await self.session.flush()
                return calc
            except IntegrityError:
                # Another run inserted first; last writer wins
                prior = await self._find_calculation(pump.pump_id, on, for_update=True)
                if prior is None:
                    raise

        for key, value in values.items():
            setattr(prior, key, value)
        await self.session.flush()
        return prior

    async def confirm_rollover(
        self,
        actor: Actor,
        pump_id: Any,
        calculation_date: Any,
        rollover_value: Any,
        new_reading: Any,
        notes: str | None = None,
    ) -> PmsCalculation:
        """Manually settle a meter wrap.

        ``rollover_value`` is the volume dispensed before the wrap and
        ``new_reading`` the authoritative closing value after it.
        """
        actor.require(Capability.APPROVE_CALCULATIONS)
        pump_uuid = parse_uuid(pump_id, "pump_id")
        on = parse_date(calculation_date, "calculation_date")
        validate_meter_value(rollover_value, field="rollover_value")
        validate_meter_value(new_reading, field="new_reading")

        pump = await self.pumps.get_pump(pump_uuid)
        capacity = Decimal(pump.meter_capacity)
        pre_wrap = validate_meter_value(rollover_value, capacity, field="rollover_value")
        closing = validate_meter_value(new_reading, capacity, field="new_reading")

        await acquire_calculation_lock(self.session, self.lock_key(pump.pump_id, on))
        calc = await self._find_calculation(pump.pump_id, on, for_update=True)
        if calc is None:
            raise NotFoundError("pms_calculation", f"{pump.pump_id}:{on.isoformat()}")

        before = calculation_snapshot(calc)
        volume = confirmed_rollover_volume(pre_wrap, closing)
        average = await pump_trailing_average(
            self.session, pump.pump_id, on, self.config.deviation_lookback_days
        )
        now = utcnow()
        calc.closing_value = closing
        calc.raw_delta = quantize_volume(closing - Decimal(calc.opening_value))
        calc.volume_sold = volume
        calc.rollover_applied = True
        calc.rollover_amount = pre_wrap
        calc.rollover_confirmation_required = False
        calc.is_stale = False
        calc.calculation_method = CalculationMethod.MANUAL_OVERRIDE.value
        calc.deviation_percent = deviation_percent(volume, average)
        calc.total_revenue = revenue(volume, Decimal(calc.unit_price))
        if notes:
            calc.approval_notes = notes
        if (
            calc.approval_state == ApprovalState.PENDING_APPROVAL.value
            and not calc.is_estimated
        ):
            CalculationApprovalStateMachine.validate_transition(
                calc.approval_state, ApprovalState.AUTO_APPROVED
            )
            calc.approval_state = ApprovalState.AUTO_APPROVED.value
        calc.updated_at = now
        await self.session.flush()

        logger.info(
            "Rollover confirmed for pump %s on %s by %s: volume %s",
            pump.pump_number,
            on,
            actor.user_id,
            volume,
        )
        await self.audit.record(
            AuditEvent(
                action="calculation.rollover_confirmed",
                entity_type="pms_calculation",
                entity_id=calc.calculation_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after={**calculation_snapshot(calc), "notes": notes},
            )
        )
        await self.rebuild_sales_record(pump.station_id, on)
        return calc

    async def approve_estimated_calculation(
        self,
        actor: Actor,
        calculation_id: Any,
        approved: bool,
        notes: str | None = None,
    ) -> PmsCalculation:
        """Approve or reject a calculation derived from estimated readings."""
        actor.require(Capability.APPROVE_CALCULATIONS)
        if not isinstance(approved, bool):
            raise ValidationError("approved must be true or false", field="approved")
        calc_uuid = parse_uuid(calculation_id, "calculation_id")

        calc = (
            await self.session.execute(
                select(PmsCalculation)
                .where(PmsCalculation.calculation_id == calc_uuid)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if calc is None:
            raise NotFoundError("pms_calculation", calc_uuid)
        if not calc.is_estimated:
            raise ConflictError(
                "Only estimated calculations can be approved",
                reason="not_estimated",
            )

        target = ApprovalState.APPROVED if approved else ApprovalState.REJECTED
        CalculationApprovalStateMachine.validate_transition(calc.approval_state, target)

        before = calculation_snapshot(calc)
        now = utcnow()
        calc.approval_state = target.value
        calc.approved_by = actor.user_id
        calc.approved_at = now
        calc.approval_notes = notes
        calc.updated_at = now
        await self.session.flush()

        pump = await self.session.get(PumpConfiguration, calc.pump_id)
        logger.info(
            "Calculation %s %s by %s", calc.calculation_id, target.value, actor.user_id
        )
        await self.audit.record(
            AuditEvent(
                action=f"calculation.{target.value}",
                entity_type="pms_calculation",
                entity_id=calc.calculation_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id if pump else None,
                before=before,
                after={**calculation_snapshot(calc), "notes": notes},
            )
        )
        if pump is not None:
            await self.rebuild_sales_record(pump.station_id, calc.calculation_date)
        return calc

    async def get_calculations(
        self, station_id: Any, start_date: Any, end_date: Any
    ) -> list[tuple[PmsCalculation, str]]:
        """Calculations in a date range, ordered by date then pump number."""
        station_uuid = parse_uuid(station_id, "station_id")
        start = parse_date(start_date, "start_date")
        end = parse_date(end_date, "end_date")
        if start > end:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        rows = await self.session.execute(
            select(PmsCalculation, PumpConfiguration.pump_number)
            .join(PumpConfiguration, PumpConfiguration.pump_id == PmsCalculation.pump_id)
            .where(
                PumpConfiguration.station_id == station_uuid,
                PmsCalculation.calculation_date >= start,
                PmsCalculation.calculation_date <= end,
            )
            .order_by(PmsCalculation.calculation_date, PumpConfiguration.pump_number)
        )
        return [(calc, number) for calc, number in rows.all()]

    async def rebuild_sales_record(self, station_id: UUID, on: date) -> PmsSalesRecord:
        """Recompute the station's daily PMS totals from its calculations.

        Rejected calculations are left out of the totals.
        """
        rows = (
            await self.session.execute(
                select(PmsCalculation, PumpConfiguration.pump_number)
                .join(PumpConfiguration, PumpConfiguration.pump_id == PmsCalculation.pump_id)
                .where(
                    PumpConfiguration.station_id == station_id,
                    PmsCalculation.calculation_date == on,
                    PmsCalculation.approval_state != ApprovalState.REJECTED.value,
                )
                .order_by(PumpConfiguration.pump_number)
            )
        ).all()

        total_volume = Decimal("0")
        total_revenue = Decimal("0")
        estimated_volume = Decimal("0")
        pumps: list[dict[str, Any]] = []
        for calc, pump_number in rows:
            volume = Decimal(calc.volume_sold)
            total_volume += volume
            total_revenue += Decimal(calc.total_revenue)
            if calc.is_estimated:
                estimated_volume += volume
            pumps.append(
                {
                    "pump_id": str(calc.pump_id),
                    "pump_number": pump_number,
                    "volume_sold": str(calc.volume_sold),
                    "total_revenue": str(calc.total_revenue),
                    "is_estimated": calc.is_estimated,
                    "approval_state": calc.approval_state,
                    "rollover_confirmation_required": calc.rollover_confirmation_required,
                }
            )

        average_price = (
            quantize_money(total_revenue / total_volume) if total_volume > 0 else Decimal("0.00")
        )
        values = {
            "total_volume": quantize_volume(total_volume),
            "total_revenue": quantize_money(total_revenue),
            "average_unit_price": average_price,
            "pump_count": len(pumps),
            "estimated_volume": quantize_volume(estimated_volume),
            "details": {"pumps": pumps},
            "updated_at": utcnow(),
        }

        record = (
            await self.session.execute(
                select(PmsSalesRecord)
                .where(PmsSalesRecord.station_id == station_id, PmsSalesRecord.record_date == on)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if record is None:
            record = PmsSalesRecord(station_id=station_id, record_date=on, **values)
            self.session.add(record)
        else:
            for key, value in values.items():
                setattr(record, key, value)
        await self.session.flush()
        return record
