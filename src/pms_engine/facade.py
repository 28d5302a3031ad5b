"""PmsEngine facade: the single operation boundary for PMS reconciliation.

Usage:
    engine = PmsEngine(session_factory)

    result = await engine.record_reading(actor_id, pump_id, "2024-01-15", "opening", 1000.0)
    if not result.success:
        print(result.error_kind, result.error)

    result = await engine.calculate_pms_for_date(actor_id, station_id, "2024-01-15")

The facade:
- Resolves the acting user (and their current role) on every call
- Runs each operation in its own transaction, committed on success and
  rolled back on failure
- Never raises: every outcome is an OperationResult with a stable error kind
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pms_engine.config import ReconciliationConfig, get_settings
from pms_engine.models import utcnow
from pms_engine.services.actors import Actor, ActorResolver, Capability
from pms_engine.services.audit import AuditRecorder, AuditSink, DatabaseAuditSink, LoggingAuditSink
from pms_engine.services.corrections import CorrectionWorkflow
from pms_engine.services.deviation import DeviationReporter
from pms_engine.services.errors import ErrorKind, PmsError
from pms_engine.services.pump_registry import PumpRegistry
from pms_engine.services.reading_store import ReadingStore, reading_to_dict
from pms_engine.services.reconciliation import ReconciliationEngine, calculation_to_dict
from pms_engine.services.validation import parse_uuid

logger = logging.getLogger(__name__)

Operation = Callable[[AsyncSession, Actor], Awaitable[Any]]


@dataclass
class OperationResult:
    """Uniform outcome of every facade operation."""

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls, kind: ErrorKind, error: str, details: dict[str, Any] | None = None
    ) -> OperationResult:
        return cls(success=False, error=error, error_kind=kind.value, details=details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_kind": self.error_kind,
            "details": self.details,
        }


class PmsEngine:
    """Facade over the reconciliation services."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: ReconciliationConfig | None = None,
        audit_sinks: Sequence[AuditSink] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or get_settings().reconciliation
        self.audit_sinks = list(audit_sinks) if audit_sinks is not None else [LoggingAuditSink()]
        self.clock = clock

    def _audit(self, session: AsyncSession) -> AuditRecorder:
        return AuditRecorder([DatabaseAuditSink(session), *self.audit_sinks])

    async def _run(self, name: str, actor_id: Any, operation: Operation) -> OperationResult:
        async with self.session_factory() as session:
            try:
                actor = await ActorResolver(session).resolve(actor_id)
                data = await operation(session, actor)
                await session.commit()
                return OperationResult.ok(data)
            except PmsError as e:
                await session.rollback()
                logger.info("%s failed (%s): %s", name, e.kind.value, e.message)
                return OperationResult.fail(e.kind, e.message, dict(e.details))
            except IntegrityError:
                await session.rollback()
                logger.warning("%s hit a concurrent modification", name)
                return OperationResult.fail(
                    ErrorKind.CONFLICT,
                    "Conflicting concurrent modification",
                    {"reason": "integrity_conflict"},
                )
            except Exception:
                await session.rollback()
                logger.exception("Unexpected error in %s", name)
                return OperationResult.fail(
                    ErrorKind.INTERNAL, f"Failed to {name.replace('_', ' ')}"
                )

    # Meter readings

    async def record_reading(
        self,
        actor_id: Any,
        pump_id: Any,
        reading_date: Any,
        reading_type: Any,
        meter_value: Any,
        notes: str | None = None,
        is_estimated: bool = False,
        estimation_method: Any = None,
        station_id: Any = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            store = ReadingStore(session, self.config, self._audit(session))
            reading = await store.record_reading(
                actor,
                pump_id,
                reading_date,
                reading_type,
                meter_value,
                notes=notes,
                is_estimated=is_estimated,
                estimation_method=estimation_method,
                station_id=parse_uuid(station_id, "station_id") if station_id else None,
            )
            return reading_to_dict(reading)

        return await self._run("record_reading", actor_id, op)

    async def record_bulk_readings(
        self,
        actor_id: Any,
        station_id: Any,
        reading_date: Any,
        reading_type: Any,
        readings: Sequence[Mapping[str, Any]],
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            store = ReadingStore(session, self.config, self._audit(session))
            result = await store.record_bulk_readings(
                actor, station_id, reading_date, reading_type, readings
            )
            return result.to_dict()

        return await self._run("record_bulk_readings", actor_id, op)

    async def get_readings(
        self,
        actor_id: Any,
        station_id: Any,
        start_date: Any,
        end_date: Any,
        pump_id: Any = None,
        page: int = 1,
        page_size: int = 100,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            store = ReadingStore(session, self.config, self._audit(session))
            result = await store.get_readings(
                station_id, start_date, end_date, pump_id, page=page, page_size=page_size
            )
            return result.to_dict()

        return await self._run("get_readings", actor_id, op)

    async def get_daily_reading_status(
        self, actor_id: Any, station_id: Any, reading_date: Any
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            store = ReadingStore(session, self.config, self._audit(session))
            statuses = await store.get_daily_reading_status(station_id, reading_date)
            return [s.to_dict() for s in statuses]

        return await self._run("get_daily_reading_status", actor_id, op)

    async def update_meter_reading(
        self,
        actor_id: Any,
        reading_id: Any,
        meter_value: Any,
        notes: str | None = None,
        override: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            workflow = CorrectionWorkflow(session, self.config, self._audit(session))
            result = await workflow.update_meter_reading(
                actor, reading_id, meter_value, notes=notes, override=override, now=self.clock()
            )
            data = reading_to_dict(result.reading)
            data["calculation_marked_stale"] = result.calculation_marked_stale
            return data

        return await self._run("update_meter_reading", actor_id, op)

    # Calculations

    async def calculate_pms_for_date(
        self,
        actor_id: Any,
        station_id: Any,
        calculation_date: Any,
        force_recalculate: bool = False,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            engine = ReconciliationEngine(session, self.config, self._audit(session))
            run = await engine.calculate_for_date(
                actor, station_id, calculation_date, force_recalculate=force_recalculate
            )
            return run.to_dict()

        return await self._run("calculate_pms_for_date", actor_id, op)

    async def confirm_rollover(
        self,
        actor_id: Any,
        pump_id: Any,
        calculation_date: Any,
        rollover_value: Any,
        new_reading: Any,
        notes: str | None = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            engine = ReconciliationEngine(session, self.config, self._audit(session))
            calc = await engine.confirm_rollover(
                actor, pump_id, calculation_date, rollover_value, new_reading, notes=notes
            )
            return calculation_to_dict(calc, threshold=self.config.deviation_threshold_percent)

        return await self._run("confirm_rollover", actor_id, op)

    async def approve_estimated_calculation(
        self,
        actor_id: Any,
        calculation_id: Any,
        approved: bool,
        notes: str | None = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            engine = ReconciliationEngine(session, self.config, self._audit(session))
            calc = await engine.approve_estimated_calculation(
                actor, calculation_id, approved, notes=notes
            )
            return calculation_to_dict(calc)

        return await self._run("approve_estimated_calculation", actor_id, op)

    async def get_pms_calculations(
        self, actor_id: Any, station_id: Any, start_date: Any, end_date: Any
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            engine = ReconciliationEngine(session, self.config, self._audit(session))
            rows = await engine.get_calculations(station_id, start_date, end_date)
            threshold = self.config.deviation_threshold_percent
            return [calculation_to_dict(calc, number, threshold) for calc, number in rows]

        return await self._run("get_pms_calculations", actor_id, op)

    async def get_calculations_with_deviations(
        self,
        actor_id: Any,
        station_id: Any,
        threshold_percent: Any = None,
        days: int | None = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            reporter = DeviationReporter(session, self.config)
            entries = await reporter.get_calculations_with_deviations(
                station_id, threshold_percent, days, today=self.clock().date()
            )
            return [e.to_dict() for e in entries]

        return await self._run("get_calculations_with_deviations", actor_id, op)

    # Pump configuration

    async def create_pump_configuration(
        self,
        actor_id: Any,
        station_id: Any,
        pms_product_id: Any,
        pump_number: str,
        meter_capacity: Any,
        install_date: Any,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            registry = PumpRegistry(session, self._audit(session))
            pump = await registry.create_pump(
                actor,
                parse_uuid(station_id, "station_id"),
                parse_uuid(pms_product_id, "pms_product_id"),
                pump_number,
                meter_capacity,
                install_date,
            )
            return pump.to_dict()

        return await self._run("create_pump_configuration", actor_id, op)

    async def update_pump_configuration(
        self,
        actor_id: Any,
        pump_id: Any,
        pump_number: str | None = None,
        meter_capacity: Any = None,
        last_calibration_date: Any = None,
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            registry = PumpRegistry(session, self._audit(session))
            pump = await registry.update_pump(
                actor,
                parse_uuid(pump_id, "pump_id"),
                pump_number=pump_number,
                meter_capacity=meter_capacity,
                last_calibration_date=last_calibration_date,
            )
            return pump.to_dict()

        return await self._run("update_pump_configuration", actor_id, op)

    async def update_pump_status(
        self, actor_id: Any, pump_id: Any, status: Any, notes: str | None = None
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            registry = PumpRegistry(session, self._audit(session))
            pump = await registry.update_status(
                actor, parse_uuid(pump_id, "pump_id"), status, notes, today=self.clock().date()
            )
            return pump.to_dict()

        return await self._run("update_pump_status", actor_id, op)

    async def deactivate_pump(self, actor_id: Any, pump_id: Any) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            registry = PumpRegistry(session, self._audit(session))
            pump = await registry.deactivate(actor, parse_uuid(pump_id, "pump_id"))
            return pump.to_dict()

        return await self._run("deactivate_pump", actor_id, op)

    async def get_pump_configuration(self, actor_id: Any, pump_id: Any) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            registry = PumpRegistry(session, self._audit(session))
            pump = await registry.get_pump(parse_uuid(pump_id, "pump_id"))
            return pump.to_dict()

        return await self._run("get_pump_configuration", actor_id, op)

    async def get_pump_configurations(
        self, actor_id: Any, station_id: Any, active_only: bool = False
    ) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            registry = PumpRegistry(session, self._audit(session))
            station_uuid = parse_uuid(station_id, "station_id")
            await registry.get_station(station_uuid)
            pumps = await registry.list_pumps(station_uuid, active_only=active_only)
            return [p.to_dict() for p in pumps]

        return await self._run("get_pump_configurations", actor_id, op)

    async def get_pump_status_history(self, actor_id: Any, pump_id: Any) -> OperationResult:
        async def op(session: AsyncSession, actor: Actor) -> Any:
            actor.require(Capability.VIEW)
            registry = PumpRegistry(session, self._audit(session))
            history = await registry.status_history(parse_uuid(pump_id, "pump_id"))
            return [h.to_dict() for h in history]

        return await self._run("get_pump_status_history", actor_id, op)
