"""Retroactive correction of meter readings.

A reading may be edited freely for ``modification_window_hours`` after it
was recorded, by its recorder or a manager. Later edits need a manager
override carrying a reason; the named manager's role is re-read at call
time, never trusted from the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.config import ReconciliationConfig
from pms_engine.models import CorrectionState, MeterReading, PumpConfiguration, utcnow
from pms_engine.services.actors import Actor, ActorResolver, Capability
from pms_engine.services.audit import AuditEvent, AuditRecorder
from pms_engine.services.errors import ForbiddenError, ValidationError, WindowExpiredError
from pms_engine.services.reading_store import (
    ReadingStore,
    mark_calculation_stale,
    reading_snapshot,
)
from pms_engine.services.state_machine import ReadingCorrectionStateMachine
from pms_engine.services.validation import parse_uuid, validate_meter_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManagerOverride:
    """Authorization to edit a reading outside its modification window."""

    is_manager: bool
    manager_id: Any
    reason: str | None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ManagerOverride | None:
        if data is None:
            return None
        return cls(
            is_manager=bool(data.get("is_manager", False)),
            manager_id=data.get("manager_id"),
            reason=data.get("reason"),
        )


@dataclass
class CorrectionResult:
    reading: MeterReading
    with_override: bool
    calculation_marked_stale: bool


class CorrectionWorkflow:
    """Governs edits to recorded meter readings."""

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
        self.actors = ActorResolver(session)

    def window_closes_at(self, reading: MeterReading) -> datetime:
        return reading.recorded_at + timedelta(hours=self.config.modification_window_hours)

    def within_window(self, reading: MeterReading, now: datetime | None = None) -> bool:
        return (now or utcnow()) < self.window_closes_at(reading)

    async def update_meter_reading(
        self,
        actor: Actor,
        reading_id: Any,
        meter_value: Any,
        notes: str | None = None,
        override: ManagerOverride | Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> CorrectionResult:
        """Correct a reading's value, in-window or under a manager override."""
        if isinstance(override, Mapping):
            override = ManagerOverride.from_mapping(override)
        with_override = override is not None and override.is_manager

        reading_uuid = parse_uuid(reading_id, "reading_id")
        validate_meter_value(meter_value)

        manager: Actor | None = None
        if with_override:
            if not isinstance(override.reason, str) or not override.reason.strip():
                raise ValidationError("Override reason is required", field="reason")
            if override.manager_id is None:
                raise ValidationError("Override manager_id is required", field="manager_id")
            manager = await self.actors.require_manager(override.manager_id)
        elif not actor.is_manager:
            actor.require(Capability.RECORD_READINGS)

        reading = await self.readings.get_reading(reading_uuid, for_update=True)
        pump = await self.session.get(PumpConfiguration, reading.pump_id)
        value = validate_meter_value(meter_value, Decimal(pump.meter_capacity))

        if not with_override:
            if not self.within_window(reading, now):
                raise WindowExpiredError(self.config.modification_window_hours)
            if reading.recorded_by != actor.user_id and not actor.is_manager:
                raise ForbiddenError(
                    "Only the original recorder or a manager may modify this reading",
                    required_role="manager",
                )

        target = ReadingCorrectionStateMachine.next_state(reading.correction_state, with_override)

        before = reading_snapshot(reading)
        if reading.original_value is None:
            reading.original_value = reading.meter_value
        reading.meter_value = value
        if notes is not None:
            reading.notes = notes
        reading.correction_state = target.value
        reading.is_modified = True
        reading.modified_by = manager.user_id if manager is not None else actor.user_id
        reading.modified_at = now or utcnow()
        if manager is not None:
            reading.override_reason = override.reason.strip()
        await self.session.flush()

        stale = await mark_calculation_stale(self.session, reading.pump_id, reading.reading_date)

        after = reading_snapshot(reading)
        if manager is not None:
            after["override"] = {
                "manager_id": manager.user_id,
                "reason": reading.override_reason,
            }
            logger.info(
                "Reading %s corrected with override by manager %s: %s",
                reading.reading_id,
                manager.user_id,
                reading.override_reason,
            )
        await self.audit.record(
            AuditEvent(
                action=(
                    "reading.corrected_with_override"
                    if target is CorrectionState.CORRECTED_WITH_OVERRIDE
                    else "reading.corrected"
                ),
                entity_type="meter_reading",
                entity_id=reading.reading_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after=after,
            )
        )
        return CorrectionResult(
            reading=reading,
            with_override=with_override,
            calculation_marked_stale=stale,
        )
