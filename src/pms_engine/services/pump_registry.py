"""Pump registry: configuration, status lifecycle, and soft deactivation."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.models import (
    Product,
    ProductType,
    PumpConfiguration,
    PumpStatus,
    PumpStatusChange,
    Station,
    utcnow,
)
from pms_engine.services.actors import Actor, Capability
from pms_engine.services.audit import AuditEvent, AuditRecorder
from pms_engine.services.errors import ConflictError, NotFoundError, ValidationError
from pms_engine.services.state_machine import PumpStatusStateMachine
from pms_engine.services.validation import (
    parse_date,
    parse_pump_status,
    require_text,
    validate_capacity,
)

logger = logging.getLogger(__name__)


def pump_snapshot(pump: PumpConfiguration) -> dict[str, Any]:
    """Audit view of a pump's mutable fields."""
    return {
        "pump_number": pump.pump_number,
        "meter_capacity": pump.meter_capacity,
        "status": pump.status,
        "is_active": pump.is_active,
        "last_calibration_date": pump.last_calibration_date,
    }


class PumpRegistry:
    """Service for pump configuration.

    Operations:
    - create_pump: register a pump against a station's PMS product
    - update_pump: change number, capacity, or calibration date
    - update_status: move a pump through its status lifecycle
    - deactivate: soft delete (inactive, status repair)
    - get_pump / list_pumps / status_history: reads
    """

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder.for_session(session)

    async def get_station(self, station_id: UUID) -> Station:
        station = await self.session.get(Station, station_id)
        if station is None:
            raise NotFoundError("station", station_id)
        return station

    async def get_pump(self, pump_id: UUID, for_update: bool = False) -> PumpConfiguration:
        """Load a pump or raise NotFoundError."""
        stmt = select(PumpConfiguration).where(PumpConfiguration.pump_id == pump_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        pump = result.scalar_one_or_none()
        if pump is None:
            raise NotFoundError("pump", pump_id)
        return pump

    async def list_pumps(self, station_id: UUID, active_only: bool = False) -> list[PumpConfiguration]:
        """Pumps at a station ordered by pump number."""
        stmt = select(PumpConfiguration).where(PumpConfiguration.station_id == station_id)
        if active_only:
            stmt = stmt.where(
                PumpConfiguration.is_active.is_(True),
                PumpConfiguration.status == PumpStatus.ACTIVE.value,
            )
        result = await self.session.execute(stmt.order_by(PumpConfiguration.pump_number))
        return list(result.scalars().all())

    async def status_history(self, pump_id: UUID) -> list[PumpStatusChange]:
        await self.get_pump(pump_id)
        result = await self.session.execute(
            select(PumpStatusChange)
            .where(PumpStatusChange.pump_id == pump_id)
            .order_by(PumpStatusChange.changed_at, PumpStatusChange.pump_status_change_id)
        )
        return list(result.scalars().all())

    async def _load_pms_product(self, station_id: UUID, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None or product.station_id != station_id:
            raise NotFoundError("product", product_id)
        if product.product_type != ProductType.PMS.value:
            raise ValidationError(
                "Pumps can only be assigned a PMS product",
                field="pms_product_id",
                product_type=product.product_type,
            )
        return product

    async def _ensure_number_free(
        self, station_id: UUID, pump_number: str, exclude_pump_id: UUID | None = None
    ) -> None:
        stmt = select(PumpConfiguration.pump_id).where(
            PumpConfiguration.station_id == station_id,
            PumpConfiguration.pump_number == pump_number,
        )
        if exclude_pump_id is not None:
            stmt = stmt.where(PumpConfiguration.pump_id != exclude_pump_id)
        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        if existing is not None:
            raise ConflictError(
                "Pump number already exists for this station",
                reason="duplicate_pump_number",
                pump_number=pump_number,
            )

    async def create_pump(
        self,
        actor: Actor,
        station_id: UUID,
        pms_product_id: UUID,
        pump_number: str,
        meter_capacity: Any,
        install_date: Any,
    ) -> PumpConfiguration:
        """Register a new pump. Manager only."""
        actor.require(Capability.CONFIGURE_PUMPS)

        number = require_text(pump_number, "pump_number")
        capacity = validate_capacity(meter_capacity)
        installed = parse_date(install_date, "install_date")

        await self.get_station(station_id)
        await self._load_pms_product(station_id, pms_product_id)
        await self._ensure_number_free(station_id, number)

        pump = PumpConfiguration(
            station_id=station_id,
            pms_product_id=pms_product_id,
            pump_number=number,
            meter_capacity=capacity,
            install_date=installed,
            status=PumpStatus.ACTIVE.value,
            is_active=True,
        )
        self.session.add(pump)
        await self.session.flush()

        await self.audit.record(
            AuditEvent(
                action="pump.created",
                entity_type="pump_configuration",
                entity_id=pump.pump_id,
                actor_user_id=actor.user_id,
                station_id=station_id,
                after=pump_snapshot(pump),
            )
        )
        return pump

    async def update_pump(
        self,
        actor: Actor,
        pump_id: UUID,
        pump_number: str | None = None,
        meter_capacity: Any = None,
        last_calibration_date: Any = None,
    ) -> PumpConfiguration:
        """Update pump attributes. Manager only."""
        actor.require(Capability.CONFIGURE_PUMPS)

        pump = await self.get_pump(pump_id, for_update=True)
        before = pump_snapshot(pump)

        if pump_number is not None:
            number = require_text(pump_number, "pump_number")
            if number != pump.pump_number:
                await self._ensure_number_free(pump.station_id, number, exclude_pump_id=pump_id)
                pump.pump_number = number
        if meter_capacity is not None:
            pump.meter_capacity = validate_capacity(meter_capacity)
        if last_calibration_date is not None:
            pump.last_calibration_date = parse_date(last_calibration_date, "last_calibration_date")

        pump.updated_at = utcnow()
        await self.session.flush()

        await self.audit.record(
            AuditEvent(
                action="pump.updated",
                entity_type="pump_configuration",
                entity_id=pump.pump_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after=pump_snapshot(pump),
            )
        )
        return pump

    async def update_status(
        self,
        actor: Actor,
        pump_id: UUID,
        status: Any,
        notes: str | None = None,
        today: date | None = None,
    ) -> PumpConfiguration:
        """Transition a pump's status. Manager only.

        Completing a calibration (calibration → active) stamps
        last_calibration_date. is_active follows the new status.
        """
        actor.require(Capability.CONFIGURE_PUMPS)
        to_status = parse_pump_status(status)

        pump = await self.get_pump(pump_id, for_update=True)
        from_status = pump.status
        PumpStatusStateMachine.validate_transition(from_status, to_status)

        before = pump_snapshot(pump)
        if PumpStatusStateMachine.completes_calibration(from_status, to_status):
            pump.last_calibration_date = today or utcnow().date()
        pump.status = to_status.value
        pump.is_active = PumpStatusStateMachine.is_operational(to_status)
        pump.updated_at = utcnow()

        self.session.add(
            PumpStatusChange(
                pump_id=pump.pump_id,
                from_status=from_status,
                to_status=to_status.value,
                notes=notes,
                changed_by=actor.user_id,
            )
        )
        await self.session.flush()

        logger.info("Pump %s status %s -> %s", pump.pump_number, from_status, to_status.value)
        await self.audit.record(
            AuditEvent(
                action="pump.status_changed",
                entity_type="pump_configuration",
                entity_id=pump.pump_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after={**pump_snapshot(pump), "notes": notes},
            )
        )
        return pump

    async def deactivate(self, actor: Actor, pump_id: UUID) -> PumpConfiguration:
        """Soft delete a pump. History and readings are kept."""
        actor.require(Capability.CONFIGURE_PUMPS)

        pump = await self.get_pump(pump_id, for_update=True)
        if not pump.is_active and pump.status == PumpStatus.REPAIR.value:
            raise ConflictError("Pump is already deactivated", reason="already_deactivated")

        before = pump_snapshot(pump)
        if pump.status != PumpStatus.REPAIR.value:
            self.session.add(
                PumpStatusChange(
                    pump_id=pump.pump_id,
                    from_status=pump.status,
                    to_status=PumpStatus.REPAIR.value,
                    notes="Pump deactivated",
                    changed_by=actor.user_id,
                )
            )
        pump.is_active = False
        pump.status = PumpStatus.REPAIR.value
        pump.updated_at = utcnow()
        await self.session.flush()

        await self.audit.record(
            AuditEvent(
                action="pump.deactivated",
                entity_type="pump_configuration",
                entity_id=pump.pump_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after=pump_snapshot(pump),
            )
        )
        return pump
