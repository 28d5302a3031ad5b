"""Tests for pump configuration and status management."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from pms_engine.models import AuditEventRecord, PumpStatus
from pms_engine.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from pms_engine.services.pump_registry import PumpRegistry


class TestCreatePump:
    """Registering pumps."""

    async def test_manager_creates_pump(self, session, seed, manager):
        registry = PumpRegistry(session)

        pump = await registry.create_pump(
            manager, seed.station_id, seed.pms.product_id, "P3", "500000", "2024-01-01"
        )

        assert pump.status == PumpStatus.ACTIVE.value
        assert pump.is_active is True
        assert pump.meter_capacity == Decimal("500000.0")

        await session.flush()
        audit = (
            await session.execute(
                select(AuditEventRecord).where(AuditEventRecord.entity_id == pump.pump_id)
            )
        ).scalar_one()
        assert audit.action == "pump.created"
        assert audit.after_json["pump_number"] == "P3"

    async def test_staff_cannot_create(self, session, seed, staff):
        registry = PumpRegistry(session)

        with pytest.raises(ForbiddenError) as exc_info:
            await registry.create_pump(
                staff, seed.station_id, seed.pms.product_id, "P3", "500000", "2024-01-01"
            )

        assert exc_info.value.details["required_role"] == "manager"

    async def test_duplicate_number_conflicts(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(ConflictError) as exc_info:
            await registry.create_pump(
                manager, seed.station_id, seed.pms.product_id, "P1", "500000", "2024-01-01"
            )

        assert exc_info.value.details["reason"] == "duplicate_pump_number"

    async def test_same_number_allowed_at_other_station(self, session, seed, manager):
        """Pump numbers are unique per station only."""
        registry = PumpRegistry(session)

        pump = await registry.create_pump(
            manager,
            seed.other_station.station_id,
            seed.other_pump.pms_product_id,
            "P2",
            "500000",
            "2024-01-01",
        )

        assert pump.pump_number == "P2"
        assert pump.station_id == seed.other_station.station_id

    async def test_non_pms_product_rejected(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(ValidationError):
            await registry.create_pump(
                manager, seed.station_id, seed.ago.product_id, "P3", "500000", "2024-01-01"
            )

    async def test_product_from_other_station_not_found(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(NotFoundError):
            await registry.create_pump(
                manager,
                seed.station_id,
                seed.other_pump.pms_product_id,
                "P3",
                "500000",
                "2024-01-01",
            )

    async def test_zero_capacity_rejected(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(ValidationError):
            await registry.create_pump(
                manager, seed.station_id, seed.pms.product_id, "P3", 0, "2024-01-01"
            )

    async def test_unknown_station(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(NotFoundError):
            await registry.create_pump(
                manager, uuid4(), seed.pms.product_id, "P3", "500000", "2024-01-01"
            )


class TestUpdatePump:
    async def test_rename_and_resize(self, session, seed, manager):
        registry = PumpRegistry(session)

        pump = await registry.update_pump(
            manager, seed.pump2.pump_id, pump_number="P9", meter_capacity="100000"
        )

        assert pump.pump_number == "P9"
        assert pump.meter_capacity == Decimal("100000.0")

    async def test_rename_to_taken_number(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(ConflictError):
            await registry.update_pump(manager, seed.pump2.pump_id, pump_number="P1")

    async def test_unknown_pump(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(NotFoundError):
            await registry.update_pump(manager, uuid4(), pump_number="P9")


class TestPumpStatus:
    """Status transitions and history."""

    async def test_maintenance_takes_pump_out_of_service(self, session, seed, manager):
        registry = PumpRegistry(session)

        pump = await registry.update_status(
            manager, seed.pump1.pump_id, "maintenance", "Nozzle leak"
        )

        assert pump.status == PumpStatus.MAINTENANCE.value
        assert pump.is_active is False

        history = await registry.status_history(seed.pump1.pump_id)
        assert [(h.from_status, h.to_status) for h in history] == [("active", "maintenance")]
        assert history[0].notes == "Nozzle leak"
        assert history[0].changed_by == manager.user_id

    async def test_calibration_completion_stamps_date(self, session, seed, manager):
        registry = PumpRegistry(session)

        await registry.update_status(manager, seed.pump1.pump_id, "calibration")
        pump = await registry.update_status(
            manager, seed.pump1.pump_id, "active", today=date(2024, 2, 1)
        )

        assert pump.last_calibration_date == date(2024, 2, 1)
        assert pump.is_active is True

    async def test_calibration_to_maintenance_is_invalid(self, session, seed, manager):
        registry = PumpRegistry(session)
        await registry.update_status(manager, seed.pump1.pump_id, "calibration")

        with pytest.raises(InvalidTransitionError):
            await registry.update_status(manager, seed.pump1.pump_id, "maintenance")

    async def test_same_status_conflicts(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(InvalidTransitionError):
            await registry.update_status(manager, seed.pump1.pump_id, "active")

    async def test_unknown_status(self, session, seed, manager):
        registry = PumpRegistry(session)

        with pytest.raises(ValidationError):
            await registry.update_status(manager, seed.pump1.pump_id, "broken")


class TestDeactivate:
    async def test_deactivate_is_soft(self, session, seed, manager):
        registry = PumpRegistry(session)

        pump = await registry.deactivate(manager, seed.pump2.pump_id)

        assert pump.is_active is False
        assert pump.status == PumpStatus.REPAIR.value
        assert await registry.get_pump(seed.pump2.pump_id) is pump

        active = await registry.list_pumps(seed.station_id, active_only=True)
        assert [p.pump_number for p in active] == ["P1"]
        everything = await registry.list_pumps(seed.station_id)
        assert [p.pump_number for p in everything] == ["P1", "P2"]

    async def test_deactivate_twice_conflicts(self, session, seed, manager):
        registry = PumpRegistry(session)
        await registry.deactivate(manager, seed.pump2.pump_id)

        with pytest.raises(ConflictError) as exc_info:
            await registry.deactivate(manager, seed.pump2.pump_id)

        assert exc_info.value.details["reason"] == "already_deactivated"

    async def test_director_cannot_deactivate(self, session, seed, director):
        registry = PumpRegistry(session)

        with pytest.raises(ForbiddenError):
            await registry.deactivate(director, seed.pump2.pump_id)
