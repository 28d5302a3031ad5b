"""Pytest fixtures for PMS engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pms_engine.calculators.deviation import revenue
from pms_engine.config import ReconciliationConfig
from pms_engine.database import create_engine_for_url, make_session_factory
from pms_engine.facade import PmsEngine
from pms_engine.models import (
    ApprovalState,
    AppUser,
    Base,
    CalculationMethod,
    MeterReading,
    PmsCalculation,
    Product,
    ProductType,
    PumpConfiguration,
    PumpSaleTransaction,
    PumpStatus,
    ReadingType,
    Station,
    utcnow,
)
from pms_engine.services.actors import Actor, Role

BUSINESS_DATE = date(2024, 1, 15)
METER_CAPACITY = Decimal("999999.9")
PMS_PRICE = Decimal("650.00")


@dataclass
class SeedData:
    """Committed fixture rows shared by service, facade, and API tests."""

    station: Station
    other_station: Station
    pms: Product
    ago: Product
    staff: AppUser
    other_staff: AppUser
    manager: AppUser
    director: AppUser
    inactive: AppUser
    pump1: PumpConfiguration
    pump2: PumpConfiguration
    other_pump: PumpConfiguration

    @property
    def station_id(self) -> UUID:
        return self.station.station_id


def actor_for(user: AppUser) -> Actor:
    return Actor(user_id=user.user_id, role=Role(user.role), station_id=user.station_id)


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so facade calls get independent connections."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'pms.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SeedData:
    """Create a station with two PMS pumps, users of every role, and a second station."""
    async with session_factory() as session:
        station = Station(name="Ikeja Road", code="IKJ-01")
        other_station = Station(name="Lekki Phase 1", code="LKK-01")
        session.add_all([station, other_station])
        await session.flush()

        pms = Product(
            station_id=station.station_id,
            name="Premium Motor Spirit",
            product_type=ProductType.PMS.value,
            unit_price=PMS_PRICE,
        )
        ago = Product(
            station_id=station.station_id,
            name="Automotive Gas Oil",
            product_type=ProductType.AGO.value,
            unit_price=Decimal("1200.00"),
        )
        other_pms = Product(
            station_id=other_station.station_id,
            name="Premium Motor Spirit",
            product_type=ProductType.PMS.value,
            unit_price=PMS_PRICE,
        )
        session.add_all([pms, ago, other_pms])

        users = {
            "staff": AppUser(station_id=station.station_id, display_name="Ada", role="staff"),
            "other_staff": AppUser(station_id=station.station_id, display_name="Bayo", role="staff"),
            "manager": AppUser(station_id=station.station_id, display_name="Chidi", role="manager"),
            "director": AppUser(station_id=None, display_name="Dayo", role="director"),
            "inactive": AppUser(
                station_id=station.station_id,
                display_name="Emeka",
                role="manager",
                is_active=False,
            ),
        }
        session.add_all(users.values())
        await session.flush()

        def pump(station_id: UUID, product: Product, number: str) -> PumpConfiguration:
            return PumpConfiguration(
                station_id=station_id,
                pms_product_id=product.product_id,
                pump_number=number,
                meter_capacity=METER_CAPACITY,
                install_date=date(2023, 6, 1),
                status=PumpStatus.ACTIVE.value,
                is_active=True,
            )

        pump1 = pump(station.station_id, pms, "P1")
        pump2 = pump(station.station_id, pms, "P2")
        other_pump = pump(other_station.station_id, other_pms, "P1")
        session.add_all([pump1, pump2, other_pump])
        await session.commit()

    return SeedData(
        station=station,
        other_station=other_station,
        pms=pms,
        ago=ago,
        pump1=pump1,
        pump2=pump2,
        other_pump=other_pump,
        **users,
    )


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession], seed: SeedData
) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests; rolled back after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def config() -> ReconciliationConfig:
    return ReconciliationConfig()


@pytest.fixture
def pms(session_factory: async_sessionmaker[AsyncSession], config: ReconciliationConfig) -> PmsEngine:
    """Facade with database auditing only."""
    return PmsEngine(session_factory, config, audit_sinks=[])


@pytest.fixture
def staff(seed: SeedData) -> Actor:
    return actor_for(seed.staff)


@pytest.fixture
def manager(seed: SeedData) -> Actor:
    return actor_for(seed.manager)


@pytest.fixture
def director(seed: SeedData) -> Actor:
    return actor_for(seed.director)


@pytest.fixture
def add_reading():
    """Insert a reading row directly, bypassing the recording rules."""

    async def _add(
        session: AsyncSession,
        pump: PumpConfiguration,
        reading_type: ReadingType,
        value: str | Decimal,
        recorded_by: UUID,
        on: date = BUSINESS_DATE,
        recorded_at: datetime | None = None,
    ) -> MeterReading:
        reading = MeterReading(
            pump_id=pump.pump_id,
            reading_date=on,
            reading_type=reading_type.value,
            meter_value=Decimal(value),
            recorded_by=recorded_by,
            recorded_at=recorded_at or utcnow(),
        )
        session.add(reading)
        await session.flush()
        return reading

    return _add


@pytest.fixture
def add_history():
    """Insert auto-approved calculations for the days before ``before``.

    ``volumes[-1]`` lands on the day immediately before ``before``.
    """

    async def _add(
        session: AsyncSession,
        pump: PumpConfiguration,
        volumes: list[str],
        calculated_by: UUID,
        before: date = BUSINESS_DATE,
        approval_state: ApprovalState = ApprovalState.AUTO_APPROVED,
    ) -> list[PmsCalculation]:
        calcs = []
        for offset, volume in enumerate(reversed(volumes), start=1):
            sold = Decimal(volume)
            calc = PmsCalculation(
                pump_id=pump.pump_id,
                calculation_date=before - timedelta(days=offset),
                opening_value=Decimal("0"),
                closing_value=sold,
                raw_delta=sold,
                volume_sold=sold,
                unit_price=PMS_PRICE,
                total_revenue=revenue(sold, PMS_PRICE),
                is_estimated=approval_state is not ApprovalState.AUTO_APPROVED,
                calculation_method=CalculationMethod.METER_READINGS.value,
                approval_state=approval_state.value,
                calculated_by=calculated_by,
            )
            session.add(calc)
            calcs.append(calc)
        await session.flush()
        return calcs

    return _add


@pytest.fixture
def add_sale():
    """Insert a discrete sale transaction."""

    async def _add(
        session: AsyncSession,
        pump: PumpConfiguration,
        volume: str,
        on: date = BUSINESS_DATE,
    ) -> PumpSaleTransaction:
        sale = PumpSaleTransaction(pump_id=pump.pump_id, sale_date=on, volume=Decimal(volume))
        session.add(sale)
        await session.flush()
        return sale

    return _add
