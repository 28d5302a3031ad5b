"""Tests for meter reading recording and queries."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from pms_engine.models import (
    AuditEventRecord,
    MeterReading,
    PmsCalculation,
    PumpConfiguration,
    PumpStatus,
    ReadingType,
)
from pms_engine.services.errors import (
    ConflictError,
    DuplicateReadingError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from pms_engine.services.reading_store import ReadingStore

from conftest import BUSINESS_DATE


class TestRecordReading:
    """Single reading submission."""

    async def test_records_opening(self, session, seed, staff):
        store = ReadingStore(session)

        reading = await store.record_reading(
            staff, seed.pump1.pump_id, "2024-01-15", "opening", "1000.0"
        )

        assert reading.meter_value == Decimal("1000.0")
        assert reading.reading_type == "opening"
        assert reading.recorded_by == staff.user_id
        assert reading.is_estimated is False
        assert reading.correction_state == "recorded"

        await session.flush()
        actions = (
            await session.execute(
                select(AuditEventRecord.action).where(
                    AuditEventRecord.entity_id == reading.reading_id
                )
            )
        ).scalars().all()
        assert actions == ["reading.recorded"]

    async def test_duplicate_measured_reading(self, session, seed, staff):
        """A second submission for the same key is a conflict and changes nothing."""
        store = ReadingStore(session)
        first = await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)

        with pytest.raises(DuplicateReadingError) as exc_info:
            await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1200)

        assert exc_info.value.details["existing_reading_id"] == str(first.reading_id)
        stored = await store.find_reading(seed.pump1.pump_id, BUSINESS_DATE, ReadingType.OPENING)
        assert stored.meter_value == Decimal("1000.0")

    async def test_opening_and_closing_are_separate_keys(self, session, seed, staff):
        store = ReadingStore(session)

        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "closing", 1500)
        await store.record_reading(
            staff, seed.pump1.pump_id, BUSINESS_DATE + timedelta(days=1), "opening", 1500
        )

        page = await store.get_readings(
            seed.station_id, BUSINESS_DATE, BUSINESS_DATE + timedelta(days=1)
        )
        assert page.total == 3

    async def test_negative_value_rejected(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError):
            await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", -1)

    async def test_value_above_capacity_rejected(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError) as exc_info:
            await store.record_reading(
                staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", "1000000.0"
            )

        assert exc_info.value.details["meter_capacity"] == "999999.9"

    async def test_bad_date_rejected(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError) as exc_info:
            await store.record_reading(staff, seed.pump1.pump_id, "15-01-2024", "opening", 1000)

        assert exc_info.value.message == "Invalid date format. Use YYYY-MM-DD"

    async def test_unknown_pump(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(NotFoundError):
            await store.record_reading(staff, uuid4(), BUSINESS_DATE, "opening", 1000)

    async def test_inactive_pump_rejected(self, session, seed, staff):
        pump = await session.get(PumpConfiguration, seed.pump1.pump_id)
        pump.status = PumpStatus.MAINTENANCE.value
        pump.is_active = False
        await session.flush()
        store = ReadingStore(session)

        with pytest.raises(ConflictError) as exc_info:
            await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)

        assert exc_info.value.details["reason"] == "pump_not_active"

    async def test_station_mismatch(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError) as exc_info:
            await store.record_reading(
                staff,
                seed.other_pump.pump_id,
                BUSINESS_DATE,
                "opening",
                1000,
                station_id=seed.station_id,
            )

        assert exc_info.value.details["reason"] == "station_mismatch"

    async def test_director_cannot_record(self, session, seed, director):
        """Directors oversee but never enter meter data."""
        store = ReadingStore(session)

        with pytest.raises(ForbiddenError):
            await store.record_reading(director, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)

    async def test_estimated_reading_requires_method(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError):
            await store.record_reading(
                staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000, is_estimated=True
            )
        with pytest.raises(ValidationError):
            await store.record_reading(
                staff,
                seed.pump1.pump_id,
                BUSINESS_DATE,
                "opening",
                1000,
                estimation_method="manual",
            )


class TestEstimateReplacement:
    """Measured readings supersede estimates for the same key."""

    async def test_measured_replaces_estimate(self, session, seed, staff, manager, add_history):
        store = ReadingStore(session)
        estimate = await store.record_reading(
            manager,
            seed.pump1.pump_id,
            BUSINESS_DATE,
            "closing",
            1450,
            is_estimated=True,
            estimation_method="manual",
        )
        (calc,) = await add_history(
            session, seed.pump1, ["450"], manager.user_id, before=BUSINESS_DATE + timedelta(days=1)
        )
        assert calc.calculation_date == BUSINESS_DATE

        reading = await store.record_reading(
            staff, seed.pump1.pump_id, BUSINESS_DATE, "closing", 1500
        )

        assert reading.reading_id == estimate.reading_id
        assert reading.meter_value == Decimal("1500.0")
        assert reading.is_estimated is False
        assert reading.estimation_method is None
        assert reading.original_value == Decimal("1450.0")
        assert reading.recorded_by == staff.user_id

        await session.refresh(calc)
        assert calc.is_stale is True

        await session.flush()
        actions = (
            await session.execute(
                select(AuditEventRecord.action).where(
                    AuditEventRecord.entity_id == reading.reading_id
                )
            )
        ).scalars().all()
        assert sorted(actions) == ["reading.estimate_replaced", "reading.recorded"]

    async def test_estimate_over_estimate_is_duplicate(self, session, seed, manager):
        store = ReadingStore(session)
        await store.record_reading(
            manager,
            seed.pump1.pump_id,
            BUSINESS_DATE,
            "closing",
            1450,
            is_estimated=True,
            estimation_method="manual",
        )

        with pytest.raises(DuplicateReadingError):
            await store.record_reading(
                manager,
                seed.pump1.pump_id,
                BUSINESS_DATE,
                "closing",
                1460,
                is_estimated=True,
                estimation_method="manual",
            )

    async def test_estimate_over_measured_is_duplicate(self, session, seed, staff, manager):
        store = ReadingStore(session)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "closing", 1500)

        with pytest.raises(DuplicateReadingError):
            await store.record_reading(
                manager,
                seed.pump1.pump_id,
                BUSINESS_DATE,
                "closing",
                1460,
                is_estimated=True,
                estimation_method="manual",
            )


class TestBulkReadings:
    """Bulk submission reports each entry independently."""

    async def test_partial_success(self, session, seed, staff):
        store = ReadingStore(session)
        await store.record_reading(staff, seed.pump2.pump_id, BUSINESS_DATE, "opening", 2000)

        result = await store.record_bulk_readings(
            staff,
            seed.station_id,
            "2024-01-15",
            "opening",
            [
                {"pump_id": str(seed.pump1.pump_id), "meter_value": "1000.0"},
                {"pump_id": str(seed.pump2.pump_id), "meter_value": "2100.0"},
                {"pump_id": str(seed.other_pump.pump_id), "meter_value": "10.0"},
                {"pump_id": str(uuid4()), "meter_value": "-5"},
            ],
        )

        assert [o.status for o in result.outcomes] == ["recorded", "failed", "failed", "failed"]
        assert result.recorded_count == 1
        assert result.failed_count == 3
        assert result.outcomes[1].error_kind == "conflict"
        assert result.outcomes[1].details["reason"] == "duplicate_reading"
        assert result.outcomes[2].error_kind == "validation"
        assert result.outcomes[3].error_kind == "validation"

        # The successful entry survives its failed siblings
        stored = await store.find_reading(seed.pump1.pump_id, BUSINESS_DATE, ReadingType.OPENING)
        assert stored is not None
        assert stored.meter_value == Decimal("1000.0")

    async def test_duplicate_pump_rejects_batch(self, session, seed, staff):
        store = ReadingStore(session)
        pump_id = str(seed.pump1.pump_id)

        with pytest.raises(ValidationError):
            await store.record_bulk_readings(
                staff,
                seed.station_id,
                BUSINESS_DATE,
                "opening",
                [
                    {"pump_id": pump_id, "meter_value": 1000},
                    {"pump_id": pump_id, "meter_value": 1001},
                ],
            )

        assert await store.find_reading(seed.pump1.pump_id, BUSINESS_DATE, ReadingType.OPENING) is None

    async def test_empty_batch_rejected(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(ValidationError):
            await store.record_bulk_readings(staff, seed.station_id, BUSINESS_DATE, "opening", [])

    async def test_unknown_station(self, session, seed, staff):
        store = ReadingStore(session)

        with pytest.raises(NotFoundError):
            await store.record_bulk_readings(
                staff,
                uuid4(),
                BUSINESS_DATE,
                "opening",
                [{"pump_id": str(seed.pump1.pump_id), "meter_value": 1}],
            )


class TestQueries:
    """Range queries and daily status."""

    async def test_readings_ordered_opening_before_closing(self, session, seed, staff):
        store = ReadingStore(session)
        next_day = BUSINESS_DATE + timedelta(days=1)
        # Inserted out of order on purpose
        await store.record_reading(staff, seed.pump2.pump_id, BUSINESS_DATE, "closing", 2500)
        await store.record_reading(staff, seed.pump1.pump_id, next_day, "opening", 1500)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "closing", 1500)
        await store.record_reading(staff, seed.pump2.pump_id, BUSINESS_DATE, "opening", 2000)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)

        page = await store.get_readings(seed.station_id, BUSINESS_DATE, next_day)

        assert [(r.reading_date, number, r.reading_type) for r, number in page.items] == [
            (BUSINESS_DATE, "P1", "opening"),
            (BUSINESS_DATE, "P1", "closing"),
            (BUSINESS_DATE, "P2", "opening"),
            (BUSINESS_DATE, "P2", "closing"),
            (next_day, "P1", "opening"),
        ]
        assert page.has_more is False

    async def test_pagination_and_pump_filter(self, session, seed, staff):
        store = ReadingStore(session)
        for offset in range(3):
            on = BUSINESS_DATE + timedelta(days=offset)
            await store.record_reading(staff, seed.pump1.pump_id, on, "opening", 1000 + offset)
            await store.record_reading(staff, seed.pump2.pump_id, on, "opening", 2000 + offset)

        first = await store.get_readings(
            seed.station_id,
            BUSINESS_DATE,
            BUSINESS_DATE + timedelta(days=2),
            pump_id=seed.pump1.pump_id,
            page=1,
            page_size=2,
        )
        assert first.total == 3
        assert first.has_more is True
        assert len(first.items) == 2

        walked = [
            r.meter_value
            async for r, _ in store.iter_readings(
                seed.station_id, BUSINESS_DATE, BUSINESS_DATE + timedelta(days=2), page_size=4
            )
        ]
        assert len(walked) == 6

    async def test_inverted_range_rejected(self, session, seed):
        store = ReadingStore(session)

        with pytest.raises(ValidationError):
            await store.get_readings(seed.station_id, "2024-01-20", "2024-01-10")

    async def test_page_size_limit(self, session, seed):
        store = ReadingStore(session)

        with pytest.raises(ValidationError):
            await store.get_readings(seed.station_id, BUSINESS_DATE, BUSINESS_DATE, page_size=501)

    async def test_daily_status(self, session, seed, staff):
        store = ReadingStore(session)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)
        await store.record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "closing", 1500)
        await store.record_reading(staff, seed.pump2.pump_id, BUSINESS_DATE, "opening", 2000)

        statuses = await store.get_daily_reading_status(seed.station_id, "2024-01-15")

        assert [(s.pump_number, s.is_complete) for s in statuses] == [("P1", True), ("P2", False)]
        p2 = statuses[1].to_dict()
        assert p2["opening"]["recorded"] is True
        assert p2["closing"] == {
            "recorded": False,
            "meter_value": None,
            "recorded_at": None,
            "is_estimated": None,
        }

    async def test_daily_status_unknown_station(self, session, seed):
        store = ReadingStore(session)

        with pytest.raises(NotFoundError):
            await store.get_daily_reading_status(uuid4(), BUSINESS_DATE)


async def test_readings_persist_across_sessions(session_factory, seed, staff):
    """Committed readings are visible to a new session."""
    async with session_factory() as s:
        await ReadingStore(s).record_reading(staff, seed.pump1.pump_id, BUSINESS_DATE, "opening", 1000)
        await s.commit()

    async with session_factory() as s:
        rows = (await s.execute(select(MeterReading))).scalars().all()
        assert len(rows) == 1
        assert (await s.execute(select(PmsCalculation))).first() is None
