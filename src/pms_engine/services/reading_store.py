"""Meter reading store: single and bulk recording, range queries, daily status."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping, Sequence
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.config import ReconciliationConfig
from pms_engine.models import (
    EstimationMethod,
    MeterReading,
    PmsCalculation,
    PumpConfiguration,
    ReadingType,
    Station,
    utcnow,
)
from pms_engine.services.actors import Actor, Capability
from pms_engine.services.audit import AuditEvent, AuditRecorder
from pms_engine.services.errors import (
    ConflictError,
    DuplicateReadingError,
    NotFoundError,
    PmsError,
    ValidationError,
)
from pms_engine.services.validation import (
    parse_date,
    parse_estimation_method,
    parse_reading_type,
    parse_uuid,
    validate_meter_value,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500

# Opening sorts before closing regardless of collation
READING_TYPE_ORDER = case((MeterReading.reading_type == ReadingType.OPENING.value, 0), else_=1)


def reading_snapshot(reading: MeterReading) -> dict[str, Any]:
    return {
        "meter_value": reading.meter_value,
        "is_estimated": reading.is_estimated,
        "estimation_method": reading.estimation_method,
        "correction_state": reading.correction_state,
        "notes": reading.notes,
    }


def reading_to_dict(reading: MeterReading, pump_number: str | None = None) -> dict[str, Any]:
    data = reading.to_dict()
    if pump_number is not None:
        data["pump_number"] = pump_number
    return data


async def mark_calculation_stale(session: AsyncSession, pump_id: UUID, on: date) -> bool:
    """Flag the (pump, date) calculation for recomputation. Returns True if one existed."""
    result = await session.execute(
        update(PmsCalculation)
        .where(PmsCalculation.pump_id == pump_id, PmsCalculation.calculation_date == on)
        .values(is_stale=True, updated_at=utcnow())
    )
    return bool(result.rowcount)


@dataclass
class BulkItemOutcome:
    """Result of one entry in a bulk submission."""

    index: int
    pump_id: str | None
    status: str  # recorded | failed
    reading: MeterReading | None = None
    error: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "pump_id": self.pump_id,
            "status": self.status,
            "reading": reading_to_dict(self.reading) if self.reading is not None else None,
            "error": self.error,
            "error_kind": self.error_kind,
            "details": self.details,
        }


@dataclass
class BulkResult:
    """Per-entry outcomes of a bulk submission, in submission order."""

    reading_date: date
    reading_type: ReadingType
    outcomes: list[BulkItemOutcome] = field(default_factory=list)

    @property
    def recorded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "recorded")

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.recorded_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "reading_date": self.reading_date,
            "reading_type": self.reading_type.value,
            "recorded_count": self.recorded_count,
            "failed_count": self.failed_count,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class ReadingsPage:
    items: list[tuple[MeterReading, str]]
    page: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [reading_to_dict(r, number) for r, number in self.items],
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "has_more": self.has_more,
        }


@dataclass
class PumpReadingStatus:
    """Opening/closing presence for one active pump on one date."""

    pump_id: UUID
    pump_number: str
    opening: MeterReading | None = None
    closing: MeterReading | None = None

    @property
    def is_complete(self) -> bool:
        return self.opening is not None and self.closing is not None

    @staticmethod
    def _slot(reading: MeterReading | None) -> dict[str, Any]:
        if reading is None:
            return {"recorded": False, "meter_value": None, "recorded_at": None, "is_estimated": None}
        return {
            "recorded": True,
            "reading_id": reading.reading_id,
            "meter_value": reading.meter_value,
            "recorded_at": reading.recorded_at,
            "is_estimated": reading.is_estimated,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "pump_id": self.pump_id,
            "pump_number": self.pump_number,
            "opening": self._slot(self.opening),
            "closing": self._slot(self.closing),
            "is_complete": self.is_complete,
        }


class ReadingStore:
    """Service for meter readings.

    A (pump, date, type) key holds at most one reading. A measured reading
    is never overwritten by a new submission; an estimated one is replaced
    by the first measured submission for its key.
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

    async def get_reading(self, reading_id: UUID, for_update: bool = False) -> MeterReading:
        stmt = select(MeterReading).where(MeterReading.reading_id == reading_id)
        if for_update:
            stmt = stmt.with_for_update()
        reading = (await self.session.execute(stmt)).scalar_one_or_none()
        if reading is None:
            raise NotFoundError("meter_reading", reading_id)
        return reading

    async def find_reading(
        self,
        pump_id: UUID,
        reading_date: date,
        reading_type: ReadingType,
        for_update: bool = False,
    ) -> MeterReading | None:
        stmt = select(MeterReading).where(
            MeterReading.pump_id == pump_id,
            MeterReading.reading_date == reading_date,
            MeterReading.reading_type == reading_type.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def load_reading_pump(
        self, pump_id: UUID, station_id: UUID | None = None
    ) -> PumpConfiguration:
        """Load a pump that may accept readings, optionally checking its station."""
        pump = await self.session.get(PumpConfiguration, pump_id)
        if pump is None:
            raise NotFoundError("pump", pump_id)
        if station_id is not None and pump.station_id != station_id:
            raise ValidationError(
                "Pump does not belong to this station",
                field="pump_id",
                reason="station_mismatch",
            )
        if not pump.accepts_readings:
            raise ConflictError(
                "Pump not found or not active",
                reason="pump_not_active",
                status=pump.status,
                is_active=pump.is_active,
            )
        return pump

    async def record_reading(
        self,
        actor: Actor,
        pump_id: Any,
        reading_date: Any,
        reading_type: Any,
        meter_value: Any,
        notes: str | None = None,
        is_estimated: bool = False,
        estimation_method: Any = None,
        station_id: UUID | None = None,
    ) -> MeterReading:
        """Record one reading.

        Raises DuplicateReadingError when the key already holds a measured
        reading (or an estimate is submitted over an estimate).
        """
        actor.require(Capability.RECORD_READINGS)

        pump_uuid = parse_uuid(pump_id, "pump_id")
        on = parse_date(reading_date, "reading_date")
        slot = parse_reading_type(reading_type)
        method: EstimationMethod | None = None
        if is_estimated:
            if estimation_method is None:
                raise ValidationError(
                    "Estimated readings must specify an estimation method",
                    field="estimation_method",
                )
            method = parse_estimation_method(estimation_method)
        elif estimation_method is not None:
            raise ValidationError(
                "Estimation method is only allowed for estimated readings",
                field="estimation_method",
            )
        # Range errors are reported before existence errors
        validate_meter_value(meter_value)

        pump = await self.load_reading_pump(pump_uuid, station_id)
        value = validate_meter_value(meter_value, Decimal(pump.meter_capacity))

        try:
            async with self.session.begin_nested():
                existing = await self.find_reading(pump.pump_id, on, slot, for_update=True)
                if existing is not None:
                    if not existing.is_estimated or is_estimated:
                        raise DuplicateReadingError(existing.reading_id)
                    before = reading_snapshot(existing)
                    self._replace_estimate(existing, actor, value, notes)
                    await self.session.flush()
                    reading, action = existing, "reading.estimate_replaced"
                else:
                    before = None
                    reading = MeterReading(
                        pump_id=pump.pump_id,
                        reading_date=on,
                        reading_type=slot.value,
                        meter_value=value,
                        recorded_by=actor.user_id,
                        recorded_at=utcnow(),
                        is_estimated=bool(is_estimated),
                        estimation_method=method.value if method else None,
                        notes=notes,
                    )
                    self.session.add(reading)
                    await self.session.flush()
                    action = "reading.recorded"
        except IntegrityError:
            # Lost a same-key race to a concurrent submission
            raise DuplicateReadingError()

        if action == "reading.estimate_replaced":
            await mark_calculation_stale(self.session, pump.pump_id, on)
            logger.info(
                "Measured %s reading replaced estimate for pump %s on %s",
                slot.value,
                pump.pump_number,
                on,
            )

        await self.audit.record(
            AuditEvent(
                action=action,
                entity_type="meter_reading",
                entity_id=reading.reading_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                before=before,
                after=reading_snapshot(reading),
            )
        )
        return reading

    def _replace_estimate(
        self, reading: MeterReading, actor: Actor, value: Decimal, notes: str | None
    ) -> None:
        now = utcnow()
        if reading.original_value is None:
            reading.original_value = reading.meter_value
        reading.meter_value = value
        reading.is_estimated = False
        reading.estimation_method = None
        reading.is_modified = True
        reading.modified_by = actor.user_id
        reading.modified_at = now
        reading.recorded_by = actor.user_id
        reading.recorded_at = now
        if notes is not None:
            reading.notes = notes

    async def store_estimate(
        self,
        actor: Actor,
        pump: PumpConfiguration,
        reading_date: date,
        reading_type: ReadingType,
        value: Decimal,
        method: EstimationMethod,
        notes: str | None = None,
    ) -> MeterReading:
        """Persist a resolver-produced estimate for an empty slot.

        Called by reconciliation inside its per-pump savepoint.
        """
        reading = MeterReading(
            pump_id=pump.pump_id,
            reading_date=reading_date,
            reading_type=reading_type.value,
            meter_value=value,
            recorded_by=actor.user_id,
            recorded_at=utcnow(),
            is_estimated=True,
            estimation_method=method.value,
            notes=notes,
        )
        self.session.add(reading)
        await self.session.flush()

        await self.audit.record(
            AuditEvent(
                action="reading.estimated",
                entity_type="meter_reading",
                entity_id=reading.reading_id,
                actor_user_id=actor.user_id,
                station_id=pump.station_id,
                after=reading_snapshot(reading),
            )
        )
        return reading

    async def record_bulk_readings(
        self,
        actor: Actor,
        station_id: Any,
        reading_date: Any,
        reading_type: Any,
        readings: Sequence[Mapping[str, Any]],
    ) -> BulkResult:
        """Record many readings for one station, date and type.

        Entries are independent: each runs in its own savepoint and gets its
        own outcome. Problems with the batch itself reject every entry.
        """
        actor.require(Capability.RECORD_READINGS)

        station_uuid = parse_uuid(station_id, "station_id")
        on = parse_date(reading_date, "reading_date")
        slot = parse_reading_type(reading_type)
        if not readings:
            raise ValidationError("At least one reading is required", field="readings")
        if await self.session.get(Station, station_uuid) is None:
            raise NotFoundError("station", station_uuid)

        seen: set[str] = set()
        for entry in readings:
            raw = entry.get("pump_id") if isinstance(entry, Mapping) else None
            if raw is None:
                continue
            key = str(raw)
            if key in seen:
                raise ValidationError(
                    "Each pump may appear only once per batch",
                    field="readings",
                    pump_id=key,
                )
            seen.add(key)

        result = BulkResult(reading_date=on, reading_type=slot)
        for index, entry in enumerate(readings):
            raw_pump_id = entry.get("pump_id") if isinstance(entry, Mapping) else None
            outcome = BulkItemOutcome(
                index=index,
                pump_id=str(raw_pump_id) if raw_pump_id is not None else None,
                status="recorded",
            )
            try:
                if not isinstance(entry, Mapping) or raw_pump_id is None:
                    raise ValidationError("Each reading needs a pump_id", field="pump_id")
                outcome.reading = await self.record_reading(
                    actor,
                    raw_pump_id,
                    on,
                    slot,
                    entry.get("meter_value"),
                    notes=entry.get("notes"),
                    station_id=station_uuid,
                )
            except PmsError as e:
                outcome.status = "failed"
                outcome.error = e.message
                outcome.error_kind = e.kind.value
                outcome.details = dict(e.details)
            result.outcomes.append(outcome)

        logger.info(
            "Bulk %s readings for %s: %d recorded, %d failed",
            slot.value,
            on,
            result.recorded_count,
            result.failed_count,
        )
        return result

    def _range_query(
        self,
        station_id: UUID,
        start: date,
        end: date,
        pump_id: UUID | None,
    ):
        stmt = (
            select(MeterReading, PumpConfiguration.pump_number)
            .join(PumpConfiguration, PumpConfiguration.pump_id == MeterReading.pump_id)
            .where(
                PumpConfiguration.station_id == station_id,
                MeterReading.reading_date >= start,
                MeterReading.reading_date <= end,
            )
        )
        if pump_id is not None:
            stmt = stmt.where(MeterReading.pump_id == pump_id)
        return stmt

    @staticmethod
    def _parse_range(start_date: Any, end_date: Any) -> tuple[date, date]:
        start = parse_date(start_date, "start_date")
        end = parse_date(end_date, "end_date")
        if start > end:
            raise ValidationError("start_date must not be after end_date", field="start_date")
        return start, end

    async def get_readings(
        self,
        station_id: Any,
        start_date: Any,
        end_date: Any,
        pump_id: Any = None,
        page: int = 1,
        page_size: int = 100,
    ) -> ReadingsPage:
        """One page of readings ordered by date, pump number, then opening before closing."""
        station_uuid = parse_uuid(station_id, "station_id")
        start, end = self._parse_range(start_date, end_date)
        pump_uuid = parse_uuid(pump_id, "pump_id") if pump_id is not None else None
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
            )

        base = self._range_query(station_uuid, start, end, pump_uuid)
        total = (
            await self.session.execute(select(func.count()).select_from(base.subquery()))
        ).scalar_one()
        rows = await self.session.execute(
            base.order_by(
                MeterReading.reading_date,
                PumpConfiguration.pump_number,
                READING_TYPE_ORDER,
            )
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        items = [(reading, number) for reading, number in rows.all()]
        return ReadingsPage(items=items, page=page, page_size=page_size, total=total)

    async def iter_readings(
        self,
        station_id: Any,
        start_date: Any,
        end_date: Any,
        pump_id: Any = None,
        page_size: int = 100,
    ) -> AsyncIterator[tuple[MeterReading, str]]:
        """Lazily walk a date range page by page."""
        page = 1
        while True:
            batch = await self.get_readings(
                station_id, start_date, end_date, pump_id, page=page, page_size=page_size
            )
            for item in batch.items:
                yield item
            if not batch.has_more:
                return
            page += 1

    async def get_daily_reading_status(
        self, station_id: Any, reading_date: Any
    ) -> list[PumpReadingStatus]:
        """Which active pumps have opening/closing readings on a date."""
        station_uuid = parse_uuid(station_id, "station_id")
        on = parse_date(reading_date, "reading_date")
        if await self.session.get(Station, station_uuid) is None:
            raise NotFoundError("station", station_uuid)

        pumps = (
            await self.session.execute(
                select(PumpConfiguration)
                .where(
                    PumpConfiguration.station_id == station_uuid,
                    PumpConfiguration.is_active.is_(True),
                )
                .order_by(PumpConfiguration.pump_number)
            )
        ).scalars().all()
        statuses = {p.pump_id: PumpReadingStatus(p.pump_id, p.pump_number) for p in pumps}
        if not statuses:
            return []

        readings = (
            await self.session.execute(
                select(MeterReading).where(
                    MeterReading.pump_id.in_(list(statuses)),
                    MeterReading.reading_date == on,
                )
            )
        ).scalars().all()
        for reading in readings:
            status = statuses[reading.pump_id]
            if reading.reading_type == ReadingType.OPENING.value:
                status.opening = reading
            else:
                status.closing = reading
        return list(statuses.values())
