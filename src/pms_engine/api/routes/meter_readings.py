"""Meter reading API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from pms_engine.api.dependencies import ActorId, Engine, to_response
from pms_engine.api.schemas import (
    BulkReadingsCreate,
    MeterReadingCreate,
    MeterReadingUpdate,
    OperationResponse,
)

router = APIRouter(prefix="/meter-readings", tags=["meter-readings"])


@router.get("", response_model=OperationResponse)
async def list_meter_readings(
    engine: Engine,
    actor_id: ActorId,
    station_id: Annotated[UUID, Query()],
    start_date: Annotated[date, Query()],
    end_date: Annotated[date, Query()],
    pump_id: Annotated[UUID | None, Query()] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=500)] = 100,
) -> JSONResponse:
    """Readings in a date range, opening before closing within each pump and day."""
    result = await engine.get_readings(
        actor_id, station_id, start_date, end_date, pump_id, page=page, page_size=page_size
    )
    return to_response(result)


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
async def record_meter_reading(
    engine: Engine,
    actor_id: ActorId,
    payload: MeterReadingCreate,
) -> JSONResponse:
    result = await engine.record_reading(
        actor_id,
        payload.pump_id,
        payload.reading_date,
        payload.reading_type,
        payload.meter_value,
        notes=payload.notes,
        is_estimated=payload.is_estimated,
        estimation_method=payload.estimation_method,
        station_id=payload.station_id,
    )
    return to_response(result, status.HTTP_201_CREATED)


@router.post("/bulk", response_model=OperationResponse)
async def record_bulk_meter_readings(
    engine: Engine,
    actor_id: ActorId,
    payload: BulkReadingsCreate,
) -> JSONResponse:
    """Record readings for many pumps; each entry reports its own outcome."""
    result = await engine.record_bulk_readings(
        actor_id,
        payload.station_id,
        payload.reading_date,
        payload.reading_type,
        [entry.model_dump() for entry in payload.readings],
    )
    return to_response(result)


@router.get("/daily-status", response_model=OperationResponse)
async def daily_reading_status(
    engine: Engine,
    actor_id: ActorId,
    station_id: Annotated[UUID, Query()],
    reading_date: Annotated[date, Query(alias="date")],
) -> JSONResponse:
    return to_response(await engine.get_daily_reading_status(actor_id, station_id, reading_date))


@router.patch("/{reading_id}", response_model=OperationResponse)
async def update_meter_reading(
    engine: Engine,
    actor_id: ActorId,
    reading_id: UUID,
    payload: MeterReadingUpdate,
) -> JSONResponse:
    """Correct a reading within its window, or later with a manager override."""
    override = payload.manager_override.model_dump() if payload.manager_override else None
    result = await engine.update_meter_reading(
        actor_id,
        reading_id,
        payload.meter_value,
        notes=payload.notes,
        override=override,
    )
    return to_response(result)
