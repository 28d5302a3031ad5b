"""Pump configuration API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from pms_engine.api.dependencies import ActorId, Engine, to_response
from pms_engine.api.schemas import (
    OperationResponse,
    PumpConfigurationCreate,
    PumpConfigurationUpdate,
    PumpStatusUpdate,
)

router = APIRouter(prefix="/pump-configurations", tags=["pump-configurations"])


@router.get("", response_model=OperationResponse)
async def list_pump_configurations(
    engine: Engine,
    actor_id: ActorId,
    station_id: Annotated[UUID, Query()],
    active_only: Annotated[bool, Query()] = False,
) -> JSONResponse:
    """List a station's pumps ordered by pump number."""
    result = await engine.get_pump_configurations(actor_id, station_id, active_only=active_only)
    return to_response(result)


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
async def create_pump_configuration(
    engine: Engine,
    actor_id: ActorId,
    payload: PumpConfigurationCreate,
) -> JSONResponse:
    """Register a pump (manager only)."""
    result = await engine.create_pump_configuration(
        actor_id,
        payload.station_id,
        payload.pms_product_id,
        payload.pump_number,
        payload.meter_capacity,
        payload.install_date,
    )
    return to_response(result, status.HTTP_201_CREATED)


@router.get("/{pump_id}", response_model=OperationResponse)
async def get_pump_configuration(engine: Engine, actor_id: ActorId, pump_id: UUID) -> JSONResponse:
    return to_response(await engine.get_pump_configuration(actor_id, pump_id))


@router.patch("/{pump_id}", response_model=OperationResponse)
async def update_pump_configuration(
    engine: Engine,
    actor_id: ActorId,
    pump_id: UUID,
    payload: PumpConfigurationUpdate,
) -> JSONResponse:
    """Update pump number, capacity, or calibration date (manager only)."""
    result = await engine.update_pump_configuration(
        actor_id,
        pump_id,
        pump_number=payload.pump_number,
        meter_capacity=payload.meter_capacity,
        last_calibration_date=payload.last_calibration_date,
    )
    return to_response(result)


@router.patch("/{pump_id}/status", response_model=OperationResponse)
async def update_pump_status(
    engine: Engine,
    actor_id: ActorId,
    pump_id: UUID,
    payload: PumpStatusUpdate,
) -> JSONResponse:
    """Move a pump through its status lifecycle (manager only)."""
    result = await engine.update_pump_status(actor_id, pump_id, payload.status, payload.notes)
    return to_response(result)


@router.get("/{pump_id}/status-history", response_model=OperationResponse)
async def get_pump_status_history(engine: Engine, actor_id: ActorId, pump_id: UUID) -> JSONResponse:
    return to_response(await engine.get_pump_status_history(actor_id, pump_id))


@router.delete("/{pump_id}", response_model=OperationResponse)
async def deactivate_pump(engine: Engine, actor_id: ActorId, pump_id: UUID) -> JSONResponse:
    """Soft delete a pump (manager only)."""
    return to_response(await engine.deactivate_pump(actor_id, pump_id))
