"""PMS calculation API endpoints."""

from datetime import date
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from pms_engine.api.dependencies import ActorId, Engine, to_response
from pms_engine.api.schemas import (
    ApprovalRequest,
    CalculationRequest,
    OperationResponse,
    RolloverConfirmation,
)

router = APIRouter(prefix="/pms-calculations", tags=["pms-calculations"])


@router.get("", response_model=OperationResponse)
async def list_pms_calculations(
    engine: Engine,
    actor_id: ActorId,
    station_id: Annotated[UUID, Query()],
    start_date: Annotated[date, Query()],
    end_date: Annotated[date, Query()],
) -> JSONResponse:
    return to_response(
        await engine.get_pms_calculations(actor_id, station_id, start_date, end_date)
    )


@router.post("", response_model=OperationResponse)
async def calculate_pms(
    engine: Engine,
    actor_id: ActorId,
    payload: CalculationRequest,
) -> JSONResponse:
    """Reconcile every active pump at a station for one date."""
    result = await engine.calculate_pms_for_date(
        actor_id,
        payload.station_id,
        payload.calculation_date,
        force_recalculate=payload.force_recalculate,
    )
    return to_response(result)


@router.get("/deviations", response_model=OperationResponse)
async def calculations_with_deviations(
    engine: Engine,
    actor_id: ActorId,
    station_id: Annotated[UUID, Query()],
    threshold_percent: Annotated[Decimal | None, Query(ge=0)] = None,
    days: Annotated[int | None, Query(ge=1)] = None,
) -> JSONResponse:
    """Calculations whose volume strays from the pump's trailing average."""
    result = await engine.get_calculations_with_deviations(
        actor_id, station_id, threshold_percent=threshold_percent, days=days
    )
    return to_response(result)


@router.post("/rollover", response_model=OperationResponse)
async def confirm_rollover(
    engine: Engine,
    actor_id: ActorId,
    payload: RolloverConfirmation,
) -> JSONResponse:
    """Settle an ambiguous meter wrap (manager only)."""
    result = await engine.confirm_rollover(
        actor_id,
        payload.pump_id,
        payload.calculation_date,
        payload.rollover_value,
        payload.new_reading,
        notes=payload.notes,
    )
    return to_response(result)


@router.post("/{calculation_id}/approve", response_model=OperationResponse)
async def approve_estimated_calculation(
    engine: Engine,
    actor_id: ActorId,
    calculation_id: UUID,
    payload: ApprovalRequest,
) -> JSONResponse:
    """Approve or reject a calculation built from estimated readings (manager only)."""
    result = await engine.approve_estimated_calculation(
        actor_id, calculation_id, payload.approved, notes=payload.notes
    )
    return to_response(result)
