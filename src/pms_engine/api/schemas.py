"""Pydantic schemas for API request/response models."""

from datetime import date
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Envelope
# ============================================================================


class OperationResponse(BaseModel):
    """Uniform response body for every PMS endpoint."""

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: Literal["validation", "not_found", "conflict", "forbidden", "internal"] | None = None
    details: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Pump configuration schemas
# ============================================================================


class PumpConfigurationCreate(BaseModel):
    """Schema for registering a pump."""

    station_id: UUID
    pms_product_id: UUID
    pump_number: str
    meter_capacity: Decimal
    install_date: date


class PumpConfigurationUpdate(BaseModel):
    """Schema for updating pump attributes. Omitted fields are unchanged."""

    pump_number: str | None = None
    meter_capacity: Decimal | None = None
    last_calibration_date: date | None = None


class PumpStatusUpdate(BaseModel):
    status: Literal["active", "maintenance", "calibration", "repair"]
    notes: str | None = None


# ============================================================================
# Meter reading schemas
# ============================================================================


class MeterReadingCreate(BaseModel):
    """Schema for recording one meter reading."""

    pump_id: UUID
    reading_date: date
    reading_type: Literal["opening", "closing"]
    meter_value: Decimal
    notes: str | None = None
    is_estimated: bool = False
    estimation_method: Literal["transaction_based", "historical_average", "manual"] | None = None
    station_id: UUID | None = None


class BulkReadingEntry(BaseModel):
    pump_id: UUID
    meter_value: Decimal
    notes: str | None = None


class BulkReadingsCreate(BaseModel):
    """Schema for recording one reading type for many pumps at once."""

    station_id: UUID
    reading_date: date
    reading_type: Literal["opening", "closing"]
    readings: list[BulkReadingEntry]


class ManagerOverrideBody(BaseModel):
    is_manager: bool
    manager_id: UUID
    reason: str


class MeterReadingUpdate(BaseModel):
    """Schema for correcting a meter reading."""

    meter_value: Decimal
    notes: str | None = None
    manager_override: ManagerOverrideBody | None = None


# ============================================================================
# PMS calculation schemas
# ============================================================================


class CalculationRequest(BaseModel):
    station_id: UUID
    calculation_date: date
    force_recalculate: bool = False


class RolloverConfirmation(BaseModel):
    """Schema for settling an ambiguous meter rollover."""

    pump_id: UUID
    calculation_date: date
    rollover_value: Decimal
    new_reading: Decimal
    notes: str | None = None


class ApprovalRequest(BaseModel):
    """Schema for approving or rejecting an estimated calculation."""

    approved: bool
    notes: str | None = None
