"""Input parsing shared by the services.

Every parser raises ValidationError naming the offending field.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from pms_engine.calculators.rollover import quantize_volume
from pms_engine.models.enums import EstimationMethod, PumpStatus, ReadingType
from pms_engine.services.errors import ValidationError

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Largest value a Numeric(12, 1) column holds
MAX_METER_VALUE = Decimal("99999999999.9")


def parse_date(value: Any, field: str = "date") -> date:
    """Accept a date or a strict YYYY-MM-DD string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DATE.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError("Invalid date format. Use YYYY-MM-DD", field=field, value=str(value))


def parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid identifier for {field}", field=field, value=str(value))


def parse_reading_type(value: Any, field: str = "reading_type") -> ReadingType:
    try:
        return ReadingType(value)
    except ValueError:
        raise ValidationError(
            "Reading type must be 'opening' or 'closing'", field=field, value=str(value)
        )


def parse_pump_status(value: Any, field: str = "status") -> PumpStatus:
    try:
        return PumpStatus(value)
    except ValueError:
        raise ValidationError(
            f"Status must be one of: {', '.join(s.value for s in PumpStatus)}",
            field=field,
            value=str(value),
        )


def parse_estimation_method(value: Any, field: str = "estimation_method") -> EstimationMethod:
    try:
        return EstimationMethod(value)
    except ValueError:
        raise ValidationError(
            f"Estimation method must be one of: {', '.join(m.value for m in EstimationMethod)}",
            field=field,
            value=str(value),
        )


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a finite number. Booleans and non-numeric strings are rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field, value=str(value))
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field, value=str(value))
    return number


def validate_meter_value(
    value: Any,
    capacity: Decimal | None = None,
    field: str = "meter_value",
) -> Decimal:
    """Parse a meter value: finite, non-negative, and not above the meter capacity."""
    number = parse_decimal(value, field)
    if number < 0:
        raise ValidationError("Meter value must be non-negative", field=field, value=str(value))
    if number > MAX_METER_VALUE:
        raise ValidationError(
            f"Meter value cannot exceed {MAX_METER_VALUE}", field=field, value=str(value)
        )
    number = quantize_volume(number)
    if capacity is not None and number > capacity:
        raise ValidationError(
            f"Meter value cannot exceed meter capacity of {capacity}",
            field=field,
            value=str(value),
            meter_capacity=str(capacity),
        )
    return number


def validate_capacity(value: Any, field: str = "meter_capacity") -> Decimal:
    number = parse_decimal(value, field)
    if number > MAX_METER_VALUE:
        raise ValidationError(
            f"Meter capacity cannot exceed {MAX_METER_VALUE}", field=field, value=str(value)
        )
    if number <= 0 or quantize_volume(number) <= 0:
        raise ValidationError("Meter capacity must be positive", field=field, value=str(value))
    return quantize_volume(number)


def require_text(value: Any, field: str) -> str:
    """Non-empty, stripped string."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()
