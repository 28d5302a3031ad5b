"""Tests for input parsing."""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from pms_engine.models import ReadingType
from pms_engine.services.errors import ErrorKind, ValidationError
from pms_engine.services.validation import (
    MAX_METER_VALUE,
    parse_date,
    parse_decimal,
    parse_reading_type,
    parse_uuid,
    require_text,
    validate_capacity,
    validate_meter_value,
)


class TestParseDate:
    """Dates are strict YYYY-MM-DD."""

    def test_accepts_iso_string(self):
        assert parse_date("2024-01-15") == date(2024, 1, 15)

    def test_accepts_date_and_datetime(self):
        assert parse_date(date(2024, 1, 15)) == date(2024, 1, 15)
        assert parse_date(datetime(2024, 1, 15, 23, 59)) == date(2024, 1, 15)

    @pytest.mark.parametrize("value", ["15/01/2024", "2024-1-5", "2024-02-30", "", None, 20240115])
    def test_rejects_other_formats(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_date(value, "reading_date")

        assert exc_info.value.message == "Invalid date format. Use YYYY-MM-DD"
        assert exc_info.value.details["field"] == "reading_date"


class TestMeterValues:
    """Meter values are non-negative and bounded by capacity."""

    def test_negative_value_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_meter_value(-1)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.details["field"] == "meter_value"

    def test_above_capacity_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_meter_value("1000.1", Decimal("1000"))

        assert "capacity" in exc_info.value.message

    def test_capacity_itself_allowed(self):
        assert validate_meter_value("1000", Decimal("1000")) == Decimal("1000.0")

    def test_float_input_is_quantized(self):
        assert validate_meter_value(1500.55) == Decimal("1500.6")

    @pytest.mark.parametrize("value", [True, None, "abc", "NaN", "Infinity", [1]])
    def test_non_numbers_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_decimal(value, "meter_value")

    def test_zero_capacity_rejected(self):
        with pytest.raises(ValidationError):
            validate_capacity(0)

    def test_capacity_accepted(self):
        assert validate_capacity("999999.9") == Decimal("999999.9")

    @pytest.mark.parametrize("value", ["1e30", 1e30, "100000000000.0"])
    def test_oversized_value_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_meter_value(value)

        assert exc_info.value.details["field"] == "meter_value"

    def test_largest_storable_value_allowed(self):
        assert validate_meter_value("99999999999.9") == MAX_METER_VALUE

    @pytest.mark.parametrize("value", ["1e40", "-1e40", 1e12])
    def test_oversized_capacity_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_capacity(value)

        assert exc_info.value.details["field"] == "meter_capacity"


class TestIdentifiersAndEnums:
    def test_uuid(self):
        value = uuid4()
        assert parse_uuid(value, "pump_id") is value
        assert parse_uuid(str(value), "pump_id") == value

        with pytest.raises(ValidationError) as exc_info:
            parse_uuid("not-a-uuid", "pump_id")
        assert exc_info.value.details["field"] == "pump_id"

    def test_reading_type(self):
        assert parse_reading_type("closing") is ReadingType.CLOSING
        with pytest.raises(ValidationError):
            parse_reading_type("midday")

    def test_require_text(self):
        assert require_text("  P1 ", "pump_number") == "P1"
        with pytest.raises(ValidationError):
            require_text("   ", "pump_number")
