"""Enumerations shared by models and services."""

from __future__ import annotations

from enum import Enum


class PumpStatus(str, Enum):
    """Operational status of a pump."""

    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    CALIBRATION = "calibration"
    REPAIR = "repair"


class ReadingType(str, Enum):
    """Which end of the business day a meter reading belongs to."""

    OPENING = "opening"
    CLOSING = "closing"

    @property
    def counterpart(self) -> ReadingType:
        return ReadingType.CLOSING if self is ReadingType.OPENING else ReadingType.OPENING


class EstimationMethod(str, Enum):
    """How an estimated reading was derived."""

    TRANSACTION_BASED = "transaction_based"
    HISTORICAL_AVERAGE = "historical_average"
    MANUAL = "manual"


class CorrectionState(str, Enum):
    """Correction lifecycle of a meter reading."""

    RECORDED = "recorded"
    CORRECTED = "corrected"
    CORRECTED_WITH_OVERRIDE = "corrected_with_override"


class ApprovalState(str, Enum):
    """Approval state of a PMS calculation."""

    AUTO_APPROVED = "auto_approved"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class CalculationMethod(str, Enum):
    """Provenance of a calculation's volume."""

    METER_READINGS = "meter_readings"
    ESTIMATED = "estimated"
    MANUAL_OVERRIDE = "manual_override"


class ProductType(str, Enum):
    """Fuel and shop product categories."""

    PMS = "pms"
    AGO = "ago"
    DPK = "dpk"
    LUBRICANT = "lubricant"
    OTHER = "other"


def sql_in(enum_cls: type[Enum]) -> str:
    """Render enum values for a CHECK ... IN (...) constraint."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
