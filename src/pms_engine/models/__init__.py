"""ORM models for the PMS engine."""

from pms_engine.models.audit import AuditEventRecord
from pms_engine.models.base import Base, TimestampMixin, utcnow
from pms_engine.models.calculation import PmsCalculation, PmsSalesRecord
from pms_engine.models.enums import (
    ApprovalState,
    CalculationMethod,
    CorrectionState,
    EstimationMethod,
    ProductType,
    PumpStatus,
    ReadingType,
)
from pms_engine.models.pump import PumpConfiguration, PumpStatusChange
from pms_engine.models.reading import MeterReading, PumpSaleTransaction
from pms_engine.models.station import AppUser, Product, Station

__all__ = [
    "AppUser",
    "ApprovalState",
    "AuditEventRecord",
    "Base",
    "CalculationMethod",
    "CorrectionState",
    "EstimationMethod",
    "MeterReading",
    "PmsCalculation",
    "PmsSalesRecord",
    "Product",
    "ProductType",
    "PumpConfiguration",
    "PumpSaleTransaction",
    "PumpStatus",
    "PumpStatusChange",
    "ReadingType",
    "Station",
    "TimestampMixin",
    "utcnow",
]
