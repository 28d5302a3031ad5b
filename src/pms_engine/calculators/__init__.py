"""Pure reconciliation arithmetic."""

from pms_engine.calculators.deviation import (
    deviation_percent,
    is_flagged,
    quantize_money,
    quantize_percent,
    revenue,
    trailing_average,
)
from pms_engine.calculators.rollover import (
    RolloverResult,
    advance_meter,
    confirmed_rollover_volume,
    detect_rollover,
    quantize_volume,
    rewind_meter,
)

__all__ = [
    "RolloverResult",
    "advance_meter",
    "confirmed_rollover_volume",
    "detect_rollover",
    "deviation_percent",
    "is_flagged",
    "quantize_money",
    "quantize_percent",
    "quantize_volume",
    "revenue",
    "trailing_average",
]
