"""Deviation arithmetic against a pump's trailing average."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from pms_engine.calculators.rollover import quantize_volume

PERCENT_QUANT = Decimal("0.01")
MONEY_QUANT = Decimal("0.01")


def quantize_percent(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def trailing_average(volumes: Iterable[Decimal]) -> Decimal | None:
    """Mean of prior volumes, or None when there is no history."""
    values = list(volumes)
    if not values:
        return None
    return quantize_volume(sum(values, Decimal("0")) / len(values))


def deviation_percent(volume: Decimal, average: Decimal | None) -> Decimal:
    """Signed percentage difference from the average; 0 without a usable baseline."""
    if average is None or average == 0:
        return Decimal("0.00")
    return quantize_percent((volume - average) / average * Decimal("100"))


def is_flagged(deviation: Decimal, threshold: Decimal) -> bool:
    """Whether a deviation meets the reporting threshold in either direction."""
    return abs(deviation) >= threshold


def revenue(volume: Decimal, unit_price: Decimal) -> Decimal:
    return quantize_money(volume * unit_price)
