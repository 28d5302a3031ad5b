"""Meter delta and rollover arithmetic.

Meters are cumulative counters that wrap back to zero after reaching their
capacity. All values are Decimal, quantized to 0.1 litre.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

VOLUME_QUANT = Decimal("0.1")
ZERO = Decimal("0")


def quantize_volume(value: Decimal) -> Decimal:
    """Round to the meter's resolution."""
    return Decimal(value).quantize(VOLUME_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RolloverResult:
    """Volume derived from one opening/closing pair."""

    raw_delta: Decimal
    volume_sold: Decimal
    rollover_applied: bool
    rollover_amount: Decimal | None
    confirmation_required: bool


def detect_rollover(
    opening: Decimal,
    closing: Decimal,
    capacity: Decimal,
    confirmation_fraction: Decimal = Decimal("0.5"),
) -> RolloverResult:
    """Compute volume sold, correcting for a single meter wrap.

    A negative raw delta means the meter passed its capacity:
    volume = (capacity - opening) + closing. When that single-wrap volume
    exceeds ``confirmation_fraction`` of capacity the wrap is ambiguous
    (several wraps, or a mis-keyed reading) and needs a human decision.
    No wrap count beyond one is ever inferred.
    """
    if capacity <= ZERO:
        raise ValueError("capacity must be positive")

    raw_delta = quantize_volume(closing - opening)
    if raw_delta >= ZERO:
        return RolloverResult(
            raw_delta=raw_delta,
            volume_sold=raw_delta,
            rollover_applied=False,
            rollover_amount=None,
            confirmation_required=False,
        )

    rollover_amount = quantize_volume(capacity - opening)
    volume = quantize_volume(rollover_amount + closing)
    return RolloverResult(
        raw_delta=raw_delta,
        volume_sold=volume,
        rollover_applied=True,
        rollover_amount=rollover_amount,
        confirmation_required=volume > capacity * confirmation_fraction,
    )


def confirmed_rollover_volume(rollover_value: Decimal, new_reading: Decimal) -> Decimal:
    """Volume for a manually confirmed wrap: pre-wrap portion plus post-wrap reading."""
    return quantize_volume(rollover_value + new_reading)


def advance_meter(start: Decimal, volume: Decimal, capacity: Decimal) -> Decimal:
    """Meter value after dispensing ``volume`` from ``start``, wrapping at capacity."""
    value = start + volume
    while value > capacity:
        value -= capacity
    return quantize_volume(value)


def rewind_meter(end: Decimal, volume: Decimal, capacity: Decimal) -> Decimal:
    """Meter value ``volume`` litres before ``end``, wrapping at capacity."""
    value = end - volume
    while value < ZERO:
        value += capacity
    return quantize_volume(value)
