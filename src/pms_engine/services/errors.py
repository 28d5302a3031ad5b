"""Error taxonomy for PMS operations.

Services raise these; the facade translates them into OperationResult.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable error classification exposed to callers."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INTERNAL = "internal"


class PmsError(Exception):
    """Base class for classified errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(PmsError):
    """Malformed or out-of-range input. Always caller-fixable."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None, **details: Any):
        if field is not None:
            details["field"] = field
        super().__init__(message, **details)


class NotFoundError(PmsError):
    """Referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity.replace('_', ' ').capitalize()} not found",
            entity=entity,
            entity_id=str(entity_id),
        )


class ConflictError(PmsError):
    """Operation conflicts with current state."""

    kind = ErrorKind.CONFLICT


class DuplicateReadingError(ConflictError):
    """A measured reading already exists for the (pump, date, type) key."""

    def __init__(self, existing_reading_id: Any = None):
        details: dict[str, Any] = {"reason": "duplicate_reading"}
        if existing_reading_id is not None:
            details["existing_reading_id"] = str(existing_reading_id)
        super().__init__("Reading already exists for this pump, date, and type", **details)


class WindowExpiredError(ConflictError):
    """The free modification window has passed; a manager override is required."""

    def __init__(self, window_hours: int):
        super().__init__(
            f"Modification window expired. Readings can only be modified within "
            f"{window_hours} hours of recording without a manager override.",
            reason="window_expired",
            requires_override=True,
            required_role="manager",
            window_hours=window_hours,
        )


class InvalidTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        from_status = getattr(from_status, "value", from_status)
        to_status = getattr(to_status, "value", to_status)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, from_status=from_status, to_status=to_status)


class ForbiddenError(PmsError):
    """Actor lacks the role required for the operation."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str, required_role: str | None = None, **details: Any):
        if required_role is not None:
            details["required_role"] = required_role
        super().__init__(message, **details)


class InternalError(PmsError):
    """Unexpected failure or an operation that cannot produce a usable result."""

    kind = ErrorKind.INTERNAL


class InsufficientDataError(InternalError):
    """Estimation has neither transaction data nor a historical baseline."""

    def __init__(self, pump_id: Any, slot: str):
        super().__init__(
            "Insufficient data to estimate the missing reading",
            reason="insufficient_data",
            pump_id=str(pump_id),
            slot=slot,
        )
