"""Audit trail recording.

The recorder fans an AuditEvent out to every registered sink. Sinks are
isolated: a failing sink is logged and never fails the operation that
produced the event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.models import AuditEventRecord, utcnow

logger = logging.getLogger(__name__)


def to_json_value(value: Any) -> Any:
    """Convert domain values into JSON-safe primitives."""
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditEvent:
    """Who did what to which entity, and when."""

    action: str
    entity_type: str
    entity_id: UUID
    actor_user_id: UUID | None
    station_id: UUID | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    occurred_at: datetime = field(default_factory=utcnow)


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for audit destinations."""

    async def record(self, event: AuditEvent) -> None:
        """Persist or forward an audit event."""
        ...


class DatabaseAuditSink:
    """Writes audit_event rows inside the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, event: AuditEvent) -> None:
        self.session.add(
            AuditEventRecord(
                station_id=event.station_id,
                actor_user_id=event.actor_user_id,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                before_json=to_json_value(event.before),
                after_json=to_json_value(event.after),
                created_at=event.occurred_at,
            )
        )


class LoggingAuditSink:
    """Emits audit events to the application log."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logging.getLogger("pms_engine.audit")

    async def record(self, event: AuditEvent) -> None:
        self._log.info(
            "%s %s=%s actor=%s",
            event.action,
            event.entity_type,
            event.entity_id,
            event.actor_user_id,
        )


class AuditRecorder:
    """Fan-out recorder with per-sink error isolation.

    Usage:
        recorder = AuditRecorder([DatabaseAuditSink(session), LoggingAuditSink()])
        await recorder.record(AuditEvent(action="reading.recorded", ...))
    """

    def __init__(self, sinks: list[AuditSink] | None = None):
        self._sinks: list[AuditSink] = list(sinks or [])

    @classmethod
    def for_session(cls, session: AsyncSession) -> AuditRecorder:
        """Default recorder: database rows plus log lines."""
        return cls([DatabaseAuditSink(session), LoggingAuditSink()])

    async def record(self, event: AuditEvent) -> list[Exception]:
        """Deliver the event to every sink, returning any sink failures."""
        errors: list[Exception] = []
        for sink in self._sinks:
            try:
                await sink.record(event)
            except Exception as e:
                logger.exception(
                    "Audit sink %s failed for %s on %s %s",
                    type(sink).__name__,
                    event.action,
                    event.entity_type,
                    event.entity_id,
                )
                errors.append(e)
        return errors
