"""PMS engine services."""

from pms_engine.services.actors import Actor, ActorResolver, Capability, Role
from pms_engine.services.audit import AuditEvent, AuditRecorder, AuditSink
from pms_engine.services.corrections import CorrectionWorkflow, ManagerOverride
from pms_engine.services.deviation import DeviationReporter
from pms_engine.services.errors import ErrorKind, PmsError
from pms_engine.services.estimation import EstimationResolver
from pms_engine.services.pump_registry import PumpRegistry
from pms_engine.services.reading_store import ReadingStore
from pms_engine.services.reconciliation import PumpOutcome, ReconciliationEngine
from pms_engine.services.state_machine import (
    CalculationApprovalStateMachine,
    PumpStatusStateMachine,
    ReadingCorrectionStateMachine,
)

__all__ = [
    "Actor",
    "ActorResolver",
    "AuditEvent",
    "AuditRecorder",
    "AuditSink",
    "CalculationApprovalStateMachine",
    "Capability",
    "CorrectionWorkflow",
    "DeviationReporter",
    "ErrorKind",
    "EstimationResolver",
    "ManagerOverride",
    "PmsError",
    "PumpOutcome",
    "PumpRegistry",
    "PumpStatusStateMachine",
    "ReadingCorrectionStateMachine",
    "ReadingStore",
    "ReconciliationEngine",
    "Role",
]
