"""State machines for pump status, calculation approval, and reading corrections."""

from __future__ import annotations

from pms_engine.models.enums import ApprovalState, CorrectionState, PumpStatus
from pms_engine.services.errors import InvalidTransitionError


class PumpStatusStateMachine:
    """State machine for pump operational status.

    Allowed transitions:
    - active → maintenance | calibration | repair
    - maintenance → active | calibration | repair
    - calibration → active (calibration completed) | repair
    - repair → active | maintenance | calibration

    Re-asserting the current status is not a transition.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PumpStatus.ACTIVE: [
            PumpStatus.MAINTENANCE,
            PumpStatus.CALIBRATION,
            PumpStatus.REPAIR,
        ],
        PumpStatus.MAINTENANCE: [
            PumpStatus.ACTIVE,
            PumpStatus.CALIBRATION,
            PumpStatus.REPAIR,
        ],
        PumpStatus.CALIBRATION: [PumpStatus.ACTIVE, PumpStatus.REPAIR],
        PumpStatus.REPAIR: [
            PumpStatus.ACTIVE,
            PumpStatus.MAINTENANCE,
            PumpStatus.CALIBRATION,
        ],
    }

    # Statuses in which the pump accepts meter readings and is reconciled
    OPERATIONAL = {PumpStatus.ACTIVE}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if from_status == to_status:
            raise InvalidTransitionError(from_status, to_status, "pump is already in this status")
        if not cls.can_transition(from_status, to_status):
            reason = None
            if from_status == PumpStatus.CALIBRATION:
                reason = "calibration can only complete (active) or fail (repair)"
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_operational(cls, status: str) -> bool:
        return status in cls.OPERATIONAL

    @classmethod
    def completes_calibration(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition marks a successful calibration."""
        return from_status == PumpStatus.CALIBRATION and to_status == PumpStatus.ACTIVE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


class CalculationApprovalStateMachine:
    """State machine for PMS calculation approval.

    Allowed transitions:
    - pending_approval → approved
    - pending_approval → rejected
    - pending_approval → auto_approved (rollover confirmed on measured readings)

    approved, rejected and auto_approved are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ApprovalState.PENDING_APPROVAL: [
            ApprovalState.APPROVED,
            ApprovalState.REJECTED,
            ApprovalState.AUTO_APPROVED,
        ],
        ApprovalState.AUTO_APPROVED: [],
        ApprovalState.APPROVED: [],
        ApprovalState.REJECTED: [],
    }

    # States whose volume feeds trailing baselines
    BASELINE_ELIGIBLE = {ApprovalState.AUTO_APPROVED, ApprovalState.APPROVED}

    @classmethod
    def can_transition(cls, from_state: str, to_state: str) -> bool:
        """Check if a transition is valid."""
        return to_state in cls.VALID_TRANSITIONS.get(from_state, [])

    @classmethod
    def validate_transition(cls, from_state: str, to_state: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state, to_state, "calculation is not pending approval")

    @classmethod
    def initial_state(cls, is_estimated: bool) -> ApprovalState:
        """Approval state for a freshly computed calculation."""
        if is_estimated:
            return ApprovalState.PENDING_APPROVAL
        return ApprovalState.AUTO_APPROVED

    @classmethod
    def is_baseline_eligible(cls, state: str) -> bool:
        return state in cls.BASELINE_ELIGIBLE


class ReadingCorrectionStateMachine:
    """State machine for meter reading corrections.

    Allowed transitions:
    - recorded → corrected (within the modification window)
    - corrected → corrected (repeat in-window edit)
    - recorded | corrected → corrected_with_override
    - corrected_with_override → corrected_with_override

    An overridden reading never drops back to a plain correction.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        CorrectionState.RECORDED: [
            CorrectionState.CORRECTED,
            CorrectionState.CORRECTED_WITH_OVERRIDE,
        ],
        CorrectionState.CORRECTED: [
            CorrectionState.CORRECTED,
            CorrectionState.CORRECTED_WITH_OVERRIDE,
        ],
        CorrectionState.CORRECTED_WITH_OVERRIDE: [CorrectionState.CORRECTED_WITH_OVERRIDE],
    }

    @classmethod
    def can_transition(cls, from_state: str, to_state: str) -> bool:
        """Check if a transition is valid."""
        return to_state in cls.VALID_TRANSITIONS.get(from_state, [])

    @classmethod
    def validate_transition(cls, from_state: str, to_state: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_state, to_state):
            reason = None
            if from_state == CorrectionState.CORRECTED_WITH_OVERRIDE:
                reason = "reading was corrected with an override; further edits need an override"
            raise InvalidTransitionError(from_state, to_state, reason)

    @classmethod
    def next_state(cls, current: str, with_override: bool) -> CorrectionState:
        """Resolve and validate the target state of a correction."""
        target = (
            CorrectionState.CORRECTED_WITH_OVERRIDE if with_override else CorrectionState.CORRECTED
        )
        cls.validate_transition(current, target)
        return target
