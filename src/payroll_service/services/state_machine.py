"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_service.errors import PayrollServiceError


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PAID = "paid"


class PayrollRunAction(str, Enum):
    """Status change actions a caller can request."""

    CONFIRM = "confirm"
    PAY = "pay"


class InvalidTransitionError(PayrollServiceError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = _value(from_status)
        self.to_status = _value(to_status)
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg, {"from_status": self.from_status, "to_status": self.to_status}
        )


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → confirmed (confirm)
    - confirmed → paid (pay)

    Runs only move forward, one step at a time. Paid is terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.CONFIRMED],
        PayrollRunStatus.CONFIRMED: [PayrollRunStatus.PAID],
        PayrollRunStatus.PAID: [],
    }

    ACTION_TARGETS: dict[str, str] = {
        PayrollRunAction.CONFIRM: PayrollRunStatus.CONFIRMED,
        PayrollRunAction.PAY: PayrollRunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def target_for_action(cls, from_status: str, action: str) -> str:
        """Resolve the status an action leads to from ``from_status``.

        Raises InvalidTransitionError for unknown actions or illegal edges.
        """
        target = cls.ACTION_TARGETS.get(action)
        if target is None:
            raise InvalidTransitionError(from_status, action, "Unknown action")
        if not cls.can_transition(from_status, target):
            raise InvalidTransitionError(
                from_status,
                target,
                f"Action '{_value(action)}' is not allowed from '{_value(from_status)}'",
            )
        return _value(target)


def _value(status: str) -> str:
    return status.value if isinstance(status, Enum) else str(status)
