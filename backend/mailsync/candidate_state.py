"""Candidate email state machine.

    PENDING ──► PROCESSING ──► SUCCESS | FAILED | DUPLICATE | SKIPPED
       ▲            │
       └────────────┘  (recovery sweep release only)

Terminal states never change again, which is what guarantees at most one
transaction per provider message id. All status writes go through
``transition()`` so the invariant is checked in one place.
"""

from enum import Enum

from mailsync.errors import InvalidTransitionError


class CandidateStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DUPLICATE = "DUPLICATE"
    SKIPPED = "SKIPPED"


TERMINAL_STATES = frozenset(
    {
        CandidateStatus.SUCCESS,
        CandidateStatus.FAILED,
        CandidateStatus.DUPLICATE,
        CandidateStatus.SKIPPED,
    }
)

ALLOWED_TRANSITIONS = {
    CandidateStatus.PENDING: frozenset({CandidateStatus.PROCESSING}),
    CandidateStatus.PROCESSING: frozenset(
        TERMINAL_STATES | {CandidateStatus.PENDING}
    ),
}


def is_terminal(status) -> bool:
    return CandidateStatus(status) in TERMINAL_STATES


def can_transition(current, target) -> bool:
    current = CandidateStatus(current)
    target = CandidateStatus(target)
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(current, target) -> CandidateStatus:
    """Validate a status change and return the new status.

    Args:
        current: Current status (enum member or its string value)
        target: Requested status

    Returns:
        The target as a CandidateStatus

    Raises:
        InvalidTransitionError: If the move is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move candidate email from {CandidateStatus(current).value} "
            f"to {CandidateStatus(target).value}"
        )
    return CandidateStatus(target)
