"""
APPROVAL WORKFLOW - STATE MACHINE

PENDING_FIRST -> PENDING_SECOND -> APPROVED
PENDING_FIRST | PENDING_SECOND -> REJECTED

RULES:
- No skipped states, no backward moves
- APPROVED and REJECTED accept no further approve/reject actions
- Whether an action actually applies is decided by the conditional
  write in the repository, not here
"""

from enum import Enum
from typing import Dict, Tuple

from app.domain.exceptions import ApprovalTransitionError
from app.domain.models import ApprovalStatus


class ApprovalAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ApprovalEvent(str, Enum):
    """Notification events of the workflow"""
    CREATED = "CREATED"
    FIRST_APPROVED = "FIRST_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"


TRANSITIONS: Dict[Tuple[ApprovalStatus, ApprovalAction], ApprovalStatus] = {
    (ApprovalStatus.PENDING_FIRST, ApprovalAction.APPROVE): ApprovalStatus.PENDING_SECOND,
    (ApprovalStatus.PENDING_SECOND, ApprovalAction.APPROVE): ApprovalStatus.APPROVED,
    (ApprovalStatus.PENDING_FIRST, ApprovalAction.REJECT): ApprovalStatus.REJECTED,
    (ApprovalStatus.PENDING_SECOND, ApprovalAction.REJECT): ApprovalStatus.REJECTED,
}

TERMINAL_STATES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED})


def next_status(current: ApprovalStatus, action: ApprovalAction) -> ApprovalStatus:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise ApprovalTransitionError(
            f"Cannot {action.value.lower()} an approval in state {current.value}"
        ) from None


def stamp_field(current: ApprovalStatus, action: ApprovalAction) -> str:
    """Which stamp column the transition from `current` writes"""
    if action == ApprovalAction.REJECT:
        return "rejection"
    if current == ApprovalStatus.PENDING_FIRST:
        return "first_approval"
    return "second_approval"


def event_for(next_state: ApprovalStatus) -> ApprovalEvent:
    return {
        ApprovalStatus.PENDING_SECOND: ApprovalEvent.FIRST_APPROVED,
        ApprovalStatus.APPROVED: ApprovalEvent.APPROVED,
        ApprovalStatus.REJECTED: ApprovalEvent.REJECTED,
    }[next_state]


def is_pending(status: ApprovalStatus) -> bool:
    return status in (ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND)
