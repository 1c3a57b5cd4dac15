"""Receipt review state machine."""

from typing import Dict, FrozenSet, Union

from shared.exceptions import InvalidTransitionError, ValidationError
from receipts.models import ReceiptStatus

ALLOWED_TRANSITIONS: Dict[ReceiptStatus, FrozenSet[ReceiptStatus]] = {
    ReceiptStatus.PENDING: frozenset({ReceiptStatus.VERIFIED, ReceiptStatus.REJECTED}),
    ReceiptStatus.VERIFIED: frozenset(),
    ReceiptStatus.REJECTED: frozenset(),
}

ACTION_TARGETS = {
    'approve': ReceiptStatus.VERIFIED,
    'reject': ReceiptStatus.REJECTED,
}


def can_transition(current: Union[ReceiptStatus, str], target: Union[ReceiptStatus, str]) -> bool:
    return ReceiptStatus(target) in ALLOWED_TRANSITIONS[ReceiptStatus(current)]


def assert_transition(current: Union[ReceiptStatus, str], target: Union[ReceiptStatus, str]) -> ReceiptStatus:
    """
    Check a transition is permitted.

    Returns:
        The target status

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(ReceiptStatus(current).value, ReceiptStatus(target).value)
    return ReceiptStatus(target)


def next_status(current: Union[ReceiptStatus, str], action: str) -> ReceiptStatus:
    """
    Status a reviewer action leads to.

    Raises:
        ValidationError: If the action is unknown
        InvalidTransitionError: If the receipt already reached a terminal state
    """
    target = ACTION_TARGETS.get(action)
    if target is None:
        raise ValidationError(f"Unknown review action: {action}")
    return assert_transition(current, target)
