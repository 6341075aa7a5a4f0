"""
Payment lifecycle state machine.

    pending  -> completed | failed | cancelled | unknown
    unknown  -> completed | failed | cancelled
    completed -> refunded

failed, cancelled and refunded are terminal.
"""

import logging
from typing import Dict, FrozenSet

from app.models.payments import PaymentStatus
from app.models.transactions import TransactionStatus
from app.services.errors import InconsistentStateError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.UNKNOWN,
        }
    ),
    PaymentStatus.UNKNOWN: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATES = frozenset(
    {PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED}
)


def can_transition(current, target) -> bool:
    return PaymentStatus(target) in TRANSITIONS[PaymentStatus(current)]


def plan_transition(current, target) -> bool:
    """
    Decide whether a status report moves a payment.

    Args:
        current: The payment's stored status
        target: The status reported by a gateway, webhook or operator

    Returns:
        True if the record must be written, False for a no-op

    Raises:
        InconsistentStateError: If the report contradicts a settled outcome
    """
    current = PaymentStatus(current)
    target = PaymentStatus(target)

    if current == target:
        return False

    # Late or repeated "still waiting" reports never regress a record
    if target == PaymentStatus.PENDING:
        return False

    if target == PaymentStatus.UNKNOWN and current != PaymentStatus.PENDING:
        logger.info(f"Ignoring unmappable status report for a {current.value} payment")
        return False

    if not can_transition(current, target):
        raise InconsistentStateError(
            f"Cannot move payment from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )

    return True


def transaction_status_for(status) -> TransactionStatus:
    """Map a payment status onto the outcome transaction's status."""
    status = PaymentStatus(status)
    if status == PaymentStatus.COMPLETED:
        return TransactionStatus.COMPLETED
    if status == PaymentStatus.REFUNDED:
        return TransactionStatus.REFUNDED
    if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING
