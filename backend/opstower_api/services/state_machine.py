"""State machine validation for transactions and refunds."""

from opstower_shared.models import (
    TransactionStatus, RefundStatus, TransitionSource,
    TRANSACTION_TRANSITIONS, REFUND_TRANSITIONS, RESTRICTED_TRANSITIONS,
)
from opstower_api.services.errors import IllegalTransition


def transaction_transition_allowed(
    current: TransactionStatus,
    target: TransactionStatus,
    source: TransitionSource,
) -> bool:
    if target not in TRANSACTION_TRANSITIONS.get(current, []):
        return False
    required = RESTRICTED_TRANSITIONS.get((current, target))
    if required is not None and source != required:
        return False
    return True


def validate_refund_transition(current: str, target: str) -> bool:
    current_state = RefundStatus(current)
    target_state = RefundStatus(target)
    allowed = REFUND_TRANSITIONS.get(current_state, [])
    if target_state not in allowed:
        raise IllegalTransition("refund", current, target)
    return True


def transaction_transition_path(
    current: TransactionStatus,
    target: TransactionStatus,
    source: TransitionSource,
) -> list[TransactionStatus]:
    """Statuses to pass through from current to target; empty when illegal.

    A gateway-reported refund of a completed payment walks through
    refund_pending inside the same write.
    """
    if transaction_transition_allowed(current, target, source):
        return [target]
    if current == TransactionStatus.COMPLETED and target == TransactionStatus.REFUNDED:
        return [TransactionStatus.REFUND_PENDING, TransactionStatus.REFUNDED]
    return []
