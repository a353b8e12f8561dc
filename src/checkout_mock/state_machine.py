"""Legal payment status transitions.

The gateway asks this module for the next status before every write; the
write itself is a compare-and-swap on the current status, so a transition
decided here can still lose a race and surface as ``ConflictError``.
"""

from enum import Enum

from checkout_mock.errors import ConflictError
from checkout_mock.models import PaymentStatus


class Event(str, Enum):
    AUTHORIZE_CHALLENGE = "AUTHORIZE_CHALLENGE"
    AUTHORIZE_DECLINE = "AUTHORIZE_DECLINE"
    # Immediate settlement without a challenge. Part of the domain model, the
    # gateway never produces it.
    AUTHORIZE_SETTLE = "AUTHORIZE_SETTLE"
    CHALLENGE_MATCH = "CHALLENGE_MATCH"
    CHALLENGE_MISMATCH = "CHALLENGE_MISMATCH"
    CHALLENGE_EXHAUSTED = "CHALLENGE_EXHAUSTED"
    CANCEL = "CANCEL"
    EXPIRE = "EXPIRE"
    REFUND = "REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.CAPTURED,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.CANCELLED,
    }
)

TRANSITIONS: dict[tuple[PaymentStatus, Event], PaymentStatus] = {
    (PaymentStatus.CREATED, Event.AUTHORIZE_CHALLENGE): PaymentStatus.AUTHORIZED,
    (PaymentStatus.CREATED, Event.AUTHORIZE_DECLINE): PaymentStatus.FAILED,
    (PaymentStatus.CREATED, Event.AUTHORIZE_SETTLE): PaymentStatus.CAPTURED,
    (PaymentStatus.CREATED, Event.CANCEL): PaymentStatus.CANCELLED,
    (PaymentStatus.CREATED, Event.EXPIRE): PaymentStatus.CANCELLED,
    (PaymentStatus.AUTHORIZED, Event.CHALLENGE_MATCH): PaymentStatus.CAPTURED,
    (PaymentStatus.AUTHORIZED, Event.CHALLENGE_MISMATCH): PaymentStatus.AUTHORIZED,
    (PaymentStatus.AUTHORIZED, Event.CHALLENGE_EXHAUSTED): PaymentStatus.FAILED,
    (PaymentStatus.AUTHORIZED, Event.CANCEL): PaymentStatus.CANCELLED,
    (PaymentStatus.AUTHORIZED, Event.EXPIRE): PaymentStatus.CANCELLED,
    # Post-capture reversals: vocabulary only, no endpoint drives them.
    (PaymentStatus.CAPTURED, Event.REFUND): PaymentStatus.REFUNDED,
    (PaymentStatus.CAPTURED, Event.PARTIAL_REFUND): PaymentStatus.PARTIALLY_REFUNDED,
    (PaymentStatus.PARTIALLY_REFUNDED, Event.REFUND): PaymentStatus.REFUNDED,
}

PROTOCOL_EVENTS = frozenset(event for event in Event if event not in (Event.REFUND, Event.PARTIAL_REFUND))


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_apply(status: PaymentStatus, event: Event) -> bool:
    if is_terminal(status) and event in PROTOCOL_EVENTS:
        return False
    return (status, event) in TRANSITIONS


def next_status(status: PaymentStatus, event: Event) -> PaymentStatus:
    """Return the status ``event`` moves a payment to, or raise ``ConflictError``."""
    if not can_apply(status, event):
        if is_terminal(status):
            raise ConflictError(f"Payment already {status.value}; {event.value} not accepted")
        raise ConflictError(f"Payment in status {status.value} does not accept {event.value}")
    return TRANSITIONS[(status, event)]
