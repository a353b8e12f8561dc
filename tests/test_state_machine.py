import pytest

from checkout_mock.errors import ConflictError
from checkout_mock.models import PaymentStatus
from checkout_mock.state_machine import PROTOCOL_EVENTS, TERMINAL_STATUSES, Event, can_apply, next_status


@pytest.mark.case(point="Happy path CREATED -> AUTHORIZED -> CAPTURED")
def test_challenge_path():
    status = next_status(PaymentStatus.CREATED, Event.AUTHORIZE_CHALLENGE)
    assert status == PaymentStatus.AUTHORIZED
    assert next_status(status, Event.CHALLENGE_MATCH) == PaymentStatus.CAPTURED


@pytest.mark.parametrize(
    "status, event, expected",
    [
        (PaymentStatus.CREATED, Event.AUTHORIZE_DECLINE, PaymentStatus.FAILED),
        (PaymentStatus.CREATED, Event.AUTHORIZE_SETTLE, PaymentStatus.CAPTURED),
        (PaymentStatus.CREATED, Event.CANCEL, PaymentStatus.CANCELLED),
        (PaymentStatus.AUTHORIZED, Event.CHALLENGE_MISMATCH, PaymentStatus.AUTHORIZED),
        (PaymentStatus.AUTHORIZED, Event.CHALLENGE_EXHAUSTED, PaymentStatus.FAILED),
        (PaymentStatus.AUTHORIZED, Event.EXPIRE, PaymentStatus.CANCELLED),
        (PaymentStatus.CAPTURED, Event.REFUND, PaymentStatus.REFUNDED),
        (PaymentStatus.PARTIALLY_REFUNDED, Event.REFUND, PaymentStatus.REFUNDED),
    ],
)
def test_allowed_transitions(status, event, expected):
    assert next_status(status, event) == expected


@pytest.mark.case(point="Terminal statuses accept no protocol event")
@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_statuses_reject_protocol_events(status):
    for event in PROTOCOL_EVENTS:
        assert not can_apply(status, event)
        with pytest.raises(ConflictError):
            next_status(status, event)


@pytest.mark.case(point="Double settle is a conflict")
def test_double_settle_rejected():
    with pytest.raises(ConflictError, match="already CAPTURED"):
        next_status(PaymentStatus.CAPTURED, Event.CHALLENGE_MATCH)


def test_challenge_from_created_rejected():
    with pytest.raises(ConflictError, match="does not accept CHALLENGE_MATCH"):
        next_status(PaymentStatus.CREATED, Event.CHALLENGE_MATCH)
    with pytest.raises(ConflictError):
        next_status(PaymentStatus.AUTHORIZED, Event.AUTHORIZE_CHALLENGE)
