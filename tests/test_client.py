from decimal import Decimal

import httpx
import pytest

from checkout_mock.client import (
    CardFields,
    ChallengeRejected,
    ChallengeRequired,
    ChallengeVerified,
    Declined,
    PaymentClient,
    Settled,
)
from checkout_mock.errors import ConflictError, DeclinedError, NotFoundError, ServiceError, ValidationError

PAYMENT_ID = "5f0c8a52-4f5c-4e53-9d4c-2f6a3c1b9e10"


def _card(fields: dict) -> CardFields:
    return CardFields(
        card_number=fields["cardNumber"],
        card_holder=fields["cardHolder"],
        expiry_month=fields["expiryMonth"],
        expiry_year=fields["expiryYear"],
        cvv=fields["cvv"],
    )


def _mock_client(handler) -> PaymentClient:
    return PaymentClient(http_client=httpx.Client(transport=httpx.MockTransport(handler), base_url="http://gateway"))


@pytest.mark.case(point="Client drives order, card and code end-to-end against the gateway")
def test_end_to_end_capture(payment_client: PaymentClient, good_card, record_payment_keyword):
    order = payment_client.create_order("Wireless Headphones", Decimal("1500.00"), "demo@test.com")
    record_payment_keyword(order.payment_id)
    assert order.amount == Decimal("1500.00")

    outcome = payment_client.authorize(order.payment_id, _card(good_card))
    assert isinstance(outcome, ChallengeRequired)
    assert outcome.bank_name == "Garanti BBVA"

    result = payment_client.verify_challenge(order.payment_id, "111111")
    assert isinstance(result, ChallengeVerified)
    assert result.provider_reference.startswith("DEMO-")

    payment = payment_client.get_payment(order.payment_id)
    assert payment.status == "CAPTURED"
    assert payment.providerRef == result.provider_reference
    assert payment.commissionAmount == Decimal("29.85")


@pytest.mark.case(point="Client maps a will-fail card to Declined with the gateway reason")
def test_declined_card(payment_client: PaymentClient, failing_card):
    order = payment_client.create_order("Wireless Headphones", "1500.00", "demo@test.com")

    outcome = payment_client.authorize(order.payment_id, _card(failing_card))

    assert outcome == Declined(payment_id=order.payment_id, reason="Insufficient funds")


def test_wrong_code_is_rejected_with_retry(payment_client: PaymentClient, good_card):
    order = payment_client.create_order("Mouse", "25.00", "demo@test.com")
    payment_client.authorize(order.payment_id, _card(good_card))

    result = payment_client.verify_challenge(order.payment_id, "222222")

    assert isinstance(result, ChallengeRejected)
    assert result.code == "INVALID_OTP"
    assert result.retry_allowed is True
    assert payment_client.get_payment(order.payment_id).status == "AUTHORIZED"


@pytest.mark.case(point="Malformed input fails locally without a network call")
def test_local_validation_skips_network(good_card):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    client = _mock_client(handler)

    with pytest.raises(ValidationError):
        client.verify_challenge(PAYMENT_ID, "12345")
    with pytest.raises(ValidationError):
        client.authorize(PAYMENT_ID, _card({**good_card, "cvv": "1"}))
    with pytest.raises(ValidationError):
        client.create_order("Mouse", "0", "demo@test.com")
    assert calls == []


@pytest.mark.case(point="Server errors map to the client error taxonomy")
def test_http_status_mapping(payment_client: PaymentClient, good_card):
    with pytest.raises(NotFoundError):
        payment_client.get_payment("00000000-0000-0000-0000-000000000000")

    order = payment_client.create_order("Mouse", "25.00", "demo@test.com")
    payment_client.authorize(order.payment_id, _card(good_card))
    payment_client.verify_challenge(order.payment_id, "111111")

    with pytest.raises(ConflictError) as exc_info:
        payment_client.verify_challenge(order.payment_id, "111111")
    assert exc_info.value.error_code == "INVALID_STATE"
    assert "CAPTURED" in exc_info.value.message


@pytest.mark.case(point="Every request carries a correlation id header")
def test_correlation_header_sent():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["X-Correlation-Id"])
        return httpx.Response(200, json=[])

    client = _mock_client(handler)
    client.list_payments()
    client.list_payments()

    assert len(seen) == 2
    assert seen[0] != seen[1]


@pytest.mark.case(point="Timeout on a mutating call surfaces state-unknown")
def test_timeout_marks_state_unknown(good_card):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _mock_client(handler)

    with pytest.raises(ServiceError) as exc_info:
        client.authorize(PAYMENT_ID, _card(good_card))
    assert exc_info.value.error_code == "TIMEOUT"
    assert exc_info.value.state_unknown is True

    with pytest.raises(ServiceError) as exc_info:
        client.get_payment(PAYMENT_ID)
    assert exc_info.value.state_unknown is False


def test_server_fault_maps_to_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"errorCode": "INTERNAL", "message": "boom"})

    with pytest.raises(ServiceError) as exc_info:
        _mock_client(handler).verify_challenge(PAYMENT_ID, "111111")
    assert exc_info.value.message == "boom"
    assert exc_info.value.state_unknown is True


@pytest.mark.case(point="Second mutating call for the same payment is refused while one is in flight")
def test_single_flight(good_card):
    nested: list[Exception] = []
    client: PaymentClient

    def handler(request: httpx.Request) -> httpx.Response:
        try:
            client.verify_challenge(PAYMENT_ID, "111111")
        except ConflictError as e:
            nested.append(e)
        return httpx.Response(200, json={"status": "REQUIRES_3DS", "proceed": True, "bankName": "Akbank"})

    client = _mock_client(handler)
    outcome = client.authorize(PAYMENT_ID, _card(good_card))

    assert isinstance(outcome, ChallengeRequired)
    assert len(nested) == 1
    assert nested[0].error_code == "CALL_IN_FLIGHT"


def test_single_flight_released_after_failure(good_card):
    responses = iter(
        [
            httpx.Response(409, json={"errorCode": "INVALID_STATE", "message": "Payment already FAILED"}),
            httpx.Response(200, json={"status": "FAILED", "proceed": False, "message": "CVV mismatch"}),
        ]
    )
    client = _mock_client(lambda request: next(responses))

    with pytest.raises(ConflictError):
        client.authorize(PAYMENT_ID, _card(good_card))
    assert isinstance(client.authorize(PAYMENT_ID, _card(good_card)), Declined)


@pytest.mark.case(point="Settled-without-challenge and unknown statuses are explicit")
def test_authorize_status_mapping():
    bodies = iter(
        [
            {"status": "CAPTURED", "proceed": False, "providerReference": "DEMO-0000ABCD"},
            {"status": "PENDING_REVIEW", "proceed": False},
        ]
    )
    client = _mock_client(lambda request: httpx.Response(200, json=next(bodies)))
    card = CardFields("4508034508034509", "AHMET YILMAZ", "12", "2030", "000")

    assert client.authorize(PAYMENT_ID, card) == Settled(payment_id=PAYMENT_ID, provider_reference="DEMO-0000ABCD")
    with pytest.raises(ServiceError) as exc_info:
        client.authorize(PAYMENT_ID, card)
    assert exc_info.value.state_unknown is True


def test_payment_required_maps_to_declined_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"errorCode": "DECLINED", "message": "Card blocked by issuer"})

    with pytest.raises(DeclinedError) as exc_info:
        _mock_client(handler).list_payments()
    assert exc_info.value.message == "Card blocked by issuer"


def test_read_operations(payment_client: PaymentClient):
    cards = payment_client.list_test_cards()
    garanti = next(card for card in cards if card.bankName == "Garanti BBVA")
    order = payment_client.create_order("Mouse", "25.00", "demo@test.com")
    payment_client.authorize(order.payment_id, CardFields.from_test_card(garanti))

    assert [p.paymentId for p in payment_client.list_payments()] == [order.payment_id]
    assert any(log.paymentId == order.payment_id for log in payment_client.list_api_logs())
    metrics = payment_client.get_metrics()
    assert metrics.totalPayments == 1
    assert metrics.capturedPayments == 0


@pytest.mark.case(point="Minimal response bodies map to outcomes; malformed ones to ServiceError")
def test_response_body_shapes(good_card):
    bodies = iter(
        [
            {"status": "REQUIRES_3DS", "bankName": "Akbank"},
            {"success": False, "message": "Invalid code"},
            {"bankName": "Akbank"},
        ]
    )
    client = _mock_client(lambda request: httpx.Response(200, json=next(bodies)))

    assert client.authorize(PAYMENT_ID, _card(good_card)) == ChallengeRequired(
        payment_id=PAYMENT_ID, bank_name="Akbank", challenge_id=None, message=None
    )
    rejected = client.verify_challenge(PAYMENT_ID, "222222")
    assert isinstance(rejected, ChallengeRejected)
    assert rejected.reason == "Invalid code"
    assert rejected.retry_allowed is False

    with pytest.raises(ServiceError) as exc_info:
        client.authorize(PAYMENT_ID, _card(good_card))
    assert exc_info.value.error_code == "BAD_RESPONSE"
    assert exc_info.value.state_unknown is True


def test_malformed_read_body_is_service_error():
    client = _mock_client(lambda request: httpx.Response(200, json={"items": []}))

    with pytest.raises(ServiceError) as exc_info:
        client.list_payments()
    assert exc_info.value.state_unknown is False
