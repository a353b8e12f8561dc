"""Protocol client for the checkout gateway.

Every state-mutating call is single-flight per payment: a second call for the
same payment while one is outstanding is refused locally. Nothing is retried
automatically. A transport failure on a mutating call raises ``ServiceError``
with ``state_unknown`` set, and the payment has to be re-read with
``get_payment`` before the caller decides anything.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Iterator, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from checkout_mock.config import load_config
from checkout_mock.errors import CheckoutError, ConflictError, DeclinedError, NotFoundError, ServiceError, ValidationError
from checkout_mock.observability import CORRELATION_ID_HEADER
from checkout_mock.schemas import (
    ApiLogView,
    DashboardMetrics,
    OrderCreatedResponse,
    PayResponse,
    PaymentDetailResponse,
    PaymentView,
    TestCardView,
    VerifyChallengeResponse,
)
from checkout_mock.session import OrderContext
from checkout_mock.validators import (
    is_valid_card_number,
    is_valid_challenge_code,
    is_valid_cvv,
    is_valid_email,
    is_valid_expiry,
    normalize_card_number,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class CardFields:
    card_number: str
    card_holder: str
    expiry_month: str
    expiry_year: str
    cvv: str

    def validate(self) -> None:
        if not is_valid_card_number(self.card_number):
            raise ValidationError("Card number must be 13-19 digits")
        if not self.card_holder or not self.card_holder.strip():
            raise ValidationError("Card holder is required")
        if not is_valid_expiry(self.expiry_month, self.expiry_year):
            raise ValidationError("Expiry month/year is malformed")
        if not is_valid_cvv(self.cvv):
            raise ValidationError("CVV must be 3-4 digits")

    def to_payload(self) -> dict[str, str]:
        return {
            "cardNumber": normalize_card_number(self.card_number),
            "cardHolder": self.card_holder.strip(),
            "expiryMonth": self.expiry_month.strip(),
            "expiryYear": self.expiry_year.strip(),
            "cvv": self.cvv.strip(),
        }

    @classmethod
    def from_test_card(cls, card: TestCardView) -> "CardFields":
        return cls(card.fullNumber, card.holder, card.expiryMonth, card.expiryYear, card.cvv)


@dataclass(frozen=True)
class ChallengeRequired:
    payment_id: str
    bank_name: str
    challenge_id: str | None
    message: str | None = None


@dataclass(frozen=True)
class Declined:
    payment_id: str
    reason: str


@dataclass(frozen=True)
class Settled:
    """Settlement straight from authorize. The reference gateway never answers this way."""

    payment_id: str
    provider_reference: str | None


AuthorizationOutcome = ChallengeRequired | Declined | Settled


@dataclass(frozen=True)
class ChallengeVerified:
    payment_id: str
    provider_reference: str


@dataclass(frozen=True)
class ChallengeRejected:
    payment_id: str
    code: str
    reason: str

    @property
    def retry_allowed(self) -> bool:
        """The gateway keeps the payment pending only for a plain wrong code."""
        return self.code == "INVALID_OTP"


ChallengeOutcome = ChallengeVerified | ChallengeRejected


def _error_from_response(response: httpx.Response, mutating: bool) -> CheckoutError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or response.text or f"HTTP {response.status_code}"
    error_code = body.get("errorCode")

    if response.status_code in (400, 422):
        return ValidationError(message, error_code)
    if response.status_code == 402:
        return DeclinedError(message, error_code)
    if response.status_code == 404:
        return NotFoundError(message, error_code)
    if response.status_code == 409:
        return ConflictError(message, error_code)
    return ServiceError(message, error_code, state_unknown=mutating and response.status_code >= 500)


class PaymentClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        if http_client is None:
            client_config = load_config()["client"]
            http_client = httpx.Client(
                base_url=(base_url or client_config["base_url"]).rstrip("/"),
                timeout=timeout if timeout is not None else float(client_config["timeout_seconds"]),
            )
        self._client = http_client
        self._in_flight: set[str] = set()
        self._in_flight_guard = Lock()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PaymentClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def _single_flight(self, payment_id: str) -> Iterator[None]:
        with self._in_flight_guard:
            if payment_id in self._in_flight:
                raise ConflictError(
                    f"A call for payment {payment_id} is already in flight", error_code="CALL_IN_FLIGHT"
                )
            self._in_flight.add(payment_id)
        try:
            yield
        finally:
            with self._in_flight_guard:
                self._in_flight.discard(payment_id)

    def _request(self, method: str, path: str, json: dict | None = None, mutating: bool = False) -> Any:
        correlation_id = str(uuid.uuid4())
        try:
            response = self._client.request(method, path, json=json, headers={CORRELATION_ID_HEADER: correlation_id})
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out [%s]", method, path, correlation_id)
            raise ServiceError(f"{method} {path} timed out", "TIMEOUT", state_unknown=mutating) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed [%s]: %s", method, path, correlation_id, exc)
            raise ServiceError(f"Gateway unreachable: {exc}", "UNREACHABLE", state_unknown=mutating) from exc

        if response.status_code >= 400:
            raise _error_from_response(response, mutating)
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceError("Gateway returned a non-JSON body", state_unknown=mutating) from exc

    def _parse(self, model: type[ModelT], data: Any, mutating: bool = False) -> ModelT:
        try:
            return model.model_validate(data)
        except SchemaError as exc:
            raise ServiceError(
                f"Gateway returned an unexpected {model.__name__} body", "BAD_RESPONSE", state_unknown=mutating
            ) from exc

    def _parse_list(self, model: type[ModelT], data: Any) -> list[ModelT]:
        if not isinstance(data, list):
            raise ServiceError(f"Gateway returned a non-list body for {model.__name__}", "BAD_RESPONSE")
        return [self._parse(model, item) for item in data]

    def create_order(self, product_name: str, amount: Decimal | str | int, buyer_email: str) -> OrderContext:
        if not product_name or not product_name.strip():
            raise ValidationError("Product name is required")
        try:
            value = Decimal(str(amount))
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {amount!r}") from exc
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be positive")
        if not is_valid_email(buyer_email):
            raise ValidationError("Buyer email is malformed")

        data = self._request(
            "POST",
            "/orders",
            json={"productName": product_name, "amount": str(value), "email": buyer_email},
            mutating=True,
        )
        created = self._parse(OrderCreatedResponse, data, mutating=True)
        return OrderContext(
            payment_id=created.paymentId,
            order_id=created.orderId,
            product_name=product_name,
            amount=created.amount,
            buyer_email=buyer_email,
        )

    def authorize(self, payment_id: str, card: CardFields) -> AuthorizationOutcome:
        card.validate()
        with self._single_flight(payment_id):
            data = self._request("POST", f"/payments/{payment_id}/pay", json=card.to_payload(), mutating=True)
        result = self._parse(PayResponse, data, mutating=True)

        if result.status == "REQUIRES_3DS":
            return ChallengeRequired(
                payment_id=payment_id,
                bank_name=result.bankName or "",
                challenge_id=result.challengeId,
                message=result.message,
            )
        if result.status == "FAILED":
            return Declined(payment_id=payment_id, reason=result.message or "Payment failed")
        if result.status == "CAPTURED":
            return Settled(payment_id=payment_id, provider_reference=result.providerReference)
        raise ServiceError(
            f"Unrecognised authorization status {result.status!r}", "UNKNOWN_STATUS", state_unknown=True
        )

    def verify_challenge(self, payment_id: str, code: str) -> ChallengeOutcome:
        if not is_valid_challenge_code(code):
            raise ValidationError("Verification code must be exactly 6 digits")
        with self._single_flight(payment_id):
            data = self._request("POST", f"/payments/{payment_id}/verify-3ds", json={"otp": code}, mutating=True)
        result = self._parse(VerifyChallengeResponse, data, mutating=True)

        if result.success:
            if not result.providerReference:
                raise ServiceError("Verification succeeded without a provider reference", state_unknown=True)
            return ChallengeVerified(payment_id=payment_id, provider_reference=result.providerReference)
        return ChallengeRejected(
            payment_id=payment_id, code=result.code or "REJECTED", reason=result.message or "Verification failed"
        )

    def cancel(self, payment_id: str) -> PaymentView:
        with self._single_flight(payment_id):
            data = self._request("POST", f"/payments/{payment_id}/cancel", mutating=True)
        return self._parse(PaymentView, data, mutating=True)

    def get_payment(self, payment_id: str) -> PaymentDetailResponse:
        return self._parse(PaymentDetailResponse, self._request("GET", f"/payments/{payment_id}"))

    def list_payments(self) -> list[PaymentView]:
        return self._parse_list(PaymentView, self._request("GET", "/payments"))

    def list_test_cards(self) -> list[TestCardView]:
        return self._parse_list(TestCardView, self._request("GET", "/test-cards"))

    def list_api_logs(self) -> list[ApiLogView]:
        return self._parse_list(ApiLogView, self._request("GET", "/api-logs"))

    def get_metrics(self) -> DashboardMetrics:
        return self._parse(DashboardMetrics, self._request("GET", "/metrics"))
