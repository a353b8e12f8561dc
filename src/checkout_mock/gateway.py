"""Server side of the checkout protocol.

``PaymentGateway`` owns every status write. Calls touching the same payment are
serialized on a per-payment lock, and each write is a compare-and-swap on the
status read under that lock, so two concurrent authorize or verify calls can
never both transition a payment. The loser gets ``ConflictError``.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Iterator

from checkout_mock.errors import ConflictError, NotFoundError, ValidationError
from checkout_mock.models import (
    ApiLogEntry,
    AttemptStatus,
    ChallengeSession,
    ChallengeStatus,
    Operation,
    Payment,
    PaymentAttempt,
    TestCard,
    to_money,
    utcnow,
)
from checkout_mock.state_machine import Event, next_status
from checkout_mock.validators import (
    is_valid_card_number,
    is_valid_challenge_code,
    is_valid_cvv,
    is_valid_email,
    is_valid_expiry,
    mask_card,
    normalize_card_number,
)

logger = logging.getLogger(__name__)

REQUIRES_CHALLENGE = "REQUIRES_3DS"
DECLINED = "FAILED"


@dataclass
class AuthorizationResult:
    status: str
    message: str
    bank_name: str | None = None
    challenge_id: str | None = None

    @property
    def proceed(self) -> bool:
        return self.status == REQUIRES_CHALLENGE


@dataclass
class ChallengeResult:
    success: bool
    code: str
    message: str
    provider_reference: str | None = None


def _normalize_year(year: str) -> int:
    value = int(year)
    return 2000 + value if value < 100 else value


class PaymentGateway:
    def __init__(self, store: Any, settings: dict[str, Any]) -> None:
        self._store = store
        self._currency = settings["currency"]
        self._challenge_code = str(settings["challenge_code"])
        self._challenge_ttl = int(settings["challenge_ttl_seconds"])
        self._max_attempts = int(settings["max_challenge_attempts"])
        self._default_commission = Decimal(str(settings["default_commission_rate"]))
        self._stale_after = timedelta(seconds=int(settings["stale_payment_seconds"]))
        self._api_log_limit = int(settings["api_log_limit"])
        # payment_id -> [lock, number of callers holding or waiting on it]
        self._locks: dict[str, list] = {}
        self._locks_guard = Lock()

    @property
    def store(self) -> Any:
        return self._store

    @contextmanager
    def _payment_lock(self, payment_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(payment_id, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[payment_id]

    def _require(self, payment_id: str) -> Payment:
        payment = self._store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment not found: {payment_id}")
        return payment

    def _transition(self, payment: Payment, event: Event, **changes: Any) -> Payment:
        target = next_status(payment.status, event)
        updated = self._store.compare_and_set(payment.payment_id, payment.status, status=target, **changes)
        if updated is None:
            raise ConflictError(f"Payment {payment.payment_id} was modified concurrently")
        logger.info("Payment %s: %s -> %s (%s)", payment.payment_id, payment.status.value, target.value, event.value)
        return updated

    def _record_attempt(
        self,
        payment_id: str,
        provider: str,
        operation: Operation,
        status: AttemptStatus,
        started: float,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self._store.add_attempt(
            PaymentAttempt(
                payment_id=payment_id,
                provider=provider,
                operation=operation,
                status=status,
                error_code=error_code,
                error_message=error_message,
                latency_ms=int((time.monotonic() - started) * 1000),
            )
        )

    def create_order(self, product_name: str, amount: Decimal | float | str, buyer_email: str) -> Payment:
        if not product_name or not product_name.strip():
            raise ValidationError("Product name is required")
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"Invalid amount: {amount!r}") from exc
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be positive")
        if value != value.quantize(Decimal("0.01")):
            raise ValidationError("Amount must have at most 2 decimal places")
        if not is_valid_email(buyer_email):
            raise ValidationError("Buyer email is malformed")

        payment = Payment(
            payment_id=str(uuid.uuid4()),
            order_id=f"ORD-{uuid.uuid4().hex[:12].upper()}",
            product_name=product_name.strip(),
            buyer_email=buyer_email.strip(),
            amount=to_money(value),
            currency=self._currency,
        )
        self._store.insert_payment(payment)
        logger.info("Order %s created: payment %s amount %s %s", payment.order_id, payment.payment_id, payment.amount, payment.currency)
        return payment

    def _decline_reason(self, card: TestCard | None, cvv: str, expiry_month: str, expiry_year: str) -> tuple[str, str] | None:
        if card is None:
            return "CARD_NOT_FOUND", "Card not recognised. Use one of the test cards."
        if card.cvv != cvv:
            return "INVALID_CVV", "CVV mismatch"
        if int(card.expiry_month) != int(expiry_month) or _normalize_year(card.expiry_year) != _normalize_year(expiry_year):
            return "INVALID_EXPIRY", "Expiry date mismatch"
        if card.should_fail:
            return "CARD_DECLINED", card.fail_reason or "Card declined"
        return None

    def authorize(
        self,
        payment_id: str,
        card_number: str,
        card_holder: str,
        expiry_month: str,
        expiry_year: str,
        cvv: str,
    ) -> AuthorizationResult:
        if not is_valid_card_number(card_number):
            raise ValidationError("Card number must be 13-19 digits")
        if not card_holder or not card_holder.strip():
            raise ValidationError("Card holder is required")
        if not is_valid_expiry(expiry_month, expiry_year):
            raise ValidationError("Expiry month/year is malformed")
        if not is_valid_cvv(cvv):
            raise ValidationError("CVV must be 3-4 digits")

        started = time.monotonic()
        with self._payment_lock(payment_id):
            payment = self._require(payment_id)
            next_status(payment.status, Event.AUTHORIZE_CHALLENGE)

            number = normalize_card_number(card_number)
            logger.info("Processing payment %s with card %s", payment_id, mask_card(number))
            card = self._store.find_test_card(number)
            card_fields = {
                "card_bin": number[:6],
                "card_last_four": number[-4:],
                "bank_name": card.bank_name if card else None,
            }

            decline = self._decline_reason(card, cvv.strip(), expiry_month.strip(), expiry_year.strip())
            if decline is not None:
                error_code, reason = decline
                self._transition(payment, Event.AUTHORIZE_DECLINE, failure_reason=reason, **card_fields)
                self._record_attempt(
                    payment_id,
                    card.bank_name if card else "Unknown",
                    Operation.AUTHORIZE,
                    AttemptStatus.FAILURE,
                    started,
                    error_code=error_code,
                    error_message=reason,
                )
                logger.warning("Payment %s declined: %s", payment_id, reason)
                return AuthorizationResult(status=DECLINED, message=reason)

            self._transition(payment, Event.AUTHORIZE_CHALLENGE, **card_fields)
            challenge = ChallengeSession.open(payment_id, self._challenge_code, self._challenge_ttl)
            self._store.save_challenge(challenge)
            self._record_attempt(payment_id, card.bank_name, Operation.AUTHORIZE, AttemptStatus.SUCCESS, started)
            logger.info("3DS required for payment %s (bank %s)", payment_id, card.bank_name)
            return AuthorizationResult(
                status=REQUIRES_CHALLENGE,
                message="3D Secure verification required",
                bank_name=card.bank_name,
                challenge_id=challenge.challenge_id,
            )

    def verify_challenge(self, payment_id: str, code: str) -> ChallengeResult:
        if not is_valid_challenge_code(code):
            raise ValidationError("Verification code must be exactly 6 digits")

        started = time.monotonic()
        with self._payment_lock(payment_id):
            payment = self._require(payment_id)
            next_status(payment.status, Event.CHALLENGE_MATCH)
            challenge = self._store.get_challenge(payment_id)
            if challenge is None or challenge.status != ChallengeStatus.PENDING:
                raise ConflictError("No pending challenge for this payment", error_code="CHALLENGE_NOT_FOUND")
            bank_name = payment.bank_name or "Unknown"

            if challenge.is_expired():
                self._transition(payment, Event.EXPIRE, failure_reason="Challenge expired")
                challenge.status = ChallengeStatus.EXPIRED
                self._store.save_challenge(challenge)
                self._record_attempt(
                    payment_id, bank_name, Operation.VERIFY_CHALLENGE, AttemptStatus.FAILURE, started, "EXPIRED"
                )
                logger.warning("3DS session expired for payment %s", payment_id)
                return ChallengeResult(False, "EXPIRED", "Verification code expired. Please start a new payment.")

            challenge.attempts += 1
            if code != challenge.expected_code:
                remaining = self._max_attempts - challenge.attempts
                if remaining <= 0:
                    self._transition(payment, Event.CHALLENGE_EXHAUSTED, failure_reason="Too many invalid codes")
                    challenge.status = ChallengeStatus.FAILED
                    result = ChallengeResult(False, "MAX_ATTEMPTS", "Too many invalid codes. Payment cancelled.")
                else:
                    self._transition(payment, Event.CHALLENGE_MISMATCH)
                    result = ChallengeResult(False, "INVALID_OTP", f"Invalid code. Remaining attempts: {remaining}")
                self._store.save_challenge(challenge)
                self._record_attempt(
                    payment_id,
                    bank_name,
                    Operation.VERIFY_CHALLENGE,
                    AttemptStatus.FAILURE,
                    started,
                    result.code,
                    result.message,
                )
                logger.warning("3DS code rejected for payment %s: %s", payment_id, result.code)
                return result

            card = self._store.find_test_card_by_bin(payment.card_bin)
            rate = card.commission_rate if card else self._default_commission
            commission = to_money(payment.amount * rate / Decimal(100))
            settled = self._transition(
                payment,
                Event.CHALLENGE_MATCH,
                provider_ref=f"DEMO-{uuid.uuid4().hex[:8].upper()}",
                provider_name=card.bank_name if card else "MOCK_PROVIDER",
                commission_rate=rate,
                commission_amount=commission,
                net_amount=payment.amount - commission,
            )
            challenge.status = ChallengeStatus.VERIFIED
            challenge.verified_at = utcnow()
            self._store.save_challenge(challenge)
            self._record_attempt(payment_id, bank_name, Operation.VERIFY_CHALLENGE, AttemptStatus.SUCCESS, started)
            logger.info(
                "Payment %s captured: commission %s%% = %s %s", payment_id, rate, commission, settled.currency
            )
            return ChallengeResult(True, "SUCCESS", "Verification successful", settled.provider_ref)

    def cancel(self, payment_id: str, reason: str = "Cancelled by buyer") -> Payment:
        started = time.monotonic()
        with self._payment_lock(payment_id):
            payment = self._require(payment_id)
            cancelled = self._transition(payment, Event.CANCEL, failure_reason=reason)
            self._close_challenge(payment_id)
            self._record_attempt(
                payment_id, payment.bank_name or "Unknown", Operation.CANCEL, AttemptStatus.SUCCESS, started
            )
            return cancelled

    def _close_challenge(self, payment_id: str) -> None:
        challenge = self._store.get_challenge(payment_id)
        if challenge is not None and challenge.status == ChallengeStatus.PENDING:
            challenge.status = ChallengeStatus.EXPIRED
            self._store.save_challenge(challenge)

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Cancel payments left in a non-terminal status longer than the stale window."""
        cutoff = (now or utcnow()) - self._stale_after
        expired: list[str] = []
        for stale in self._store.list_stale(cutoff):
            with self._payment_lock(stale.payment_id):
                payment = self._store.get_payment(stale.payment_id)
                if payment is None:
                    continue
                try:
                    self._transition(payment, Event.EXPIRE, failure_reason="Abandoned checkout expired")
                except ConflictError:
                    continue
                self._close_challenge(payment.payment_id)
                expired.append(payment.payment_id)
        if expired:
            logger.info("Expired %d stale payments", len(expired))
        return expired

    def get_payment(self, payment_id: str) -> Payment:
        return self._require(payment_id)

    def payment_attempts(self, payment_id: str) -> list[PaymentAttempt]:
        return self._store.list_attempts(payment_id)

    def list_payments(self) -> list[Payment]:
        return self._store.list_payments()

    def list_test_cards(self) -> list[TestCard]:
        return self._store.list_test_cards()

    def record_api_log(self, entry: ApiLogEntry) -> None:
        self._store.add_api_log(entry)

    def recent_api_logs(self) -> list[ApiLogEntry]:
        return self._store.recent_api_logs(self._api_log_limit)
