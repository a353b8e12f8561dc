"""Domain records held by the gateway."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from checkout_mock import validators

CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class PaymentStatus(str, Enum):
    CREATED = "CREATED"
    # Card accepted, waiting for the step-up challenge.
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ChallengeStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Operation(str, Enum):
    AUTHORIZE = "AUTHORIZE"
    VERIFY_CHALLENGE = "VERIFY_CHALLENGE"
    CANCEL = "CANCEL"


class AttemptStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass
class Payment:
    payment_id: str
    order_id: str
    product_name: str
    buyer_email: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.CREATED
    card_bin: str | None = None
    card_last_four: str | None = None
    bank_name: str | None = None
    provider_ref: str | None = None
    provider_name: str | None = None
    commission_rate: Decimal | None = None
    commission_amount: Decimal | None = None
    net_amount: Decimal | None = None
    failure_reason: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def card_info(self) -> str | None:
        return validators.card_info(self.card_bin, self.card_last_four)


@dataclass
class ChallengeSession:
    payment_id: str
    expected_code: str
    expires_at: datetime
    challenge_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ChallengeStatus = ChallengeStatus.PENDING
    attempts: int = 0
    verified_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def open(cls, payment_id: str, expected_code: str, ttl_seconds: int) -> "ChallengeSession":
        now = utcnow()
        return cls(
            payment_id=payment_id,
            expected_code=expected_code,
            expires_at=now + timedelta(seconds=ttl_seconds),
            created_at=now,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at


@dataclass
class PaymentAttempt:
    payment_id: str
    provider: str
    operation: Operation
    status: AttemptStatus
    error_code: str | None = None
    error_message: str | None = None
    latency_ms: int = 0
    attempt_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TestCard:
    card_number: str
    card_holder: str
    expiry_month: str
    expiry_year: str
    cvv: str
    bank_name: str
    card_brand: str
    commission_rate: Decimal
    should_fail: bool = False
    fail_reason: str | None = None

    __test__ = False

    @property
    def bin_prefix(self) -> str:
        return self.card_number[:6]


@dataclass
class ApiLogEntry:
    method: str
    endpoint: str
    response_status: int
    latency_ms: int
    correlation_id: str
    payment_id: str | None = None
    request_body: str | None = None
    response_body: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
