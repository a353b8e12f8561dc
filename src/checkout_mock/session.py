"""Client-held context for the one payment a checkout is working on.

A ``PaymentSession`` is created by whoever owns the checkout and passed to each
step explicitly. It has one lifecycle: ``begin`` on order creation, the
``record_*`` calls as protocol responses arrive, ``clear`` once the outcome
has been read out.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from checkout_mock.errors import InactiveSessionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderContext:
    payment_id: str
    order_id: str
    product_name: str
    amount: Decimal
    buyer_email: str


@dataclass(frozen=True)
class SettlementRecord:
    payment_id: str
    order_id: str
    amount: Decimal
    provider_reference: str | None


class PaymentSession:
    def __init__(self) -> None:
        self._order: OrderContext | None = None
        self._bank_name: str | None = None
        self._outcome: SettlementRecord | None = None

    @property
    def active(self) -> bool:
        return self._order is not None

    @property
    def order(self) -> OrderContext | None:
        return self._order

    @property
    def bank_name(self) -> str | None:
        """Issuing bank, set only once a challenge is required."""
        return self._bank_name

    @property
    def outcome(self) -> SettlementRecord | None:
        return self._outcome

    def begin(self, order: OrderContext) -> None:
        """Start a context. Replaces a stale one; single-flight is the caller's job."""
        if self._order is not None:
            logger.info("Replacing stale payment context %s with %s", self._order.payment_id, order.payment_id)
        self._order = order
        self._bank_name = None
        self._outcome = None

    def _require_active(self, step: str) -> OrderContext:
        if self._order is None:
            raise InactiveSessionError(f"Cannot record {step}: no active payment context")
        return self._order

    def record_challenge_bank(self, name: str) -> None:
        self._require_active("challenge bank")
        self._bank_name = name

    def record_outcome(self, record: SettlementRecord) -> None:
        order = self._require_active("outcome")
        if record.payment_id != order.payment_id:
            raise InactiveSessionError(
                f"Outcome for payment {record.payment_id} does not belong to active payment {order.payment_id}"
            )
        self._outcome = record

    def clear(self) -> None:
        self._order = None
        self._bank_name = None
        self._outcome = None
