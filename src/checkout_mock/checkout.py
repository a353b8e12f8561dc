"""Buyer-side checkout flow driven over the protocol client.

``CheckoutFlow`` walks one payment through order creation, card entry and the
challenge step, writing each outcome into the ``PaymentSession`` it was given.
After a successful settlement the caller may schedule a delayed redirect; the
timer is cancellable so leaving the result screen early never fires it.
"""

import logging
import threading
from decimal import Decimal
from typing import Callable

from checkout_mock.client import (
    AuthorizationOutcome,
    CardFields,
    ChallengeOutcome,
    ChallengeRequired,
    ChallengeVerified,
    PaymentClient,
    Settled,
)
from checkout_mock.config import load_config
from checkout_mock.errors import InactiveSessionError
from checkout_mock.session import OrderContext, PaymentSession, SettlementRecord

logger = logging.getLogger(__name__)


class CheckoutFlow:
    def __init__(self, client: PaymentClient, session: PaymentSession, redirect_delay: float | None = None) -> None:
        self._client = client
        self._session = session
        if redirect_delay is None:
            redirect_delay = float(load_config()["checkout"]["redirect_delay_seconds"])
        self._redirect_delay = redirect_delay
        self._redirect_timer: threading.Timer | None = None

    @property
    def session(self) -> PaymentSession:
        return self._session

    def _active_order(self) -> OrderContext:
        order = self._session.order
        if order is None:
            raise InactiveSessionError("No checkout in progress")
        return order

    def _settle(self, order: OrderContext, provider_reference: str | None) -> SettlementRecord:
        record = SettlementRecord(
            payment_id=order.payment_id,
            order_id=order.order_id,
            amount=order.amount,
            provider_reference=provider_reference,
        )
        self._session.record_outcome(record)
        logger.info("Checkout %s settled (ref %s)", order.order_id, provider_reference)
        return record

    def start(self, product_name: str, amount: Decimal | str, buyer_email: str) -> OrderContext:
        """Create the order and make it the session's active payment."""
        self.cancel_redirect()
        order = self._client.create_order(product_name, amount, buyer_email)
        self._session.begin(order)
        logger.info("Checkout started: order %s payment %s", order.order_id, order.payment_id)
        return order

    def submit_card(self, card: CardFields) -> AuthorizationOutcome:
        order = self._active_order()
        outcome = self._client.authorize(order.payment_id, card)
        if isinstance(outcome, ChallengeRequired):
            self._session.record_challenge_bank(outcome.bank_name)
        elif isinstance(outcome, Settled):
            self._settle(order, outcome.provider_reference)
        else:
            logger.info("Checkout %s declined: %s", order.order_id, outcome.reason)
        return outcome

    def submit_code(self, code: str) -> ChallengeOutcome:
        order = self._active_order()
        outcome = self._client.verify_challenge(order.payment_id, code)
        if isinstance(outcome, ChallengeVerified):
            self._settle(order, outcome.provider_reference)
        else:
            logger.info("Challenge rejected for %s: %s", order.order_id, outcome.code)
        return outcome

    def schedule_redirect(self, on_redirect: Callable[[SettlementRecord], None]) -> threading.Timer:
        """Clear the session and hand the settlement to ``on_redirect`` after the delay."""
        record = self._session.outcome
        if record is None:
            raise InactiveSessionError("Nothing settled to redirect from")
        self.cancel_redirect()

        def fire() -> None:
            self._redirect_timer = None
            self._session.clear()
            on_redirect(record)

        timer = threading.Timer(self._redirect_delay, fire)
        timer.daemon = True
        self._redirect_timer = timer
        timer.start()
        return timer

    def cancel_redirect(self) -> bool:
        timer = self._redirect_timer
        self._redirect_timer = None
        if timer is None:
            return False
        timer.cancel()
        return True

    def abandon(self, notify_gateway: bool = False) -> None:
        """Drop the current checkout; optionally cancel the payment on the gateway too."""
        self.cancel_redirect()
        order = self._session.order
        self._session.clear()
        if notify_gateway and order is not None:
            self._client.cancel(order.payment_id)
