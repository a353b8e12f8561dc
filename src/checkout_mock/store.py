"""In-memory storage backend keyed by payment id."""

from collections import deque
from dataclasses import replace
from datetime import datetime
from threading import Lock
from typing import Any

from checkout_mock.models import ApiLogEntry, ChallengeSession, Payment, PaymentAttempt, PaymentStatus, TestCard, utcnow
from checkout_mock.state_machine import TERMINAL_STATUSES
from checkout_mock.test_cards import TEST_CARDS


class MemoryStore:
    """Thread-safe in-memory payments, challenges, attempts and API logs.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self, test_cards: tuple[TestCard, ...] = TEST_CARDS, api_log_capacity: int = 1000) -> None:
        self._payments: dict[str, Payment] = {}
        self._challenges: dict[str, ChallengeSession] = {}
        self._attempts: list[PaymentAttempt] = []
        self._api_logs: deque[ApiLogEntry] = deque(maxlen=api_log_capacity)
        self._test_cards = {card.card_number: card for card in test_cards}
        self._lock = Lock()

    def init(self) -> None:
        """Nothing to create for the in-memory backend."""

    def insert_payment(self, payment: Payment) -> None:
        with self._lock:
            self._payments[payment.payment_id] = replace(payment)

    def get_payment(self, payment_id: str) -> Payment | None:
        with self._lock:
            payment = self._payments.get(payment_id)
            return replace(payment) if payment else None

    def list_payments(self) -> list[Payment]:
        """Newest first."""
        with self._lock:
            payments = [replace(p) for p in self._payments.values()]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    def compare_and_set(self, payment_id: str, expected: PaymentStatus, **changes: Any) -> Payment | None:
        """Apply ``changes`` only while the payment is still in ``expected``.

        Returns the updated payment, or None when the payment is missing or
        another caller moved it first.
        """
        with self._lock:
            current = self._payments.get(payment_id)
            if current is None or current.status != expected:
                return None
            updated = replace(current, updated_at=utcnow(), **changes)
            self._payments[payment_id] = updated
            return replace(updated)

    def list_stale(self, created_before: datetime) -> list[Payment]:
        with self._lock:
            return [
                replace(p)
                for p in self._payments.values()
                if p.status not in TERMINAL_STATUSES and p.created_at < created_before
            ]

    def save_challenge(self, challenge: ChallengeSession) -> None:
        with self._lock:
            self._challenges[challenge.payment_id] = replace(challenge)

    def get_challenge(self, payment_id: str) -> ChallengeSession | None:
        with self._lock:
            challenge = self._challenges.get(payment_id)
            return replace(challenge) if challenge else None

    def add_attempt(self, attempt: PaymentAttempt) -> None:
        with self._lock:
            self._attempts.append(replace(attempt))

    def list_attempts(self, payment_id: str) -> list[PaymentAttempt]:
        with self._lock:
            attempts = [replace(a) for a in self._attempts if a.payment_id == payment_id]
        return sorted(attempts, key=lambda a: a.created_at, reverse=True)

    def add_api_log(self, entry: ApiLogEntry) -> None:
        with self._lock:
            self._api_logs.append(replace(entry))

    def recent_api_logs(self, limit: int) -> list[ApiLogEntry]:
        with self._lock:
            entries = list(self._api_logs)
        return [replace(e) for e in reversed(entries)][:limit]

    def list_test_cards(self) -> list[TestCard]:
        return list(self._test_cards.values())

    def find_test_card(self, card_number: str) -> TestCard | None:
        return self._test_cards.get(card_number)

    def find_test_card_by_bin(self, bin_prefix: str | None) -> TestCard | None:
        if not bin_prefix:
            return None
        for card in self._test_cards.values():
            if card.bin_prefix == bin_prefix:
                return card
        return None

    def clear(self) -> int:
        """Reset helper for test runs: drop every payment with its history and logs.

        Returns the number of payments removed.
        """
        with self._lock:
            n = len(self._payments)
            self._payments.clear()
            self._challenges.clear()
            self._attempts.clear()
            self._api_logs.clear()
            return n


def build_store(config: dict[str, Any]):
    backend = config["storage"]["backend"]
    if backend == "memory":
        return MemoryStore()
    if backend == "mysql":
        from checkout_mock.payment_db import MySQLStore

        return MySQLStore(config["mysql"])
    raise ValueError(f"Unknown storage backend: {backend!r}")
