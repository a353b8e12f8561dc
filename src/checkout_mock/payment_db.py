from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pymysql
from pymysql.cursors import DictCursor

from checkout_mock.models import (
    ApiLogEntry,
    AttemptStatus,
    ChallengeSession,
    ChallengeStatus,
    Operation,
    Payment,
    PaymentAttempt,
    PaymentStatus,
    TestCard,
)
from checkout_mock.state_machine import TERMINAL_STATUSES
from checkout_mock.test_cards import TEST_CARDS

_PAYMENT_COLUMNS = (
    "payment_id",
    "order_id",
    "product_name",
    "buyer_email",
    "amount",
    "currency",
    "status",
    "card_bin",
    "card_last_four",
    "bank_name",
    "provider_ref",
    "provider_name",
    "commission_rate",
    "commission_amount",
    "net_amount",
    "failure_reason",
    "created_at",
    "updated_at",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS payments (
        payment_id VARCHAR(36) PRIMARY KEY,
        order_id VARCHAR(32) NOT NULL UNIQUE,
        product_name VARCHAR(255) NOT NULL,
        buyer_email VARCHAR(255) NOT NULL,
        amount DECIMAL(12, 2) NOT NULL,
        currency VARCHAR(8) NOT NULL,
        status VARCHAR(32) NOT NULL,
        card_bin VARCHAR(6) DEFAULT NULL,
        card_last_four VARCHAR(4) DEFAULT NULL,
        bank_name VARCHAR(64) DEFAULT NULL,
        provider_ref VARCHAR(64) DEFAULT NULL,
        provider_name VARCHAR(64) DEFAULT NULL,
        commission_rate DECIMAL(5, 2) DEFAULT NULL,
        commission_amount DECIMAL(12, 2) DEFAULT NULL,
        net_amount DECIMAL(12, 2) DEFAULT NULL,
        failure_reason VARCHAR(255) DEFAULT NULL,
        created_at DATETIME(6) NOT NULL,
        updated_at DATETIME(6) NOT NULL,
        INDEX idx_payments_status (status)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS challenge_sessions (
        challenge_id VARCHAR(36) PRIMARY KEY,
        payment_id VARCHAR(36) NOT NULL UNIQUE,
        expected_code VARCHAR(6) NOT NULL,
        status VARCHAR(16) NOT NULL,
        attempts INT NOT NULL DEFAULT 0,
        expires_at DATETIME(6) NOT NULL,
        verified_at DATETIME(6) DEFAULT NULL,
        created_at DATETIME(6) NOT NULL,
        FOREIGN KEY (payment_id) REFERENCES payments(payment_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_attempts (
        attempt_id VARCHAR(36) PRIMARY KEY,
        payment_id VARCHAR(36) NOT NULL,
        provider VARCHAR(64) NOT NULL,
        operation VARCHAR(32) NOT NULL,
        status VARCHAR(16) NOT NULL,
        error_code VARCHAR(64) DEFAULT NULL,
        error_message VARCHAR(255) DEFAULT NULL,
        latency_ms INT NOT NULL,
        created_at DATETIME(6) NOT NULL,
        FOREIGN KEY (payment_id) REFERENCES payments(payment_id) ON DELETE CASCADE,
        INDEX idx_attempts_payment (payment_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS api_logs (
        id VARCHAR(36) PRIMARY KEY,
        correlation_id VARCHAR(64) NOT NULL,
        payment_id VARCHAR(36) DEFAULT NULL,
        method VARCHAR(8) NOT NULL,
        endpoint VARCHAR(512) NOT NULL,
        request_body TEXT,
        response_status INT NOT NULL,
        response_body TEXT,
        latency_ms INT NOT NULL,
        created_at DATETIME(6) NOT NULL,
        INDEX idx_api_logs_created (created_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS test_cards (
        card_number VARCHAR(19) PRIMARY KEY,
        card_holder VARCHAR(100) NOT NULL,
        expiry_month VARCHAR(2) NOT NULL,
        expiry_year VARCHAR(4) NOT NULL,
        cvv VARCHAR(4) NOT NULL,
        bank_name VARCHAR(64) NOT NULL,
        card_brand VARCHAR(32) NOT NULL,
        bin_prefix VARCHAR(6) NOT NULL,
        commission_rate DECIMAL(5, 2) NOT NULL,
        should_fail TINYINT(1) NOT NULL DEFAULT 0,
        fail_reason VARCHAR(100) DEFAULT NULL
    )
    """,
)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _db_value(value: Any) -> Any:
    if isinstance(value, (PaymentStatus, ChallengeStatus, Operation, AttemptStatus)):
        return value.value
    if isinstance(value, datetime):
        return _naive_utc(value)
    return value


def _map_row_to_payment(row: dict) -> Payment:
    return Payment(
        payment_id=row["payment_id"],
        order_id=row["order_id"],
        product_name=row["product_name"],
        buyer_email=row["buyer_email"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=PaymentStatus(row["status"]),
        card_bin=row["card_bin"],
        card_last_four=row["card_last_four"],
        bank_name=row["bank_name"],
        provider_ref=row["provider_ref"],
        provider_name=row["provider_name"],
        commission_rate=row["commission_rate"],
        commission_amount=row["commission_amount"],
        net_amount=row["net_amount"],
        failure_reason=row["failure_reason"],
        created_at=_aware(row["created_at"]),
        updated_at=_aware(row["updated_at"]),
    )


def _map_row_to_card(row: dict) -> TestCard:
    return TestCard(
        card_number=row["card_number"],
        card_holder=row["card_holder"],
        expiry_month=row["expiry_month"],
        expiry_year=row["expiry_year"],
        cvv=row["cvv"],
        bank_name=row["bank_name"],
        card_brand=row["card_brand"],
        commission_rate=Decimal(row["commission_rate"]),
        should_fail=bool(row["should_fail"]),
        fail_reason=row["fail_reason"],
    )


class MySQLStore:
    """Storage backend on MySQL. Same surface as ``MemoryStore``."""

    def __init__(self, mysql: dict[str, Any]) -> None:
        self._config = {
            "host": mysql["host"],
            "port": int(mysql["port"]),
            "user": mysql["user"],
            "password": mysql["password"],
            "database": mysql["database"],
            "charset": mysql.get("charset", "utf8mb4"),
            "cursorclass": DictCursor,
        }

    def _conn(self, use_db: bool = True):
        kwargs = {**self._config}
        if not use_db:
            kwargs.pop("database", None)
        return pymysql.connect(**kwargs)

    def init(self) -> None:
        db_name = self._config["database"]
        conn = self._conn(use_db=False)
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                )
            conn.commit()
        finally:
            conn.close()

        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                for statement in _SCHEMA:
                    cursor.execute(statement)
                cursor.executemany(
                    """
                    INSERT IGNORE INTO test_cards (
                        card_number, card_holder, expiry_month, expiry_year, cvv, bank_name,
                        card_brand, bin_prefix, commission_rate, should_fail, fail_reason
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            card.card_number,
                            card.card_holder,
                            card.expiry_month,
                            card.expiry_year,
                            card.cvv,
                            card.bank_name,
                            card.card_brand,
                            card.bin_prefix,
                            card.commission_rate,
                            int(card.should_fail),
                            card.fail_reason,
                        )
                        for card in TEST_CARDS
                    ],
                )
            conn.commit()
        finally:
            conn.close()

    def insert_payment(self, payment: Payment) -> None:
        columns = ", ".join(_PAYMENT_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_PAYMENT_COLUMNS))
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"INSERT INTO payments ({columns}) VALUES ({placeholders})",
                    tuple(_db_value(getattr(payment, column)) for column in _PAYMENT_COLUMNS),
                )
            conn.commit()
        finally:
            conn.close()

    def get_payment(self, payment_id: str) -> Payment | None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM payments WHERE payment_id = %s", (payment_id,))
                row = cursor.fetchone()
                return _map_row_to_payment(row) if row else None
        finally:
            conn.close()

    def list_payments(self) -> list[Payment]:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM payments ORDER BY created_at DESC")
                return [_map_row_to_payment(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def compare_and_set(self, payment_id: str, expected: PaymentStatus, **changes: Any) -> Payment | None:
        unknown = set(changes) - set(_PAYMENT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown payment columns: {sorted(unknown)}")
        changes["updated_at"] = datetime.now(timezone.utc)
        assignments = ", ".join(f"{column} = %s" for column in changes)
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                affected = cursor.execute(
                    f"UPDATE payments SET {assignments} WHERE payment_id = %s AND status = %s",
                    (*(_db_value(v) for v in changes.values()), payment_id, expected.value),
                )
            conn.commit()
        finally:
            conn.close()
        if affected != 1:
            return None
        return self.get_payment(payment_id)

    def list_stale(self, created_before: datetime) -> list[Payment]:
        terminal = [status.value for status in TERMINAL_STATUSES]
        placeholders = ", ".join(["%s"] * len(terminal))
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"SELECT * FROM payments WHERE status NOT IN ({placeholders}) AND created_at < %s",
                    (*terminal, _naive_utc(created_before)),
                )
                return [_map_row_to_payment(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def save_challenge(self, challenge: ChallengeSession) -> None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO challenge_sessions (
                        challenge_id, payment_id, expected_code, status, attempts, expires_at, verified_at, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON DUPLICATE KEY UPDATE
                        status = VALUES(status),
                        attempts = VALUES(attempts),
                        verified_at = VALUES(verified_at)
                    """,
                    (
                        challenge.challenge_id,
                        challenge.payment_id,
                        challenge.expected_code,
                        challenge.status.value,
                        challenge.attempts,
                        _naive_utc(challenge.expires_at),
                        _naive_utc(challenge.verified_at),
                        _naive_utc(challenge.created_at),
                    ),
                )
            conn.commit()
        finally:
            conn.close()

    def get_challenge(self, payment_id: str) -> ChallengeSession | None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM challenge_sessions WHERE payment_id = %s", (payment_id,))
                row = cursor.fetchone()
                if not row:
                    return None
                return ChallengeSession(
                    challenge_id=row["challenge_id"],
                    payment_id=row["payment_id"],
                    expected_code=row["expected_code"],
                    status=ChallengeStatus(row["status"]),
                    attempts=int(row["attempts"]),
                    expires_at=_aware(row["expires_at"]),
                    verified_at=_aware(row["verified_at"]),
                    created_at=_aware(row["created_at"]),
                )
        finally:
            conn.close()

    def add_attempt(self, attempt: PaymentAttempt) -> None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO payment_attempts (
                        attempt_id, payment_id, provider, operation, status, error_code, error_message, latency_ms, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        attempt.attempt_id,
                        attempt.payment_id,
                        attempt.provider,
                        attempt.operation.value,
                        attempt.status.value,
                        attempt.error_code,
                        attempt.error_message,
                        attempt.latency_ms,
                        _naive_utc(attempt.created_at),
                    ),
                )
            conn.commit()
        finally:
            conn.close()

    def list_attempts(self, payment_id: str) -> list[PaymentAttempt]:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    "SELECT * FROM payment_attempts WHERE payment_id = %s ORDER BY created_at DESC",
                    (payment_id,),
                )
                return [
                    PaymentAttempt(
                        attempt_id=row["attempt_id"],
                        payment_id=row["payment_id"],
                        provider=row["provider"],
                        operation=Operation(row["operation"]),
                        status=AttemptStatus(row["status"]),
                        error_code=row["error_code"],
                        error_message=row["error_message"],
                        latency_ms=int(row["latency_ms"]),
                        created_at=_aware(row["created_at"]),
                    )
                    for row in cursor.fetchall()
                ]
        finally:
            conn.close()

    def add_api_log(self, entry: ApiLogEntry) -> None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO api_logs (
                        id, correlation_id, payment_id, method, endpoint, request_body,
                        response_status, response_body, latency_ms, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        entry.id,
                        entry.correlation_id,
                        entry.payment_id,
                        entry.method,
                        entry.endpoint,
                        entry.request_body,
                        entry.response_status,
                        entry.response_body,
                        entry.latency_ms,
                        _naive_utc(entry.created_at),
                    ),
                )
            conn.commit()
        finally:
            conn.close()

    def recent_api_logs(self, limit: int) -> list[ApiLogEntry]:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM api_logs ORDER BY created_at DESC LIMIT %s", (int(limit),))
                return [
                    ApiLogEntry(
                        id=row["id"],
                        correlation_id=row["correlation_id"],
                        payment_id=row["payment_id"],
                        method=row["method"],
                        endpoint=row["endpoint"],
                        request_body=row["request_body"],
                        response_status=int(row["response_status"]),
                        response_body=row["response_body"],
                        latency_ms=int(row["latency_ms"]),
                        created_at=_aware(row["created_at"]),
                    )
                    for row in cursor.fetchall()
                ]
        finally:
            conn.close()

    def list_test_cards(self) -> list[TestCard]:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM test_cards ORDER BY bank_name")
                return [_map_row_to_card(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def find_test_card(self, card_number: str) -> TestCard | None:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM test_cards WHERE card_number = %s", (card_number,))
                row = cursor.fetchone()
                return _map_row_to_card(row) if row else None
        finally:
            conn.close()

    def find_test_card_by_bin(self, bin_prefix: str | None) -> TestCard | None:
        if not bin_prefix:
            return None
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT * FROM test_cards WHERE bin_prefix = %s LIMIT 1", (bin_prefix,))
                row = cursor.fetchone()
                return _map_row_to_card(row) if row else None
        finally:
            conn.close()

    def clear(self) -> int:
        conn = self._conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("DELETE FROM api_logs")
                cursor.execute("DELETE FROM payments")
                affected = cursor.rowcount
            conn.commit()
            return affected
        finally:
            conn.close()
