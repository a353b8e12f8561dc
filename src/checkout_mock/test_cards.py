"""Seeded card fixtures. Demo convenience only, outside the trust boundary."""

from decimal import Decimal

from checkout_mock.models import TestCard

TEST_CARDS: tuple[TestCard, ...] = (
    TestCard(
        card_number="4508034508034509",
        card_holder="AHMET YILMAZ",
        expiry_month="12",
        expiry_year="2030",
        cvv="000",
        bank_name="Garanti BBVA",
        card_brand="VISA",
        commission_rate=Decimal("1.99"),
    ),
    TestCard(
        card_number="5528790000000008",
        card_holder="AYSE KAYA",
        expiry_month="12",
        expiry_year="2030",
        cvv="001",
        bank_name="Akbank",
        card_brand="MASTERCARD",
        commission_rate=Decimal("2.29"),
    ),
    TestCard(
        card_number="4157920000000002",
        card_holder="MEHMET DEMIR",
        expiry_month="01",
        expiry_year="2029",
        cvv="123",
        bank_name="Yapi Kredi",
        card_brand="VISA",
        commission_rate=Decimal("2.49"),
    ),
    TestCard(
        card_number="5401341234567891",
        card_holder="ZEYNEP CELIK",
        expiry_month="06",
        expiry_year="2031",
        cvv="456",
        bank_name="Is Bankasi",
        card_brand="MASTERCARD",
        commission_rate=Decimal("1.79"),
    ),
    TestCard(
        card_number="4111111111111111",
        card_holder="FAIL INSUFFICIENT",
        expiry_month="12",
        expiry_year="2030",
        cvv="123",
        bank_name="Ziraat Bankasi",
        card_brand="VISA",
        commission_rate=Decimal("2.10"),
        should_fail=True,
        fail_reason="Insufficient funds",
    ),
    TestCard(
        card_number="5555555555554444",
        card_holder="FAIL BLOCKED",
        expiry_month="12",
        expiry_year="2030",
        cvv="321",
        bank_name="Halkbank",
        card_brand="MASTERCARD",
        commission_rate=Decimal("2.10"),
        should_fail=True,
        fail_reason="Card blocked by issuer",
    ),
)
