import pytest

from checkout_mock.validators import (
    card_info,
    is_valid_card_number,
    is_valid_challenge_code,
    is_valid_cvv,
    is_valid_email,
    is_valid_expiry,
    mask_card,
    normalize_card_number,
)


@pytest.mark.case(point="Card number accepts 13-19 digits, spaces ignored")
@pytest.mark.parametrize(
    "value, expected",
    [
        ("4508034508034509", True),
        ("4508 0345 0803 4509", True),
        ("4222222222222", True),
        ("4" * 19, True),
        ("4" * 12, False),
        ("4" * 20, False),
        ("4508-0345-0803-4509", False),
        ("", False),
        (None, False),
    ],
)
def test_card_number_validation(value, expected):
    assert is_valid_card_number(value) is expected


@pytest.mark.case(point="Expiry month 1-12 and year YY or YYYY within 2000-2099")
@pytest.mark.parametrize(
    "month, year, expected",
    [
        ("12", "2030", True),
        ("1", "29", True),
        ("01", "2099", True),
        ("00", "2030", False),
        ("13", "2030", False),
        ("012", "2030", False),
        ("12", "1999", False),
        ("12", "2100", False),
        ("12", "203", False),
        ("ab", "2030", False),
    ],
)
def test_expiry_validation(month, year, expected):
    assert is_valid_expiry(month, year) is expected


@pytest.mark.case(point="CVV is 3 or 4 digits")
def test_cvv_validation():
    assert is_valid_cvv("000")
    assert is_valid_cvv("1234")
    assert not is_valid_cvv("12")
    assert not is_valid_cvv("12345")
    assert not is_valid_cvv("12a")


@pytest.mark.case(point="Challenge code must be exactly six ASCII digits")
@pytest.mark.parametrize("code", ["12345", "1234567", "12345a", " 111111", "111111 ", "", "１１１１１１"])
def test_challenge_code_rejects_malformed(code):
    assert not is_valid_challenge_code(code)


def test_challenge_code_accepts_six_digits():
    assert is_valid_challenge_code("111111")
    assert is_valid_challenge_code("000000")


def test_email_validation():
    assert is_valid_email("demo@test.com")
    assert not is_valid_email("demo@test")
    assert not is_valid_email("demo test@test.com")
    assert not is_valid_email("")


@pytest.mark.case(point="Card masking keeps BIN and last four only")
def test_mask_card_and_card_info():
    assert normalize_card_number(" 4508 0345 0803 4509 ") == "4508034508034509"
    assert mask_card("4508034508034509") == "450803******4509"
    assert card_info("450803", "4509") == "450803****4509"
    assert card_info(None, "4509") is None
