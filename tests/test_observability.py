import json
import logging

import pytest

from checkout_mock.observability import (
    CorrelationIdFilter,
    bind_correlation_id,
    ensure_file_logger,
    extract_payment_id,
    get_correlation_id,
    mask_sensitive_data,
    reset_correlation_id,
    should_capture,
    truncate,
)


@pytest.mark.case(point="Request bodies are masked before they are stored")
def test_mask_sensitive_data():
    body = '{"cardNumber": "4508 0345 0803 4509", "cardHolder": "AHMET YILMAZ", "cvv": "000"}'

    masked = mask_sensitive_data(body)

    assert "4508 0345 0803 4509" not in masked
    assert '"cardNumber":"450803******4509"' in masked
    assert '"cvv":"***"' in masked
    assert "AHMET YILMAZ" in masked
    assert mask_sensitive_data(None) is None


@pytest.mark.parametrize(
    "card_number, cvv",
    [
        ("4508\t0345\t0803\t4509", "000"),
        ("4508-0345-0803-4509", "000"),
        ("4508034508034509", " 000"),
        ("4508034508034509", 0),
    ],
)
def test_mask_sensitive_data_any_formatting(card_number, cvv):
    body = json.dumps({"cardNumber": card_number, "cvv": cvv, "nested": [{"cvv": "123"}]})

    masked = json.loads(mask_sensitive_data(body))

    assert masked == {"cardNumber": "450803******4509", "cvv": "***", "nested": [{"cvv": "***"}]}


def test_mask_sensitive_data_short_or_unparseable():
    assert json.loads(mask_sensitive_data('{"cardNumber": "1234"}')) == {"cardNumber": "***"}
    assert mask_sensitive_data("cardNumber=4508034508034509") == "***"


def test_truncate():
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
    assert truncate(None, 3) is None


def test_extract_payment_id():
    assert extract_payment_id("/payments/5f0c8a52-4f5c-4e53-9d4c-2f6a3c1b9e10/pay") == "5f0c8a52-4f5c-4e53-9d4c-2f6a3c1b9e10"
    assert extract_payment_id("/payments") is None
    assert extract_payment_id("/orders") is None


def test_should_capture():
    assert should_capture("/orders")
    assert not should_capture("/healthz")
    assert not should_capture("/docs")


def test_correlation_id_binding():
    token = bind_correlation_id("trace-1")
    try:
        assert get_correlation_id() == "trace-1"
        record = logging.LogRecord("checkout_mock", logging.INFO, __file__, 1, "msg", None, None)
        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "trace-1"
    finally:
        reset_correlation_id(token)
    assert get_correlation_id() == "-"


def test_bind_generates_id_when_missing():
    token = bind_correlation_id(None)
    try:
        assert len(get_correlation_id()) == 36
    finally:
        reset_correlation_id(token)


@pytest.mark.case(point="Gateway file log handler is attached once")
def test_ensure_file_logger_attaches_once(tmp_path):
    logger = logging.getLogger("checkout_mock.test_file_logger")
    log_path = tmp_path / "gateway.log"
    try:
        ensure_file_logger(logger, str(log_path), "%(correlation_id)s %(message)s")
        ensure_file_logger(logger, str(log_path), "%(correlation_id)s %(message)s")
        handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 1

        logger.info("hello")
        handlers[0].flush()
        assert log_path.read_text(encoding="utf-8").strip() == "- hello"
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
