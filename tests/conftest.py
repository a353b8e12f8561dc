import copy
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from checkout_mock.client import PaymentClient
from checkout_mock.config import DEFAULT_CONFIG
from checkout_mock.gateway import PaymentGateway
from checkout_mock.gateway_service import create_app
from checkout_mock.store import MemoryStore


_CASE_RESULTS: list[dict[str, str]] = []

GOOD_CARD = {
    "cardNumber": "4508034508034509",
    "cardHolder": "AHMET YILMAZ",
    "expiryMonth": "12",
    "expiryYear": "2030",
    "cvv": "000",
}
FAILING_CARD = {
    "cardNumber": "4111111111111111",
    "cardHolder": "FAIL INSUFFICIENT",
    "expiryMonth": "12",
    "expiryYear": "2030",
    "cvv": "123",
}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "case(point, keyword='N/A'): annotate testcase with test point and payment keyword",
    )


@pytest.fixture
def record_payment_keyword(request: pytest.FixtureRequest):
    def _record(keyword: str) -> None:
        request.node.user_properties.append(("payment_keyword", str(keyword)))

    return _record


@pytest.fixture
def gateway_config() -> dict:
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["logging"]["gateway_log"] = ""
    return config


@pytest.fixture
def good_card() -> dict:
    return dict(GOOD_CARD)


@pytest.fixture
def failing_card() -> dict:
    return dict(FAILING_CARD)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gateway(store: MemoryStore, gateway_config: dict) -> PaymentGateway:
    return PaymentGateway(store, gateway_config["gateway"])


@pytest.fixture
def api_client(gateway: PaymentGateway, gateway_config: dict):
    app = create_app(gateway_config, gateway=gateway, run_reaper=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def payment_client(api_client: TestClient) -> PaymentClient:
    """Protocol client running in-process against the gateway app."""
    return PaymentClient(http_client=api_client)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo):
    outcome = yield
    report = outcome.get_result()

    if report.when != "call":
        return

    marker = item.get_closest_marker("case")
    if marker is None:
        return

    point = str(marker.kwargs.get("point", "Unlabeled test point"))
    keyword = str(marker.kwargs.get("keyword", "N/A"))
    for key, value in item.user_properties:
        if key == "payment_keyword":
            keyword = str(value)

    _CASE_RESULTS.append(
        {
            "case": item.name,
            "status": report.outcome,
            "point": point,
            "keyword": keyword,
        }
    )


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    if not _CASE_RESULTS:
        return

    report_dir = Path(session.config.rootpath) / "tests" / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    report_file = report_dir / "checkout-test-execution-report.md"

    passed = sum(1 for row in _CASE_RESULTS if row["status"] == "passed")
    failed = sum(1 for row in _CASE_RESULTS if row["status"] == "failed")

    lines = [
        "# Checkout Test Execution Report",
        "",
        f"- Total test cases: {len(_CASE_RESULTS)}",
        f"- Passed: {passed}",
        f"- Failed: {failed}",
        "",
        "## Case Details",
        "| No. | Test Case | Result | Test Point | Payment Keyword |",
        "|---:|---|---|---|---|",
    ]
    for index, row in enumerate(_CASE_RESULTS, start=1):
        lines.append(f"| {index} | {row['case']} | {row['status']} | {row['point']} | {row['keyword']} |")

    report_file.write_text("\n".join(lines), encoding="utf-8")
