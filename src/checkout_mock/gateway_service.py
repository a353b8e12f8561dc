"""Gateway API: create order, pay with card, verify 3DS, read payments, logs and metrics."""

import json
import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from checkout_mock import __version__
from checkout_mock.config import load_config
from checkout_mock.errors import CheckoutError
from checkout_mock.gateway import PaymentGateway
from checkout_mock.metrics import api_log_stats, payment_metrics
from checkout_mock.models import ApiLogEntry, Payment, PaymentAttempt, TestCard
from checkout_mock.observability import (
    CORRELATION_ID_HEADER,
    bind_correlation_id,
    ensure_file_logger,
    extract_payment_id,
    get_correlation_id,
    mask_fields,
    mask_sensitive_data,
    reset_correlation_id,
    should_capture,
    truncate,
)
from checkout_mock.schemas import (
    ApiLogStats,
    ApiLogView,
    AttemptView,
    CardPaymentRequest,
    CreateOrderRequest,
    DashboardMetrics,
    ErrorResponse,
    FieldErrorView,
    HealthResponse,
    OrderCreatedResponse,
    PayResponse,
    PaymentDetailResponse,
    PaymentView,
    TestCardView,
    VerifyChallengeRequest,
    VerifyChallengeResponse,
)
from checkout_mock.store import build_store
from checkout_mock.validators import mask_card

logger = logging.getLogger(__name__)


def _log_request_packet(route: str, payload: dict) -> None:
    """Log request packet in pretty JSON format."""
    logger.info("%s request packet:\n%s", route, json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _log_response_packet(route: str, payload: dict) -> None:
    """Log response packet in pretty JSON format."""
    logger.info("%s response packet:\n%s", route, json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _payment_view(payment: Payment) -> PaymentView:
    return PaymentView(
        paymentId=payment.payment_id,
        orderId=payment.order_id,
        productName=payment.product_name,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        cardInfo=payment.card_info,
        bankName=payment.bank_name,
        providerRef=payment.provider_ref,
        providerName=payment.provider_name,
        commissionRate=payment.commission_rate,
        commissionAmount=payment.commission_amount,
        netAmount=payment.net_amount,
        failureReason=payment.failure_reason,
        createdAt=payment.created_at,
    )


def _attempt_view(attempt: PaymentAttempt) -> AttemptView:
    return AttemptView(
        id=attempt.attempt_id,
        provider=attempt.provider,
        operation=attempt.operation.value,
        status=attempt.status.value,
        errorCode=attempt.error_code,
        errorMessage=attempt.error_message,
        latencyMs=attempt.latency_ms,
        createdAt=attempt.created_at,
    )


def _test_card_view(card: TestCard) -> TestCardView:
    return TestCardView(
        maskedNumber=mask_card(card.card_number),
        fullNumber=card.card_number,
        holder=card.card_holder,
        expiryMonth=card.expiry_month,
        expiryYear=card.expiry_year,
        cvv=card.cvv,
        bankName=card.bank_name,
        brand=card.card_brand,
        commission=card.commission_rate,
        willFail=card.should_fail,
    )


def _api_log_view(entry: ApiLogEntry) -> ApiLogView:
    return ApiLogView(
        id=entry.id,
        correlationId=entry.correlation_id,
        paymentId=entry.payment_id,
        method=entry.method,
        endpoint=entry.endpoint,
        requestBody=entry.request_body,
        responseStatus=entry.response_status,
        responseBody=entry.response_body,
        latencyMs=entry.latency_ms,
        createdAt=entry.created_at,
    )


def _error_response(status_code: int, error_code: str, message: str, details: list[FieldErrorView] | None = None) -> JSONResponse:
    body = ErrorResponse(errorCode=error_code, message=message, traceId=get_correlation_id(), details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def _stale_payment_reaper(gateway: PaymentGateway, stop: threading.Event, interval: float) -> None:
    """Background thread: cancel checkouts abandoned in CREATED or AUTHORIZED."""
    while not stop.is_set():
        try:
            gateway.expire_stale()
        except Exception as e:
            logger.exception("Stale payment reaper error: %s", e)
        stop.wait(interval)


def create_app(
    config: dict[str, Any] | None = None,
    gateway: PaymentGateway | None = None,
    run_reaper: bool = True,
) -> FastAPI:
    config = config or load_config()
    settings = config["gateway"]
    if gateway is None:
        gateway = PaymentGateway(build_store(config), settings)

    log_path = config["logging"].get("gateway_log")
    if log_path:
        ensure_file_logger(logging.getLogger("checkout_mock"), log_path, config["logging"]["format"])

    body_limit = int(settings["api_log_body_limit"])
    stop_reaper = threading.Event()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        gateway.store.init()
        if run_reaper:
            stop_reaper.clear()
            reaper = threading.Thread(
                target=_stale_payment_reaper,
                args=(gateway, stop_reaper, float(settings["reaper_interval_seconds"])),
                daemon=True,
            )
            reaper.start()
        logger.info("gateway service startup")
        try:
            yield
        finally:
            stop_reaper.set()
            logger.info("gateway service shutdown")

    app = FastAPI(
        title="Checkout Gateway API",
        version=__version__,
        description="Simulated card checkout with 3D Secure step-up",
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    @app.middleware("http")
    async def capture_api_call(request: Request, call_next):
        token = bind_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        correlation_id = get_correlation_id()
        started = time.monotonic()
        try:
            raw_request = await request.body()
            response = await call_next(request)
            raw_response = b"".join([chunk async for chunk in response.body_iterator])
            latency_ms = int((time.monotonic() - started) * 1000)

            endpoint = request.url.path
            if request.url.query:
                endpoint = f"{endpoint}?{request.url.query}"
            if should_capture(request.url.path):
                try:
                    await run_in_threadpool(
                        gateway.record_api_log,
                        ApiLogEntry(
                            method=request.method,
                            endpoint=endpoint,
                            response_status=response.status_code,
                            latency_ms=latency_ms,
                            correlation_id=correlation_id,
                            payment_id=extract_payment_id(request.url.path),
                            request_body=truncate(mask_sensitive_data(raw_request.decode("utf-8", "replace") or None), body_limit),
                            response_body=truncate(raw_response.decode("utf-8", "replace") or None, body_limit),
                        ),
                    )
                except Exception:
                    logger.exception("Failed to save API log for %s %s", request.method, endpoint)

            headers = dict(response.headers)
            headers[CORRELATION_ID_HEADER] = correlation_id
            return Response(
                content=raw_response,
                status_code=response.status_code,
                headers=headers,
                media_type=response.media_type,
            )
        finally:
            reset_correlation_id(token)

    @app.exception_handler(CheckoutError)
    async def handle_checkout_error(request: Request, exc: CheckoutError) -> JSONResponse:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
        return _error_response(exc.http_status, exc.error_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Convert framework validation errors into the business 400 payload."""
        details = [
            FieldErrorView(
                field=".".join(str(loc) for loc in err.get("loc", []) if loc != "body"),
                message=str(err.get("msg", "")),
            )
            for err in exc.errors()
        ]
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, details)
        return _error_response(400, "VALIDATION_ERROR", "Request validation failed", details)

    @app.get("/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/test-cards", response_model=list[TestCardView])
    def list_test_cards() -> list[TestCardView]:
        return [_test_card_view(card) for card in gateway.list_test_cards()]

    @app.post("/orders", response_model=OrderCreatedResponse, status_code=201)
    def create_order(body: CreateOrderRequest) -> OrderCreatedResponse:
        """Create an order and its payment in CREATED."""
        _log_request_packet("POST /orders", body.model_dump(mode="json"))
        payment = gateway.create_order(body.productName, body.amount, body.email)
        response = OrderCreatedResponse(
            paymentId=payment.payment_id,
            orderId=payment.order_id,
            amount=payment.amount,
            status=payment.status.value,
        )
        _log_response_packet("POST /orders", response.model_dump(mode="json"))
        return response

    @app.post("/payments/{payment_id}/pay", response_model=PayResponse)
    def pay(payment_id: str, body: CardPaymentRequest) -> PayResponse:
        """Authorize card data; answers REQUIRES_3DS with the issuing bank, or FAILED."""
        _log_request_packet(f"POST /payments/{payment_id}/pay", mask_fields(body.model_dump(mode="json")))

        result = gateway.authorize(
            payment_id,
            card_number=body.cardNumber,
            card_holder=body.cardHolder,
            expiry_month=body.expiryMonth,
            expiry_year=body.expiryYear,
            cvv=body.cvv,
        )
        response = PayResponse(
            status=result.status,
            proceed=result.proceed,
            message=result.message,
            bankName=result.bank_name,
            challengeId=result.challenge_id,
        )
        _log_response_packet(f"POST /payments/{payment_id}/pay", response.model_dump(mode="json"))
        return response

    @app.post("/payments/{payment_id}/verify-3ds", response_model=VerifyChallengeResponse)
    def verify_3ds(payment_id: str, body: VerifyChallengeRequest) -> VerifyChallengeResponse:
        _log_request_packet(f"POST /payments/{payment_id}/verify-3ds", {"otp": "******"})
        result = gateway.verify_challenge(payment_id, body.otp)
        response = VerifyChallengeResponse(
            success=result.success,
            code=result.code,
            message=result.message,
            providerReference=result.provider_reference,
        )
        _log_response_packet(f"POST /payments/{payment_id}/verify-3ds", response.model_dump(mode="json"))
        return response

    @app.post("/payments/{payment_id}/cancel", response_model=PaymentView)
    def cancel_payment(payment_id: str) -> PaymentView:
        return _payment_view(gateway.cancel(payment_id))

    @app.get("/payments", response_model=list[PaymentView])
    def list_payments() -> list[PaymentView]:
        """All payments, newest first."""
        return [_payment_view(payment) for payment in gateway.list_payments()]

    @app.get("/payments/{payment_id}", response_model=PaymentDetailResponse)
    def get_payment(payment_id: str) -> PaymentDetailResponse:
        payment = gateway.get_payment(payment_id)
        return PaymentDetailResponse(
            **_payment_view(payment).model_dump(),
            attempts=[_attempt_view(a) for a in gateway.payment_attempts(payment_id)],
        )

    @app.get("/api-logs", response_model=list[ApiLogView])
    def list_api_logs() -> list[ApiLogView]:
        return [_api_log_view(entry) for entry in gateway.recent_api_logs()]

    @app.get("/api-logs/stats", response_model=ApiLogStats)
    def get_api_log_stats() -> ApiLogStats:
        return api_log_stats(gateway.recent_api_logs())

    @app.get("/metrics", response_model=DashboardMetrics)
    def get_metrics() -> DashboardMetrics:
        return payment_metrics(gateway.list_payments(), gateway.recent_api_logs())

    return app
