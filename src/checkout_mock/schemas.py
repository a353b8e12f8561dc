"""Pydantic schemas for the checkout protocol bodies.

Shared by the gateway service (request parsing, response rendering) and the
protocol client (response parsing). Money is ``Decimal`` and travels as a JSON
string so minor units survive the round trip.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"


class CreateOrderRequest(BaseModel):
    """Order create request (POST /orders)."""

    productName: str = Field(..., min_length=1, max_length=255, examples=["Wireless Headphones"])
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, examples=["1500.00"])
    email: str = Field(..., max_length=255, examples=["demo@test.com"])


class OrderCreatedResponse(BaseModel):
    paymentId: str
    orderId: str
    amount: Decimal
    status: str = "CREATED"


class CardPaymentRequest(BaseModel):
    """Card data for POST /payments/{paymentId}/pay. Never echoed back."""

    cardNumber: str = Field(..., examples=["4508034508034509"])
    cardHolder: str = Field(..., examples=["AHMET YILMAZ"])
    expiryMonth: str = Field(..., examples=["12"])
    expiryYear: str = Field(..., examples=["2030"])
    cvv: str = Field(..., examples=["000"])


class PayResponse(BaseModel):
    status: str = Field(..., description="REQUIRES_3DS or FAILED")
    proceed: bool = False
    message: str | None = None
    bankName: str | None = None
    challengeId: str | None = None
    providerReference: str | None = None


class VerifyChallengeRequest(BaseModel):
    otp: str = Field(..., examples=["111111"])


class VerifyChallengeResponse(BaseModel):
    success: bool
    code: str | None = None
    message: str | None = None
    providerReference: str | None = None


class PaymentView(BaseModel):
    """Read-side projection of a payment. Card data is masked."""

    paymentId: str
    orderId: str
    productName: str
    amount: Decimal
    currency: str
    status: str
    cardInfo: str | None = None
    bankName: str | None = None
    providerRef: str | None = None
    providerName: str | None = None
    commissionRate: Decimal | None = None
    commissionAmount: Decimal | None = None
    netAmount: Decimal | None = None
    failureReason: str | None = None
    createdAt: datetime


class AttemptView(BaseModel):
    id: str
    provider: str
    operation: str
    status: str
    errorCode: str | None = None
    errorMessage: str | None = None
    latencyMs: int
    createdAt: datetime


class PaymentDetailResponse(PaymentView):
    attempts: list[AttemptView] = Field(default_factory=list)


class TestCardView(BaseModel):
    maskedNumber: str
    fullNumber: str
    holder: str
    expiryMonth: str
    expiryYear: str
    cvv: str
    bankName: str
    brand: str
    commission: Decimal
    willFail: bool


class ApiLogView(BaseModel):
    id: str
    correlationId: str
    paymentId: str | None = None
    method: str
    endpoint: str
    requestBody: str | None = None
    responseStatus: int
    responseBody: str | None = None
    latencyMs: int
    createdAt: datetime


class ApiLogStats(BaseModel):
    totalRequests: int
    successRequests: int
    errorRequests: int
    errorRate: float
    avgLatency: float
    p50Latency: int
    p95Latency: int
    p99Latency: int


class DashboardMetrics(ApiLogStats):
    totalPayments: int
    capturedPayments: int
    failedPayments: int
    successRate: float
    totalRevenue: Decimal
    totalCommission: Decimal
    netRevenue: Decimal
    providerDistribution: dict[str, int] = Field(default_factory=dict)


class FieldErrorView(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    errorCode: str
    message: str
    traceId: str | None = None
    details: list[FieldErrorView] | None = None
