"""Dashboard aggregates derived from payments and API logs. Read-only."""

from collections import Counter
from decimal import Decimal
from typing import Iterable, Sequence

from checkout_mock.models import ApiLogEntry, Payment, PaymentStatus
from checkout_mock.schemas import ApiLogStats, DashboardMetrics


def percentile(sorted_values: Sequence[int], quantile: float) -> int:
    if not sorted_values:
        return 0
    index = min(int(len(sorted_values) * quantile), len(sorted_values) - 1)
    return sorted_values[index]


def api_log_stats(logs: Iterable[ApiLogEntry]) -> ApiLogStats:
    logs = list(logs)
    total = len(logs)
    success = sum(1 for log in logs if 200 <= log.response_status < 300)
    errors = sum(1 for log in logs if log.response_status >= 400)
    latencies = sorted(log.latency_ms for log in logs)
    return ApiLogStats(
        totalRequests=total,
        successRequests=success,
        errorRequests=errors,
        errorRate=(errors * 100.0 / total) if total else 0.0,
        avgLatency=(sum(latencies) / total) if total else 0.0,
        p50Latency=percentile(latencies, 0.50),
        p95Latency=percentile(latencies, 0.95),
        p99Latency=percentile(latencies, 0.99),
    )


def payment_metrics(payments: Iterable[Payment], logs: Iterable[ApiLogEntry]) -> DashboardMetrics:
    payments = list(payments)
    captured = [p for p in payments if p.status == PaymentStatus.CAPTURED]
    failed = sum(1 for p in payments if p.status == PaymentStatus.FAILED)

    total_revenue = sum((p.amount for p in captured), Decimal("0.00"))
    total_commission = sum((p.commission_amount or Decimal("0.00") for p in captured), Decimal("0.00"))
    providers = Counter(p.provider_name for p in captured if p.provider_name)

    stats = api_log_stats(logs)
    return DashboardMetrics(
        totalPayments=len(payments),
        capturedPayments=len(captured),
        failedPayments=failed,
        successRate=(len(captured) * 100.0 / len(payments)) if payments else 0.0,
        totalRevenue=total_revenue,
        totalCommission=total_commission,
        netRevenue=total_revenue - total_commission,
        providerDistribution=dict(providers),
        **stats.model_dump(),
    )
