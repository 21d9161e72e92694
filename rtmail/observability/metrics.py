"""
Prometheus metrics for rt-mail.

Tracks:
- SNS signature verification results
- Signing certificate cache hits, misses and fetch failures
- SES dispatch outcomes by message kind and status code
- RT post results
- Provider webhook requests
- Size and latency of raw email fetches

Usage:
    from rtmail.observability.metrics import track_rt_post, get_metrics_handler

    track_rt_post(result="not_found")

    # Expose metrics endpoint
    app.add_route("/metrics", get_metrics_handler())
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

sns_verify_total = Counter(
    "rtmail_sns_verify_total",
    "Total SNS signature verifications",
    ["result"],  # success or the failing SNSVerificationError class name
)

cert_cache_total = Counter(
    "rtmail_cert_cache_total",
    "Signing certificate cache lookups",
    ["result"],  # hit, miss, error
)

dispatch_total = Counter(
    "rtmail_ses_dispatch_total",
    "SES notifications handled",
    ["kind", "status"],
)

rt_post_total = Counter(
    "rtmail_rt_post_total",
    "Messages posted to RT",
    ["result"],  # ok, not_found, error
)

provider_requests_total = Counter(
    "rtmail_provider_requests_total",
    "Inbound provider webhook requests",
    ["provider", "status"],
)

email_fetch_bytes = Histogram(
    "rtmail_email_fetch_bytes",
    "Size of raw emails fetched from S3",
    buckets=(1024, 10_240, 102_400, 1_048_576, 5_242_880, 10_485_760, 52_428_800),
)

email_fetch_latency_seconds = Histogram(
    "rtmail_email_fetch_latency_seconds",
    "Latency of raw email fetches from S3",
    ["result"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)


def track_sns_verify(result: str) -> None:
    sns_verify_total.labels(result=result).inc()


def track_cert_cache(result: str) -> None:
    cert_cache_total.labels(result=result).inc()


def track_dispatch(kind: str, status_code: int) -> None:
    dispatch_total.labels(kind=kind, status=str(status_code)).inc()


def track_rt_post(result: str) -> None:
    rt_post_total.labels(result=result).inc()


def track_provider_request(provider: str, status_code: int) -> None:
    provider_requests_total.labels(provider=provider, status=str(status_code)).inc()


def track_email_fetch(latency_s: float, size_bytes: int | None = None, result: str = "ok") -> None:
    """
    Track a raw email fetch.

    Args:
        latency_s: Duration of the fetch in seconds
        size_bytes: Bytes read (None when the fetch failed)
        result: "ok", "too_large" or "error"
    """
    email_fetch_latency_seconds.labels(result=result).observe(latency_s)
    if size_bytes is not None:
        email_fetch_bytes.observe(size_bytes)


def get_metrics_handler():
    """
    Get a handler for the /metrics endpoint.

    Returns:
        Async handler function for Starlette/FastAPI
    """

    async def metrics_endpoint(request):
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return metrics_endpoint
