"""
Observability package for rt-mail.

Provides Prometheus metrics and the /metrics handler.
"""

from rtmail.observability.metrics import (
    get_metrics_handler,
    track_cert_cache,
    track_dispatch,
    track_email_fetch,
    track_provider_request,
    track_rt_post,
    track_sns_verify,
)

__all__ = [
    "track_sns_verify",
    "track_cert_cache",
    "track_dispatch",
    "track_email_fetch",
    "track_rt_post",
    "track_provider_request",
    "get_metrics_handler",
]
