"""rt-mail HTTP service.

Routes:
  POST /ses           SES via SNS (only when a topic ARN is configured)
  POST /mg/mx/mime    Mailgun
  POST /sendgrid/mx   SendGrid
  HEAD /spark, POST /spark, POST /spark/mx   SparkPost
  GET  /health, GET /metrics

Run with ``rt-mail --config rt-mail.json --listen :8002`` or ``python -m rtmail``.
"""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from rtmail import __version__
from rtmail.api.middleware import add_access_log_middleware
from rtmail.api.webhooks import router as ses_router
from rtmail.common.logger import get_enhanced_logger, setup_logging
from rtmail.observability import get_metrics_handler
from rtmail.providers import mailgun, sendgrid, sparkpost
from rtmail.rt.client import RTClient, TicketingClient
from rtmail.rt.schemas import ConfigError
from rtmail.ses.dispatcher import NotificationDispatcher
from rtmail.ses.storage import S3EmailStore
from rtmail.sns.cert_cache import CertificateCache
from rtmail.sns.sns_verify import SignatureVerifier

logger = get_enhanced_logger(__name__)

RT_MAIL_CONFIG = os.getenv("RT_MAIL_CONFIG", "rt-mail.json")
SES_TOPIC_ARN = os.getenv("SES_TOPIC_ARN", "")
DEFAULT_LISTEN = ":8002"


def build_ses_dispatcher(rt_client: TicketingClient, topic_arn: str) -> NotificationDispatcher:
    """Wire the SES pipeline around one process-wide certificate cache."""
    cert_cache = CertificateCache()
    return NotificationDispatcher(
        verifier=SignatureVerifier(cert_cache),
        rt_client=rt_client,
        email_store=S3EmailStore(),
        topic_arn=topic_arn,
    )


def create_app(
    rt_client: TicketingClient | None = None,
    dispatcher: NotificationDispatcher | None = None,
    rt_config_path: str | None = None,
    topic_arn: str | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        rt_client: Ticketing client; loaded from ``rt_config_path`` when None
        dispatcher: SES dispatcher; built from ``topic_arn`` when None
        rt_config_path: RT configuration file (defaults to RT_MAIL_CONFIG)
        topic_arn: SNS topic accepted on /ses (defaults to SES_TOPIC_ARN)

    Raises:
        ConfigError: If the RT configuration can't be loaded
    """
    if rt_client is None:
        rt_client = RTClient.from_file(rt_config_path or RT_MAIL_CONFIG)

    if topic_arn is None:
        topic_arn = SES_TOPIC_ARN
    if dispatcher is None and topic_arn:
        dispatcher = build_ses_dispatcher(rt_client, topic_arn)

    app = FastAPI(title="rt-mail", version=__version__)
    app.state.rt_client = rt_client
    app.state.ses_dispatcher = dispatcher

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    add_access_log_middleware(app)

    if dispatcher is not None:
        app.include_router(ses_router)
        logger.info("SES endpoint enabled", extra_fields={"topic_arn": dispatcher.topic_arn})
    else:
        logger.warning("No SNS topic ARN configured, SES endpoint disabled")

    app.include_router(mailgun.router)
    app.include_router(sendgrid.router)
    app.include_router(sparkpost.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.add_route("/metrics", get_metrics_handler())

    return app


def parse_listen(listen: str) -> tuple[str, int]:
    """Split ``host:port`` (host optional, ``:8002`` binds all interfaces)."""
    host, sep, port = listen.rpartition(":")
    if not sep:
        raise ValueError(f"listen address must be host:port, got {listen!r}")
    try:
        port_num = int(port)
    except ValueError as e:
        raise ValueError(f"invalid port in listen address {listen!r}") from e
    return host.strip("[]") or "0.0.0.0", port_num


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rt-mail", description="Relay inbound email webhooks to RT")
    parser.add_argument("--config", default=RT_MAIL_CONFIG, help="RT configuration file")
    parser.add_argument("--listen", default=DEFAULT_LISTEN, help="Listen address (host:port)")
    parser.add_argument("--cert", default=None, help="TLS certificate file")
    parser.add_argument("--key", default=None, help="TLS key file")
    parser.add_argument("--topic-arn", default=SES_TOPIC_ARN, help="SNS topic ARN accepted on /ses")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        app = create_app(rt_config_path=args.config, topic_arn=args.topic_arn)
    except ConfigError as e:
        logger.error("Failed to load configuration", extra_fields={"error": str(e)})
        return 1

    try:
        host, port = parse_listen(args.listen)
    except ValueError as e:
        logger.error("Invalid listen address", extra_fields={"error": str(e)})
        return 1

    if bool(args.cert) != bool(args.key):
        logger.error("--cert and --key must be given together")
        return 1

    logger.info(
        "Starting rt-mail",
        extra_fields={"host": host, "port": port, "tls": bool(args.cert), "version": __version__},
    )
    uvicorn.run(
        app,
        host=host,
        port=port,
        ssl_certfile=args.cert,
        ssl_keyfile=args.key,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
