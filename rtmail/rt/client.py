"""Client for RT's mail gateway.

The only operation is ``postmail(recipient, message)``. The recipient is
routed to a queue and action with AddressRouter, then the raw message is
posted as form data (``queue``, ``action``, ``message``) to the configured
gateway URL.

Failure contract:
  - QueueNotFoundError: recipient has no configured queue (HTTP 404 upstream)
  - RTError: anything else, transport or RT side (HTTP 503 upstream)
"""

from __future__ import annotations

import os
from typing import Protocol

import requests

from rtmail.common.deadline import clamp_timeout
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_rt_post

from .router import AddressRouter
from .schemas import RTConfig, load_rt_config

logger = get_enhanced_logger(__name__)

RT_CONNECT_TIMEOUT = float(os.getenv("RT_CONNECT_TIMEOUT", "5"))
RT_READ_TIMEOUT = float(os.getenv("RT_READ_TIMEOUT", "10"))


class RTError(Exception):
    """Posting to RT failed."""

    not_found = False


class QueueNotFoundError(RTError):
    """No queue is configured for the recipient."""

    not_found = True

    def __init__(self, recipient: str):
        super().__init__(f"Queue not found for {recipient!r}")
        self.recipient = recipient


class TicketingClient(Protocol):
    """What the webhook handlers need from the ticketing system."""

    def postmail(self, recipient: str, message: str | bytes, deadline: float | None = None) -> None: ...


class RTClient:
    """Posts inbound mail to RT's NoAuth mail gateway."""

    def __init__(
        self,
        config: RTConfig,
        session: requests.Session | None = None,
        timeout: tuple[float, float] = (RT_CONNECT_TIMEOUT, RT_READ_TIMEOUT),
    ):
        self.config = config
        self.router = AddressRouter(config.queues)
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_file(cls, path: str, **kwargs) -> RTClient:
        return cls(load_rt_config(path), **kwargs)

    def postmail(self, recipient: str, message: str | bytes, deadline: float | None = None) -> None:
        """Send ``message`` to the RT queue matching ``recipient``.

        The post timeout is clamped to the time left before ``deadline``.

        Raises:
            QueueNotFoundError: recipient is not routable
            RTError: RT could not be reached or rejected the message
            DeadlineExceededError: deadline passed before the post started
        """
        route = self.router.resolve(recipient)
        if not route.found:
            track_rt_post("not_found")
            logger.info("No RT queue for recipient", extra_fields={"recipient": recipient})
            raise QueueNotFoundError(recipient)

        logger.info(
            "Posting to RT queue",
            extra_fields={"queue": route.queue, "action": route.action.value, "recipient": recipient},
        )

        timeout = clamp_timeout(self.timeout, deadline)
        form = {"queue": route.queue, "action": route.action.value, "message": message}
        try:
            resp = self.session.post(self.config.rt_url, data=form, timeout=timeout)
        except requests.exceptions.RequestException as e:
            track_rt_post("error")
            raise RTError(f"postform err: {e}") from e

        body = resp.text
        logger.debug(
            "RT response", extra_fields={"status_code": resp.status_code, "body": body[:500]}
        )

        if "failure" in body:
            track_rt_post("error")
            raise RTError("RT failure")

        if resp.status_code > 299:
            track_rt_post("error")
            raise RTError(f"status code {resp.status_code} (>299)")

        track_rt_post("ok")
