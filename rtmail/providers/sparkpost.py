"""SparkPost webhooks.

- HEAD /spark      webhook URL check
- POST /spark      event batches, logged and acknowledged
- POST /spark/mx   inbound relay batches, each message posted to RT

Both POST bodies are JSON arrays of ``{"msys": {<event class>: {...}}}``.
For relay batches the inner object is a relay message::

    {"msg_from": "...", "rcpt_to": "...",
     "content": {"email_rfc822": "...", "email_rfc822_is_base64": false, "subject": "..."}}
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from starlette.concurrency import run_in_threadpool

from rtmail.api.middleware import read_body_limited, status_response
from rtmail.common.deadline import new_deadline
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_provider_request
from rtmail.rt.relay import relay_message

logger = get_enhanced_logger(__name__)

router = APIRouter(tags=["sparkpost"])

MAX_BODY_BYTES = 50 * 1024 * 1024


class RelayContent(BaseModel):
    email_rfc822: str = ""
    email_rfc822_is_base64: bool = False
    subject: str = ""

    def raw_email(self) -> str | bytes:
        if self.email_rfc822_is_base64:
            return base64.b64decode(self.email_rfc822)
        return self.email_rfc822


class RelayMessage(BaseModel):
    msg_from: str = ""
    rcpt_to: str = ""
    content: RelayContent = Field(default_factory=RelayContent)


class MsysWrapper(BaseModel):
    msys: dict[str, dict[str, Any]] = Field(default_factory=dict)


_batch = TypeAdapter(list[MsysWrapper])


def _reply(status_code: int, reason: str = ""):
    track_provider_request("sparkpost", status_code)
    return status_response(status_code, reason)


@router.head("/spark")
async def head_spark():
    return Response(status_code=200)


@router.post("/spark")
async def receive_events(request: Request):
    body = await read_body_limited(request, MAX_BODY_BYTES)
    try:
        batch = _batch.validate_json(body)
    except ValidationError as e:
        logger.error("Failed to parse SparkPost events", extra_fields={"error_count": e.error_count()})
        return _reply(400, "invalid JSON")

    for wrapper in batch:
        for event_class, event in wrapper.msys.items():
            logger.info(
                "SparkPost event",
                extra_fields={"class": event_class, "type": event.get("type"), "event_id": event.get("event_id")},
            )

    return _reply(200, "ok")


@router.post("/spark/mx")
async def receive_relay(request: Request):
    body = await read_body_limited(request, MAX_BODY_BYTES)
    try:
        batch = _batch.validate_json(body)
        messages = [
            RelayMessage.model_validate(wrapper.msys["relay_message"])
            for wrapper in batch
            if "relay_message" in wrapper.msys
        ]
    except ValidationError as e:
        logger.error("Failed to parse SparkPost relay batch", extra_fields={"error_count": e.error_count()})
        return _reply(400, "invalid relay message")

    deadline = new_deadline()
    for msg in messages:
        logger.info(
            "Processing relay message",
            extra_fields={"from": msg.msg_from, "to": msg.rcpt_to, "subject": msg.content.subject},
        )
        try:
            raw_email = msg.content.raw_email()
        except (binascii.Error, ValueError):
            logger.error("Relay message content is not valid base64", extra_fields={"to": msg.rcpt_to})
            return _reply(400, "invalid relay message")

        summary = await run_in_threadpool(
            relay_message, request.app.state.rt_client, [msg.rcpt_to], raw_email, deadline
        )
        if summary.status_code != 204:
            return _reply(summary.status_code)

    return _reply(204)
