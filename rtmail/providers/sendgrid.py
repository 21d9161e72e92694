"""SendGrid Inbound Parse webhook (raw, full MIME).

Form fields:
  envelope  JSON {"to": [...], "from": "..."} with the SMTP envelope
  email     the raw message
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from rtmail.api.middleware import enforce_body_limit, form_text, status_response
from rtmail.common.deadline import new_deadline
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_provider_request
from rtmail.rt.relay import relay_message

logger = get_enhanced_logger(__name__)

router = APIRouter(tags=["sendgrid"])

MAX_BODY_BYTES = 50 * 1024 * 1024


class SendgridEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: list[str] = Field(default_factory=list)
    sender: str = Field(default="", alias="from")


def _reject(status_code: int, reason: str):
    logger.warning(reason)
    track_provider_request("sendgrid", status_code)
    return status_response(status_code, reason)


@router.post("/sendgrid/mx")
async def receive_sendgrid(request: Request):
    enforce_body_limit(request, MAX_BODY_BYTES)
    form = await request.form(max_part_size=MAX_BODY_BYTES)

    raw_envelope = await form_text(form, "envelope")
    if not raw_envelope:
        return _reject(400, "Missing envelope field")

    try:
        envelope = SendgridEnvelope.model_validate_json(raw_envelope)
    except ValidationError:
        return _reject(400, "Failed to parse envelope")

    if not envelope.to:
        return _reject(400, "Envelope contains no recipients")

    message = await form_text(form, "email")
    logger.info(
        "SendGrid message received",
        extra_fields={"to": envelope.to, "from": envelope.sender, "size": len(message)},
    )

    summary = await run_in_threadpool(
        relay_message, request.app.state.rt_client, envelope.to, message, new_deadline()
    )
    track_provider_request("sendgrid", summary.status_code)
    return status_response(summary.status_code)
