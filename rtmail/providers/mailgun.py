"""Mailgun "store and forward" route webhook (raw MIME variant).

Mailgun posts multipart form data to /mg/mx/mime with the envelope recipient
in ``recipient`` and the full message in ``body-mime``.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from rtmail.api.middleware import enforce_body_limit, form_text, status_response
from rtmail.common.deadline import new_deadline
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_provider_request
from rtmail.rt.relay import relay_message

logger = get_enhanced_logger(__name__)

router = APIRouter(tags=["mailgun"])

MAX_BODY_BYTES = 50 * 1024 * 1024


@router.post("/mg/mx/mime")
async def receive_mailgun(request: Request):
    enforce_body_limit(request, MAX_BODY_BYTES)
    form = await request.form(max_part_size=MAX_BODY_BYTES)

    recipient = await form_text(form, "recipient")
    message = await form_text(form, "body-mime")
    # Rejected as malformed rather than routed as an empty address (404)
    if not recipient:
        logger.warning("Mailgun request without recipient")
        track_provider_request("mailgun", 400)
        return status_response(400, "missing recipient")

    logger.info(
        "Mailgun message received",
        extra_fields={"recipient": recipient, "size": len(message)},
    )

    summary = await run_in_threadpool(
        relay_message, request.app.state.rt_client, [recipient], message, new_deadline()
    )
    track_provider_request("mailgun", summary.status_code)
    return status_response(summary.status_code)
