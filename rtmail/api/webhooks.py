"""SES inbound mail webhook (SNS HTTPS subscription).

SNS posts three message types to /ses:
1. SubscriptionConfirmation - confirmed automatically after verification
2. Notification - SES "Received" events, relayed to RT
3. UnsubscribeConfirmation - acknowledged

Security:
- Size: 1MB max body
- Signature verification against the cached SNS signing certificate
- TopicArn must equal the configured topic
- SigningCertURL and SubscribeURL restricted to sns.<region>.amazonaws.com

Returns:
    200/204 processed, 400 invalid, 401 signature invalid, 403 wrong topic,
    404 no recipient configured, 413 too large, 500 fetch/confirm failure,
    503 RT unavailable (SNS retries)
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from rtmail.api.middleware import read_body_limited, status_response
from rtmail.common.deadline import new_deadline
from rtmail.common.logger import get_enhanced_logger
from rtmail.sns.types import SignedEnvelope

logger = get_enhanced_logger(__name__)

router = APIRouter(tags=["ses"])

MAX_SNS_BODY_BYTES = 1024 * 1024


def parse_envelope(body: bytes) -> SignedEnvelope:
    """Parse an SNS envelope, mapping any malformed input to HTTP 400."""
    try:
        return SignedEnvelope.model_validate_json(body)
    except ValidationError as e:
        # Log field locations only, the body may carry mail content
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        logger.error("Invalid SNS envelope", extra_fields={"fields": fields})
        raise HTTPException(status_code=400, detail="Invalid SNS envelope")


@router.post("/ses")
async def handle_ses_webhook(request: Request):
    """Handle an SNS delivery carrying SES events."""
    body = await read_body_limited(request, MAX_SNS_BODY_BYTES)
    envelope = parse_envelope(body)

    logger.debug(
        "SNS message received",
        extra_fields={
            "message_id": envelope.message_id,
            "type": envelope.message_type,
            "header_type": request.headers.get("x-amz-sns-message-type"),
        },
    )

    dispatcher = request.app.state.ses_dispatcher
    # The worker keeps running if SNS hangs up; the deadline bounds its outbound calls
    result = await run_in_threadpool(dispatcher.dispatch, envelope, new_deadline())
    return status_response(result.status_code, result.reason)
