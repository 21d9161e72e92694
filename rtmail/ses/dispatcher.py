"""SES notification dispatch via SNS.

State machine for one webhook delivery::

    RECEIVED -> VERIFYING -> AUTHENTICATED -> CLASSIFYING
        -> CONFIRMING_SUBSCRIPTION | RELAYING | ACKING -> DONE

REJECTED is terminal and reachable from VERIFYING (401), CLASSIFYING (403 topic
mismatch, 400 unknown type) and from the action states on input or downstream
failures. The HTTP status in DispatchResult is the only signal to SNS: any
non-2xx makes SNS redeliver later, nothing is retried here.

Relaying only handles "Received" notifications whose receipt action stored the
raw message in S3; everything else is acknowledged with 204.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum

import requests
from pydantic import ValidationError

from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_dispatch
from rtmail.rt.client import TicketingClient
from rtmail.common.deadline import DeadlineExceededError, check_deadline, clamp_timeout
from rtmail.rt.relay import relay_message
from rtmail.sns.errors import SNSVerificationError, UntrustedSourceError
from rtmail.sns.sns_verify import SignatureVerifier, validate_sns_url
from rtmail.sns.types import EmailNotification, MessageKind, SignedEnvelope

from .storage import EmailTooLargeError, S3EmailStore, StorageError

logger = get_enhanced_logger(__name__)

CONFIRM_HTTP_TIMEOUT = float(os.getenv("SNS_HTTP_TIMEOUT", "10"))


class DispatchState(str, Enum):
    RECEIVED = "received"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    CLASSIFYING = "classifying"
    CONFIRMING_SUBSCRIPTION = "confirming_subscription"
    RELAYING = "relaying"
    ACKING = "acking"
    DONE = "done"
    REJECTED = "rejected"


@dataclass
class DispatchResult:
    status_code: int
    state: DispatchState
    reason: str
    trace: list[DispatchState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is DispatchState.DONE


class _Run:
    """Bookkeeping for one dispatch: visited states and the final result."""

    def __init__(self) -> None:
        self.trace = [DispatchState.RECEIVED]

    def enter(self, state: DispatchState) -> None:
        self.trace.append(state)

    def done(self, status_code: int, reason: str) -> DispatchResult:
        self.trace.append(DispatchState.DONE)
        return DispatchResult(status_code, DispatchState.DONE, reason, self.trace)

    def reject(self, status_code: int, reason: str) -> DispatchResult:
        self.trace.append(DispatchState.REJECTED)
        return DispatchResult(status_code, DispatchState.REJECTED, reason, self.trace)


class NotificationDispatcher:
    """Authenticates an SNS envelope and acts on it.

    Args:
        verifier: SignatureVerifier sharing the service's CertificateCache
        rt_client: Ticketing client receiving relayed messages
        email_store: Fetches raw emails from S3
        topic_arn: The only TopicArn accepted
        session: requests session used for subscription confirmation
        confirm_timeout: Timeout for the SubscribeURL GET
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        rt_client: TicketingClient,
        email_store: S3EmailStore,
        topic_arn: str,
        session: requests.Session | None = None,
        confirm_timeout: float = CONFIRM_HTTP_TIMEOUT,
    ):
        self.verifier = verifier
        self.rt_client = rt_client
        self.email_store = email_store
        self.topic_arn = topic_arn
        self.session = session or requests.Session()
        self.confirm_timeout = confirm_timeout

    def dispatch(self, envelope: SignedEnvelope, deadline: float | None = None) -> DispatchResult:
        """Run the state machine for one envelope.

        Args:
            envelope: Parsed SNS envelope
            deadline: time.monotonic() value; every outbound call is bounded by the time left
        """
        result = self._dispatch(envelope, deadline)
        track_dispatch(envelope.kind.value, result.status_code)
        logger.info(
            "SES dispatch finished",
            extra_fields={
                "message_id": envelope.message_id,
                "type": envelope.message_type,
                "status": result.status_code,
                "state": result.state.value,
                "reason": result.reason,
            },
        )
        return result

    def _dispatch(self, envelope: SignedEnvelope, deadline: float | None) -> DispatchResult:
        run = _Run()

        run.enter(DispatchState.VERIFYING)
        try:
            check_deadline(deadline)
            self.verifier.verify(envelope, deadline)
        except SNSVerificationError as e:
            logger.warning(
                "SNS signature verification failed",
                extra_fields={"message_id": envelope.message_id, "error": str(e)},
            )
            return run.reject(401, "unauthorized")
        except DeadlineExceededError:
            return run.reject(503, "deadline exceeded")
        run.enter(DispatchState.AUTHENTICATED)

        run.enter(DispatchState.CLASSIFYING)
        if envelope.topic_arn != self.topic_arn:
            logger.warning(
                "TopicArn mismatch",
                extra_fields={"got": envelope.topic_arn, "expected": self.topic_arn},
            )
            return run.reject(403, "topic mismatch")

        kind = envelope.kind
        if kind is MessageKind.SUBSCRIPTION_CONFIRMATION:
            run.enter(DispatchState.CONFIRMING_SUBSCRIPTION)
            return self._confirm_subscription(run, envelope, deadline)
        if kind is MessageKind.NOTIFICATION:
            run.enter(DispatchState.RELAYING)
            return self._relay(run, envelope, deadline)
        if kind is MessageKind.UNSUBSCRIBE_CONFIRMATION:
            run.enter(DispatchState.ACKING)
            logger.info("Unsubscribe confirmation received", extra_fields={"topic": envelope.topic_arn})
            return run.done(200, "unsubscribed")

        logger.warning("Unknown SNS message type", extra_fields={"type": envelope.message_type})
        return run.reject(400, "unknown message type")

    def _confirm_subscription(
        self, run: _Run, envelope: SignedEnvelope, deadline: float | None
    ) -> DispatchResult:
        if not envelope.subscribe_url:
            logger.warning("Subscription confirmation missing SubscribeURL")
            return run.reject(400, "missing SubscribeURL")

        try:
            validate_sns_url(envelope.subscribe_url)
        except UntrustedSourceError as e:
            logger.warning("Untrusted SubscribeURL", extra_fields={"error": str(e)})
            return run.reject(400, "untrusted SubscribeURL")

        try:
            timeout = clamp_timeout(self.confirm_timeout, deadline)
            resp = self.session.get(envelope.subscribe_url, timeout=timeout)
        except DeadlineExceededError:
            return run.reject(503, "deadline exceeded")
        except requests.exceptions.RequestException as e:
            logger.error("Failed to confirm subscription", extra_fields={"error": str(e)})
            return run.reject(500, "subscription confirmation failed")

        try:
            if not 200 <= resp.status_code < 300:
                logger.error(
                    "Subscription confirmation failed",
                    extra_fields={"status_code": resp.status_code},
                )
                return run.reject(500, "subscription confirmation failed")
        finally:
            resp.close()

        logger.info("Subscription confirmed", extra_fields={"topic": envelope.topic_arn})
        return run.done(200, "subscription confirmed")

    def _relay(self, run: _Run, envelope: SignedEnvelope, deadline: float | None) -> DispatchResult:
        try:
            notification = EmailNotification.model_validate_json(envelope.message)
        except ValidationError as e:
            logger.warning("Failed to parse SES notification", extra_fields={"error": str(e)})
            return run.reject(400, "invalid SES notification")

        if not notification.is_received:
            logger.info(
                "Ignoring notification type",
                extra_fields={"notification_type": notification.notification_type},
            )
            run.enter(DispatchState.ACKING)
            return run.done(204, "ignored notification type")

        if not notification.stored_in_s3:
            logger.info(
                "Ignoring action type",
                extra_fields={"action_type": notification.receipt.action.type},
            )
            run.enter(DispatchState.ACKING)
            return run.done(204, "ignored action type")

        action = notification.receipt.action
        if not action.bucket_name or not action.object_key:
            logger.warning("Missing S3 bucket or key in notification")
            return run.reject(400, "missing S3 location")

        recipients = notification.receipt.recipients
        if not recipients:
            logger.warning("No recipients in notification")
            return run.reject(400, "no recipients")

        try:
            raw_email = self.email_store.fetch(action.bucket_name, action.object_key, deadline)
        except DeadlineExceededError:
            return run.reject(503, "deadline exceeded")
        except EmailTooLargeError as e:
            logger.error("Email too large", extra_fields={"error": str(e)})
            return run.reject(413, "email too large")
        except StorageError as e:
            logger.error(
                "Failed to fetch email from S3",
                extra_fields={"bucket": action.bucket_name, "key": action.object_key, "error": str(e)},
            )
            return run.reject(500, "email fetch failed")

        summary = relay_message(self.rt_client, recipients, raw_email, deadline=deadline)
        if summary.all_not_found:
            return run.reject(404, "no recipient routed")
        if summary.timed_out:
            return run.reject(503, "deadline exceeded")
        if summary.failed:
            return run.reject(503, "rt unavailable")
        return run.done(204, "relayed")
