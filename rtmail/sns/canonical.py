"""Canonical string construction for SNS signatures.

The signed payload is a fixed-order sequence of ``Name\\nValue\\n`` pairs.
Which pairs appear depends on the message kind:

    Message, MessageId, [Subject], [SubscribeURL], Timestamp, [Token], TopicArn, Type

Subject is only present for Notifications with a non-empty subject.
SubscribeURL and Token are only present for (Un)SubscribeConfirmation.

References:
- https://docs.aws.amazon.com/sns/latest/dg/sns-verify-signature-of-message.html
"""

from __future__ import annotations

from .types import MessageKind, SignedEnvelope


def canonical_fields(envelope: SignedEnvelope) -> list[tuple[str, str]]:
    """Return the (name, value) pairs covered by the signature, in order."""
    kind = envelope.kind

    fields = [
        ("Message", envelope.message),
        ("MessageId", envelope.message_id),
    ]
    if kind is MessageKind.NOTIFICATION and envelope.subject:
        fields.append(("Subject", envelope.subject))
    if kind.carries_subscription:
        fields.append(("SubscribeURL", envelope.subscribe_url))
    fields.append(("Timestamp", envelope.timestamp))
    if kind.carries_subscription:
        fields.append(("Token", envelope.token))
    fields.append(("TopicArn", envelope.topic_arn))
    fields.append(("Type", envelope.message_type))
    return fields


def build_canonical_string(envelope: SignedEnvelope) -> str:
    """Build the exact string SNS signed for this envelope."""
    return "".join(f"{name}\n{value}\n" for name, value in canonical_fields(envelope))
