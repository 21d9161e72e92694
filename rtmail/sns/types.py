"""SNS envelope and SES notification models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MessageKind(str, Enum):
    """Closed set of SNS message types; anything else is UNKNOWN."""

    SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"
    NOTIFICATION = "Notification"
    UNSUBSCRIBE_CONFIRMATION = "UnsubscribeConfirmation"
    UNKNOWN = "Unknown"

    @classmethod
    def from_type(cls, value: str) -> MessageKind:
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == value:
                return kind
        return cls.UNKNOWN

    @property
    def carries_subscription(self) -> bool:
        """True for kinds whose signature covers SubscribeURL and Token."""
        return self in (MessageKind.SUBSCRIPTION_CONFIRMATION, MessageKind.UNSUBSCRIBE_CONFIRMATION)


class SignatureVersion(str, Enum):
    V1 = "1"  # SHA1 with RSA
    V2 = "2"  # SHA256 with RSA


class SignedEnvelope(BaseModel):
    """The outer SNS message as posted to the webhook.

    Field names follow the SNS JSON keys via aliases. ``message_type`` keeps the
    raw ``Type`` string because it is part of the signed payload; use ``kind``
    to branch on it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_type: str = Field(alias="Type")
    message_id: str = Field(alias="MessageId")
    topic_arn: str = Field(alias="TopicArn")
    subject: str = Field(default="", alias="Subject")
    message: str = Field(alias="Message")
    timestamp: str = Field(alias="Timestamp")
    signature_version: str = Field(alias="SignatureVersion")
    signature: str = Field(alias="Signature")
    signing_cert_url: str = Field(alias="SigningCertURL")
    subscribe_url: str = Field(default="", alias="SubscribeURL")
    token: str = Field(default="", alias="Token")
    unsubscribe_url: str = Field(default="", alias="UnsubscribeURL")

    @property
    def kind(self) -> MessageKind:
        return MessageKind.from_type(self.message_type)


# SES "Received" notification carried in SignedEnvelope.message


class ReceiptAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = ""
    bucket_name: str = Field(default="", alias="bucketName")
    object_key: str = Field(default="", alias="objectKey")


class Receipt(BaseModel):
    action: ReceiptAction = Field(default_factory=ReceiptAction)
    recipients: list[str] = Field(default_factory=list)


class MailInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(default="", alias="messageId")
    source: str = ""
    destination: list[str] = Field(default_factory=list)


class EmailNotification(BaseModel):
    """Inner SES payload. Only notificationType "Received" with an S3 action is relayed."""

    model_config = ConfigDict(populate_by_name=True)

    notification_type: str = Field(default="", alias="notificationType")
    receipt: Receipt = Field(default_factory=Receipt)
    mail: MailInfo = Field(default_factory=MailInfo)

    @property
    def is_received(self) -> bool:
        return self.notification_type == "Received"

    @property
    def stored_in_s3(self) -> bool:
        return self.receipt.action.type == "S3"
