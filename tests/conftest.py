"""
Pytest fixtures for rt-mail tests.

Keys and certificates are generated once per session with cryptography; the
network (certificate fetch, RT, S3) is replaced by small in-memory fakes.
"""

from __future__ import annotations

import base64
import io
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
import requests
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from rtmail.rt.client import QueueNotFoundError, RTError
from rtmail.sns.canonical import build_canonical_string
from rtmail.sns.types import SignedEnvelope

CERT_URL = "https://sns.us-east-1.amazonaws.com/SimpleNotificationService-test.pem"
TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:rt-mail-inbound"


def make_certificate(
    private_key,
    subject_cn: str = "sns.amazonaws.com",
    issuer_cn: str = "Amazon RSA 2048 M01",
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> x509.Certificate:
    """Build a certificate for ``private_key`` with the given names and window."""
    now = datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(days=1)
    not_after = not_after or now + timedelta(days=365)

    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject_cn)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(private_key, hashes.SHA256())
    )


def cert_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def make_response(status_code: int = 200, content: bytes | str = b"") -> requests.Response:
    """A real requests.Response with its body already loaded."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = content
    resp._content_consumed = True
    resp.encoding = "utf-8"
    return resp


class FakeSession:
    """Stands in for requests.Session; records calls and replays responses.

    ``response`` may be a Response, an exception to raise, or a callable
    taking the URL and returning either.
    """

    def __init__(self, response=None):
        self.response = response if response is not None else make_response(200)
        self.calls: list[tuple[str, str, dict]] = []
        self._lock = threading.Lock()

    def _reply(self, method, url, kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
        response = self.response
        if callable(response) and not isinstance(response, requests.Response):
            response = response(url)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._reply("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._reply("POST", url, kwargs)


class FakeRTClient:
    """Ticketing client that records posts.

    ``known`` recipients are accepted, ``failing`` ones raise RTError and all
    others raise QueueNotFoundError.
    """

    def __init__(self, known=(), failing=()):
        self.known = set(known)
        self.failing = set(failing)
        self.posts: list[tuple[str, str | bytes]] = []
        self.deadlines: list[float | None] = []

    def postmail(self, recipient, message, deadline=None):
        self.posts.append((recipient, message))
        self.deadlines.append(deadline)
        if recipient in self.failing:
            raise RTError("postform err: connection refused")
        if recipient not in self.known:
            raise QueueNotFoundError(recipient)


class FakeS3Client:
    """Minimal boto3 S3 client with get_object over an in-memory dict."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.calls: list[tuple[str, str]] = []

    def get_object(self, Bucket, Key):
        self.calls.append((Bucket, Key))
        if (Bucket, Key) not in self.objects:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject",
            )
        data = self.objects[(Bucket, Key)]
        return {"Body": io.BytesIO(data), "ContentLength": len(data)}


@pytest.fixture(scope="session")
def rsa_keypair():
    """Generate RSA keypair for testing."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


@pytest.fixture(scope="session")
def test_certificate(rsa_keypair):
    """Signing certificate issued by an "Amazon" CA."""
    private_key, _ = rsa_keypair
    return make_certificate(private_key)


@pytest.fixture
def cert_session(test_certificate):
    """Session serving the test certificate for any URL."""
    return FakeSession(make_response(200, cert_pem(test_certificate)))


@pytest.fixture
def sign_envelope(rsa_keypair):
    """Return a function that signs an SNS envelope dict in place and returns it."""
    private_key, _ = rsa_keypair

    def _sign(fields: dict, version: str = "1") -> dict:
        fields = dict(fields)
        fields["SignatureVersion"] = version
        fields.setdefault("SigningCertURL", CERT_URL)
        fields["Signature"] = "placeholder"
        canonical = build_canonical_string(SignedEnvelope.model_validate(fields))
        algorithm = hashes.SHA1() if version == "1" else hashes.SHA256()
        signature = private_key.sign(canonical.encode("utf-8"), padding.PKCS1v15(), algorithm)
        fields["Signature"] = base64.b64encode(signature).decode("ascii")
        return fields

    return _sign


def ses_received_message(
    recipients=("help@example.com",),
    bucket: str = "inbound-mail",
    key: str = "msg-0001",
    notification_type: str = "Received",
    action_type: str = "S3",
) -> str:
    """JSON body of an SES receipt notification."""
    return json.dumps(
        {
            "notificationType": notification_type,
            "mail": {
                "messageId": "o3vrnil0e2ic28trm7dfhrc2v0clambda4nbp0g1",
                "source": "sender@example.net",
                "destination": list(recipients),
            },
            "receipt": {
                "recipients": list(recipients),
                "action": {"type": action_type, "bucketName": bucket, "objectKey": key},
            },
        }
    )


@pytest.fixture
def notification_fields():
    """Unsigned SES Notification envelope fields."""
    return {
        "Type": "Notification",
        "MessageId": "22b80b92-fdea-4c2c-8f9d-bdfb0c7bf324",
        "TopicArn": TOPIC_ARN,
        "Subject": "Amazon SES Email Receipt Notification",
        "Message": ses_received_message(),
        "Timestamp": "2026-01-01T12:00:00.000Z",
    }


@pytest.fixture
def subscription_fields():
    """Unsigned SubscriptionConfirmation envelope fields."""
    return {
        "Type": "SubscriptionConfirmation",
        "MessageId": "165545c9-2a5c-472c-8df2-7ff2be2b3b1b",
        "Token": "2336412f37fb687f5d51e6e241d09c805a5a57b30d712f794cc5f6a988666d92768dd60a747ba6f3beb71854e285d6ad02428b09ceece29417f1f02d609c582afbacc99c583a916b9981dd2728f4ae6fdb82efd087cc3b7849e05798d2d2785c03b0879594eeac82c01f235d0e717736",
        "TopicArn": TOPIC_ARN,
        "Message": "You have chosen to subscribe to the topic. To confirm the subscription, visit the SubscribeURL included in this message.",
        "SubscribeURL": "https://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription&TopicArn=arn:aws:sns:us-east-1:123456789012:rt-mail-inbound&Token=2336412f37",
        "Timestamp": "2026-01-01T12:00:00.000Z",
    }
