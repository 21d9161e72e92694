"""SNS message signature verification with certificate validation.

Security features:
- Certificate URL validation (HTTPS only, sns.<region>.amazonaws.com host)
- Certificate caching with TTL (see cert_cache)
- Canonical string building as documented by AWS
- RSA PKCS#1 v1.5 verification, SHA1 (SignatureVersion 1) or SHA256 (2)

References:
- https://docs.aws.amazon.com/sns/latest/dg/sns-verify-signature-of-message.html
"""

from __future__ import annotations

import base64
import binascii
import re
from urllib.parse import urlparse

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_sns_verify

from .canonical import build_canonical_string
from .cert_cache import CertificateCache
from .errors import (
    MalformedSignatureError,
    SignatureMismatchError,
    SNSVerificationError,
    UnsupportedSignatureVersionError,
    UntrustedSourceError,
)
from .types import SignatureVersion, SignedEnvelope

logger = get_enhanced_logger(__name__)

# sns.<region>.amazonaws.com, matched against the whole URL authority
SNS_HOST_PATTERN = re.compile(r"^sns\.[a-z0-9-]+\.amazonaws\.com$")

_HASHES = {
    SignatureVersion.V1: hashes.SHA1,
    SignatureVersion.V2: hashes.SHA256,
}


def validate_sns_url(url: str) -> None:
    """Require an absolute https URL on an SNS regional endpoint.

    Used for SigningCertURL and SubscribeURL so that we never fetch an
    attacker-chosen URL.

    Raises:
        UntrustedSourceError: If the URL is malformed or not an SNS endpoint
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise UntrustedSourceError(f"Unparseable URL {url!r}: {e}") from e

    if parsed.scheme != "https":
        raise UntrustedSourceError(f"URL must use https: {url!r}")

    if not SNS_HOST_PATTERN.match(parsed.netloc):
        raise UntrustedSourceError(f"URL host is not an SNS endpoint: {parsed.netloc!r}")


def is_trusted_sns_url(url: str) -> bool:
    try:
        validate_sns_url(url)
    except UntrustedSourceError:
        return False
    return True


class SignatureVerifier:
    """Verifies that a SignedEnvelope was signed by AWS SNS."""

    def __init__(self, cert_cache: CertificateCache):
        self.cert_cache = cert_cache

    def verify(self, envelope: SignedEnvelope, deadline: float | None = None) -> None:
        """Verify the envelope signature.

        Args:
            envelope: Parsed SNS envelope
            deadline: time.monotonic() value bounding a certificate fetch

        Raises:
            SNSVerificationError subclass on any failure
            DeadlineExceededError: certificate could not be obtained in time
        """
        try:
            self._verify(envelope, deadline)
        except SNSVerificationError as e:
            track_sns_verify(type(e).__name__)
            raise
        track_sns_verify("success")
        logger.debug(
            "SNS signature verified",
            extra_fields={"message_id": envelope.message_id, "type": envelope.message_type},
        )

    def _verify(self, envelope: SignedEnvelope, deadline: float | None) -> None:
        # 1. Only ever talk to SNS
        validate_sns_url(envelope.signing_cert_url)

        # 2. Certificate (cached)
        certificate = self.cert_cache.get(envelope.signing_cert_url, deadline)

        # 3. Canonical string
        canonical = build_canonical_string(envelope)

        # 4. Decode signature
        try:
            signature = base64.b64decode(envelope.signature, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedSignatureError(f"Signature is not valid base64: {e}") from e

        # 5. Hash algorithm from SignatureVersion
        try:
            version = SignatureVersion(envelope.signature_version)
        except ValueError as e:
            raise UnsupportedSignatureVersionError(
                f"Unsupported SignatureVersion: {envelope.signature_version!r}"
            ) from e

        # 6. Verify
        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise SignatureMismatchError("Signing certificate does not carry an RSA key")

        try:
            public_key.verify(
                signature, canonical.encode("utf-8"), padding.PKCS1v15(), _HASHES[version]()
            )
        except InvalidSignature as e:
            raise SignatureMismatchError("SNS signature verification failed") from e
