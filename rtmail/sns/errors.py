"""Authentication failures raised while verifying an SNS envelope.

Every subclass of SNSVerificationError means the same thing to a caller:
the message is not authentic and must be rejected (HTTP 401). None of them
are retried locally.
"""


class SNSVerificationError(Exception):
    """Base class for SNS authentication failures."""


class UntrustedSourceError(SNSVerificationError):
    """URL is not an https URL on an sns.<region>.amazonaws.com host."""


class CertificateError(SNSVerificationError):
    """Signing certificate could not be obtained or is not acceptable."""


class FetchError(CertificateError):
    """Transport or HTTP failure while downloading the certificate."""


class ParseError(CertificateError):
    """Downloaded body is not a PEM encoded X.509 certificate."""


class ExpiredCertificateError(CertificateError):
    """Current time is outside the certificate validity window."""


class UntrustedIssuerError(CertificateError):
    """Neither subject nor issuer common name names Amazon."""


class MalformedSignatureError(SNSVerificationError):
    """Signature field is not valid base64."""


class UnsupportedSignatureVersionError(SNSVerificationError):
    """SignatureVersion is neither "1" nor "2"."""


class SignatureMismatchError(SNSVerificationError):
    """Signature does not verify against the canonical string."""
