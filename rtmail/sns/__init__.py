"""
SNS envelope authentication: canonical strings, signing certificate cache
and signature verification.
"""

from .canonical import build_canonical_string
from .cert_cache import CachedCertificate, CertificateCache
from .errors import (
    CertificateError,
    ExpiredCertificateError,
    FetchError,
    MalformedSignatureError,
    ParseError,
    SignatureMismatchError,
    SNSVerificationError,
    UnsupportedSignatureVersionError,
    UntrustedIssuerError,
    UntrustedSourceError,
)
from .sns_verify import SignatureVerifier, is_trusted_sns_url, validate_sns_url
from .types import MessageKind, SignatureVersion, SignedEnvelope

__all__ = [
    "build_canonical_string",
    "CachedCertificate",
    "CertificateCache",
    "SignatureVerifier",
    "validate_sns_url",
    "is_trusted_sns_url",
    "MessageKind",
    "SignatureVersion",
    "SignedEnvelope",
    "SNSVerificationError",
    "UntrustedSourceError",
    "CertificateError",
    "FetchError",
    "ParseError",
    "ExpiredCertificateError",
    "UntrustedIssuerError",
    "MalformedSignatureError",
    "UnsupportedSignatureVersionError",
    "SignatureMismatchError",
]
