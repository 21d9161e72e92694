"""Signing certificate cache for SNS signature verification.

Certificates are fetched over HTTPS, validated (validity window and Amazon
issuer) and cached per URL until ``min(fetch time + TTL, NotAfter)``.

Concurrency:
- Lookups never lock. Entries are immutable and replaced wholesale, so a
  reader sees either the old or the new entry.
- Misses and expired entries go through a single refresh lock. The entry is
  re-checked under the lock so concurrent misses for one URL collapse into a
  single fetch. The lock is held for the whole fetch, which also serializes
  first fetches of different URLs.
- With a request deadline, waiting for the lock and the download itself are
  bounded by the time left; running out raises DeadlineExceededError.
- There is no background eviction; stale entries are replaced on next access.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import requests
from cryptography import x509
from cryptography.x509.oid import NameOID

from rtmail.common.deadline import DeadlineExceededError, check_deadline, clamp_timeout, remaining
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_cert_cache

from .errors import ExpiredCertificateError, FetchError, ParseError, UntrustedIssuerError

logger = get_enhanced_logger(__name__)

CERT_CACHE_TTL = int(os.getenv("SNS_CERT_CACHE_TTL", "3600"))  # 1 hour default
CERT_HTTP_TIMEOUT = float(os.getenv("SNS_HTTP_TIMEOUT", "10"))  # seconds
MAX_CERT_BYTES = 64 * 1024

TRUSTED_AUTHORITY = "Amazon"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return ""
    value = attrs[0].value
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value


@dataclass(frozen=True)
class CachedCertificate:
    """A validated certificate and the moment it must be fetched again."""

    certificate: x509.Certificate
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class CertificateCache:
    """Per-URL cache of validated SNS signing certificates.

    Create one at service start and hand it to the SignatureVerifier.

    Args:
        ttl_seconds: Maximum time a certificate is trusted without refetching
        timeout: HTTP timeout for the certificate download
        session: Optional requests session (defaults to module-level requests)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = CERT_CACHE_TTL,
        timeout: float = CERT_HTTP_TIMEOUT,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.timeout = timeout
        self._http = session if session is not None else requests
        self._clock = clock
        self._entries: dict[str, CachedCertificate] = {}
        self._refresh_lock = threading.Lock()

    def get(self, url: str, deadline: float | None = None) -> x509.Certificate:
        """Return the certificate for ``url``, fetching it on miss or expiry.

        Args:
            url: SigningCertURL, already checked against the SNS host allow-list
            deadline: time.monotonic() value bounding the lock wait and the fetch

        Raises:
            FetchError, ParseError, ExpiredCertificateError, UntrustedIssuerError
            DeadlineExceededError: deadline passed while waiting or fetching
        """
        entry = self._entries.get(url)
        if entry is not None and entry.is_fresh(self._clock()):
            track_cert_cache("hit")
            return entry.certificate

        left = remaining(deadline)
        if not self._refresh_lock.acquire(timeout=-1 if left is None else left):
            raise DeadlineExceededError(f"timed out waiting for certificate refresh of {url}")
        try:
            now = self._clock()
            entry = self._entries.get(url)
            if entry is not None and entry.is_fresh(now):
                # Another thread refreshed it while we waited
                track_cert_cache("hit")
                return entry.certificate

            track_cert_cache("miss")
            try:
                certificate = self._load(url, now, deadline)
            except Exception:
                track_cert_cache("error")
                raise

            expires_at = min(now + self.ttl, certificate.not_valid_after_utc)
            self._entries[url] = CachedCertificate(certificate=certificate, expires_at=expires_at)

            logger.info(
                "Certificate fetched and cached",
                extra_fields={"url": url, "expires_at": expires_at.isoformat()},
            )
            return certificate
        finally:
            self._refresh_lock.release()

    def clear(self) -> None:
        """Drop every cached certificate (forced refresh)."""
        with self._refresh_lock:
            self._entries.clear()
        logger.info("Certificate cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def _load(self, url: str, now: datetime, deadline: float | None) -> x509.Certificate:
        pem = self._download(url, deadline)

        try:
            certificate = x509.load_pem_x509_certificate(pem)
        except ValueError as e:
            raise ParseError(f"Invalid PEM certificate from {url}: {e}") from e

        if now < certificate.not_valid_before_utc or now > certificate.not_valid_after_utc:
            raise ExpiredCertificateError(
                f"Certificate not valid (NotBefore: {certificate.not_valid_before_utc}, "
                f"NotAfter: {certificate.not_valid_after_utc})"
            )

        subject_cn = _common_name(certificate.subject)
        issuer_cn = _common_name(certificate.issuer)
        if TRUSTED_AUTHORITY not in subject_cn and TRUSTED_AUTHORITY not in issuer_cn:
            raise UntrustedIssuerError(
                f"Certificate not issued by {TRUSTED_AUTHORITY} "
                f"(subject CN {subject_cn!r}, issuer CN {issuer_cn!r})"
            )

        return certificate

    def _download(self, url: str, deadline: float | None) -> bytes:
        logger.debug("Fetching SNS certificate", extra_fields={"url": url})
        timeout = clamp_timeout(self.timeout, deadline)
        try:
            resp = self._http.get(url, timeout=timeout, stream=True)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to fetch certificate {url}: {e}") from e

        try:
            resp.raise_for_status()
            body = bytearray()
            for chunk in resp.iter_content(chunk_size=8192):
                check_deadline(deadline)
                body.extend(chunk)
                if len(body) > MAX_CERT_BYTES:
                    raise FetchError(f"Certificate {url} exceeds {MAX_CERT_BYTES} bytes")
            return bytes(body)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to fetch certificate {url}: {e}") from e
        finally:
            resp.close()
