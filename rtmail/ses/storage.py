"""Raw email fetch from S3 for SES receipt rules with an S3 action.

Reads are capped at ``max_bytes``; an object larger than the cap is an
error, never a truncated success. With a request deadline the body read
stops between chunks once the deadline has passed.
"""

from __future__ import annotations

import os
import time
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rtmail.common.deadline import DeadlineExceededError, check_deadline
from rtmail.common.logger import get_enhanced_logger
from rtmail.observability.metrics import track_email_fetch

logger = get_enhanced_logger(__name__)

MAX_EMAIL_SIZE = int(os.getenv("SES_MAX_EMAIL_BYTES", str(50 * 1024 * 1024)))  # 50 MiB
S3_CONNECT_TIMEOUT = float(os.getenv("S3_CONNECT_TIMEOUT", "5"))
S3_READ_TIMEOUT = float(os.getenv("S3_READ_TIMEOUT", "10"))
READ_CHUNK_SIZE = 1024 * 1024


class StorageError(Exception):
    """Base exception for object fetch failures."""


class EmailTooLargeError(StorageError):
    """Object exceeds the configured size limit."""

    def __init__(self, bucket: str, key: str, limit: int):
        super().__init__(f"email s3://{bucket}/{key} exceeds size limit ({limit} bytes)")
        self.limit = limit


def make_s3_client(region: str | None = None) -> Any:
    """S3 client with bounded timeouts and no SDK-level retries."""
    config = Config(
        connect_timeout=S3_CONNECT_TIMEOUT,
        read_timeout=S3_READ_TIMEOUT,
        retries={"mode": "standard", "total_max_attempts": 1},
    )
    return boto3.client("s3", region_name=region, config=config)


class S3EmailStore:
    """Fetches raw RFC 822 messages stored by SES.

    Args:
        client: boto3 S3 client (created lazily with make_s3_client if None)
        max_bytes: Maximum object size accepted
        region: AWS region for the lazily created client
    """

    def __init__(self, client: Any = None, max_bytes: int = MAX_EMAIL_SIZE, region: str | None = None):
        self._client = client
        self.max_bytes = max_bytes
        self.region = region

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = make_s3_client(self.region)
        return self._client

    def fetch(self, bucket: str, key: str, deadline: float | None = None) -> bytes:
        """Return the object's bytes.

        Raises:
            EmailTooLargeError: object is larger than max_bytes
            StorageError: any S3 or transport failure
            DeadlineExceededError: deadline passed before or during the read
        """
        start = time.perf_counter()
        try:
            data = self._read(bucket, key, deadline)
        except DeadlineExceededError:
            track_email_fetch(time.perf_counter() - start, result="deadline")
            raise
        except EmailTooLargeError:
            track_email_fetch(time.perf_counter() - start, result="too_large")
            raise
        except StorageError:
            track_email_fetch(time.perf_counter() - start, result="error")
            raise

        track_email_fetch(time.perf_counter() - start, size_bytes=len(data))
        logger.info(
            "Fetched email from S3",
            extra_fields={"bucket": bucket, "key": key, "size": len(data)},
        )
        return data

    def _read(self, bucket: str, key: str, deadline: float | None) -> bytes:
        check_deadline(deadline)
        try:
            resp = self.client.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 GetObject s3://{bucket}/{key}: {e}") from e

        body = resp["Body"]
        try:
            if resp.get("ContentLength", 0) > self.max_bytes:
                raise EmailTooLargeError(bucket, key, self.max_bytes)
            data = self._read_bounded(body, deadline)
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"read S3 object s3://{bucket}/{key}: {e}") from e
        finally:
            body.close()

        if len(data) > self.max_bytes:
            raise EmailTooLargeError(bucket, key, self.max_bytes)
        return data

    def _read_bounded(self, body: Any, deadline: float | None) -> bytes:
        # Read at most one byte past the limit so an oversized object is detected
        budget = self.max_bytes + 1
        buf = bytearray()
        while len(buf) < budget:
            check_deadline(deadline)
            chunk = body.read(min(READ_CHUNK_SIZE, budget - len(buf)))
            if not chunk:
                break
            buf.extend(chunk)
        return bytes(buf)
