"""AWS SES inbound mail delivered through SNS."""

from .dispatcher import DispatchResult, DispatchState, NotificationDispatcher
from .storage import EmailTooLargeError, S3EmailStore, StorageError, make_s3_client

__all__ = [
    "NotificationDispatcher",
    "DispatchResult",
    "DispatchState",
    "S3EmailStore",
    "StorageError",
    "EmailTooLargeError",
    "make_s3_client",
]
