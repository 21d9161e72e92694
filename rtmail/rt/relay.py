"""Post one raw message for several recipients and aggregate the outcome.

Recipients are posted sequentially, in the order the provider delivered them.
A recipient without a queue does not stop the others. Once the request
deadline passes, the remaining recipients are not posted and count as failed.

Aggregate status:
  - every recipient not found        -> 404
  - any failure other than not found -> 503 (the sender should retry)
  - otherwise                        -> 204
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from rtmail.common.deadline import DeadlineExceededError, check_deadline
from rtmail.common.logger import get_enhanced_logger

from .client import RTError, TicketingClient

logger = get_enhanced_logger(__name__)

__all__ = ["DeadlineExceededError", "RelaySummary", "check_deadline", "relay_message"]


@dataclass
class RelaySummary:
    delivered: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    last_error: Exception | None = None
    timed_out: bool = False

    @property
    def total(self) -> int:
        return len(self.delivered) + len(self.not_found) + len(self.failed)

    @property
    def all_not_found(self) -> bool:
        return self.total > 0 and len(self.not_found) == self.total

    @property
    def status_code(self) -> int:
        if self.all_not_found:
            return 404
        if self.failed:
            return 503
        return 204


def relay_message(
    client: TicketingClient,
    recipients: Iterable[str],
    message: str | bytes,
    deadline: float | None = None,
) -> RelaySummary:
    """Post ``message`` to RT once per recipient.

    Args:
        client: Ticketing client
        recipients: Envelope recipients, in delivery order
        message: Raw RFC 822 message
        deadline: time.monotonic() value bounding every post
    """
    summary = RelaySummary()
    pending = list(recipients)
    for i, recipient in enumerate(pending):
        try:
            check_deadline(deadline)
            client.postmail(recipient, message, deadline=deadline)
        except DeadlineExceededError as e:
            logger.warning(
                "Request deadline exceeded, recipients not posted",
                extra_fields={"recipients": pending[i:]},
            )
            summary.failed.extend(pending[i:])
            summary.last_error = e
            summary.timed_out = True
            break
        except RTError as e:
            logger.warning(
                "Post error for recipient",
                extra_fields={"recipient": recipient, "error": str(e), "not_found": e.not_found},
            )
            if e.not_found:
                summary.not_found.append(recipient)
            else:
                summary.failed.append(recipient)
                summary.last_error = e
            continue
        summary.delivered.append(recipient)
    return summary
