"""Per-request deadlines for outbound calls.

A deadline is a ``time.monotonic()`` value. Each webhook handler creates one
and hands it down; every blocking call made on behalf of that request clamps
its timeout to the time left and gives up once it has passed::

    deadline = new_deadline()
    session.post(url, data=form, timeout=clamp_timeout((5.0, 10.0), deadline))

``None`` means no deadline: configured timeouts apply unchanged.
"""

from __future__ import annotations

import os
import time

WEBHOOK_REQUEST_TIMEOUT = float(os.getenv("WEBHOOK_REQUEST_TIMEOUT", "25"))

Timeout = float | tuple[float, float]


class DeadlineExceededError(Exception):
    """The inbound request ran out of time before all work was done."""


def new_deadline(timeout: float | None = None) -> float:
    """Deadline ``timeout`` seconds from now (WEBHOOK_REQUEST_TIMEOUT by default)."""
    return time.monotonic() + (WEBHOOK_REQUEST_TIMEOUT if timeout is None else timeout)


def remaining(deadline: float | None) -> float | None:
    """Seconds left before ``deadline``, None without one.

    Raises:
        DeadlineExceededError: deadline has passed
    """
    if deadline is None:
        return None
    left = deadline - time.monotonic()
    if left <= 0:
        raise DeadlineExceededError("request deadline exceeded")
    return left


def check_deadline(deadline: float | None) -> None:
    """Raise if ``deadline`` has passed."""
    remaining(deadline)


def clamp_timeout(timeout: Timeout, deadline: float | None) -> Timeout:
    """Shrink a requests-style timeout (seconds or (connect, read)) to the time left."""
    left = remaining(deadline)
    if left is None:
        return timeout
    if isinstance(timeout, tuple):
        return (min(timeout[0], left), min(timeout[1], left))
    return min(timeout, left)
