"""Recipient address to RT queue/action routing.

A configured target matches a recipient in two ways:

  - exactly                      -> (queue, "correspond")
  - as its "-comment" variant    -> (queue, "comment")

The comment variant of ``help@example.com`` is ``help-comment@example.com``,
of ``help`` it is ``help-comment``. The full recipient address is tried
against every target first, then its local part. Targets are scanned in the
order they were configured, so the first declared target wins when two could
match. An empty queue in the result means the address is not routable.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from rtmail.common.logger import get_enhanced_logger

logger = get_enhanced_logger(__name__)

COMMENT_SUFFIX = "-comment"


class Action(str, Enum):
    CORRESPOND = "correspond"
    COMMENT = "comment"


@dataclass(frozen=True)
class RouteResult:
    queue: str
    action: Action

    @property
    def found(self) -> bool:
        return bool(self.queue)


NOT_FOUND = RouteResult(queue="", action=Action.CORRESPOND)


def comment_variant(target: str) -> str:
    """Insert "-comment" before the "@" of a target, or append it."""
    idx = target.find("@")
    if idx > 0:
        return target[:idx] + COMMENT_SUFFIX + target[idx:]
    return target + COMMENT_SUFFIX


@dataclass(frozen=True)
class _Route:
    target: str
    comment_target: str
    queue: str


class AddressRouter:
    """Resolve recipient addresses against an immutable address-to-queue table."""

    def __init__(self, queues: Mapping[str, str]):
        routes = []
        for target, queue in queues.items():
            if not queue:
                raise ValueError(f"queue name for {target!r} must not be empty")
            routes.append(_Route(target=target, comment_target=comment_variant(target), queue=queue))
        self._routes: tuple[_Route, ...] = tuple(routes)
        self._warn_overlaps()

    def __len__(self) -> int:
        return len(self._routes)

    def resolve(self, address: str) -> RouteResult:
        address = address.lower()

        idx = address.find("@")
        if idx < 1:
            return NOT_FOUND

        local = address[:idx]

        for candidate in (address, local):
            for route in self._routes:
                if candidate == route.target:
                    return RouteResult(queue=route.queue, action=Action.CORRESPOND)
                if candidate == route.comment_target:
                    return RouteResult(queue=route.queue, action=Action.COMMENT)

        return NOT_FOUND

    def _warn_overlaps(self) -> None:
        targets = {route.target for route in self._routes}
        for route in self._routes:
            if route.comment_target in targets:
                logger.warning(
                    "Overlapping queue targets, first declared wins",
                    extra_fields={"target": route.target, "overlaps": route.comment_target},
                )
            if route.target != route.target.lower():
                logger.warning(
                    "Queue target has uppercase characters and will never match",
                    extra_fields={"target": route.target},
                )
