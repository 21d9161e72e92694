"""RT (Request Tracker) client, address routing and multi-recipient relay."""

from .client import QueueNotFoundError, RTClient, RTError, TicketingClient
from .relay import DeadlineExceededError, RelaySummary, check_deadline, relay_message
from .router import Action, AddressRouter, RouteResult
from .schemas import ConfigError, RTConfig, load_rt_config

__all__ = [
    "RTClient",
    "RTError",
    "QueueNotFoundError",
    "TicketingClient",
    "Action",
    "AddressRouter",
    "RouteResult",
    "RelaySummary",
    "relay_message",
    "check_deadline",
    "DeadlineExceededError",
    "RTConfig",
    "ConfigError",
    "load_rt_config",
]
