"""Request perimeter guard: ban list, fixed-window rate limiting and request logging."""

from .blocklist import PersistentSet
from .config import EndpointRule, Settings, get_settings
from .gatekeeper import Gatekeeper
from .logging_config import configure_logging
from .rate_limit import Decision, RateLimitEngine, RateRecord, SlidingWindowCounter
from .request_log import LogEntry, RequestLogStore

__all__ = [
    "Decision",
    "EndpointRule",
    "Gatekeeper",
    "LogEntry",
    "PersistentSet",
    "RateLimitEngine",
    "RateRecord",
    "RequestLogStore",
    "Settings",
    "SlidingWindowCounter",
    "configure_logging",
    "get_settings",
]
