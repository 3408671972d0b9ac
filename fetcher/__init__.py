"""Outbound HTTP concerns: robots.txt validation and retry/backoff."""

from fetcher.retry import RetryExecutor, RetryOptions, is_network_error
from fetcher.robots import RobotsValidator, decide_allowed, parse_robots_txt

__all__ = [
    "RetryExecutor",
    "RetryOptions",
    "is_network_error",
    "RobotsValidator",
    "decide_allowed",
    "parse_robots_txt",
]
