"""Fetch strategies and fault-tolerance helpers."""

from .chain import FetchChain, FetchStrategy
from .circuit_breaker import CircuitBreaker
from .lightweight import LightweightFetcher
from .retry_handler import RetryPolicy, with_retry
from .stealth_browser import StealthBrowserFetcher

__all__ = [
    "CircuitBreaker",
    "FetchChain",
    "FetchStrategy",
    "LightweightFetcher",
    "RetryPolicy",
    "StealthBrowserFetcher",
    "with_retry",
]
