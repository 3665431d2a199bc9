"""
Service runtime layer for headshot-studio.

This package provides shared infrastructure for reliability:
- ServiceError: Standardized errors with retry semantics
- RetryPolicy: Pure retry/backoff decisions
- RateLimiter: Per-client and global provider admission
- utcnow: Injectable wall clock
"""

from .clock import Clock, utcnow
from .errors import (
    ErrorKind,
    RetryableError,
    ServiceError,
    TerminalError,
)
from .rate_limiter import RateDecision, RateLimiter
from .retry import RetryDecision, RetryPolicy

__all__ = [
    "Clock",
    "ErrorKind",
    "RateDecision",
    "RateLimiter",
    "RetryDecision",
    "RetryPolicy",
    "RetryableError",
    "ServiceError",
    "TerminalError",
    "utcnow",
]
