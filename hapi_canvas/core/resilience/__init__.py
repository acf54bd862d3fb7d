"""
Resilience Module - Outbound Request Protection

Keeps the client inside Canvas's per-token quota and stops it from hammering
an instance that is failing.

COMPONENTS:
===========
- TokenBucketRateLimiter: priority queue + lazy-refill token bucket, retry
  with backoff, Canvas rate-limit header reconciliation
- CircuitBreaker: consecutive-failure breaker owned by the rate limiter
"""

from .circuit_breaker import CircuitBreaker, CircuitSnapshot
from .rate_limiter import (
    QueuedUnit,
    RateBudget,
    RateLimiterStatus,
    RateLimitStatus,
    TokenBucketRateLimiter,
    compute_backoff,
    get_rate_limiter,
)

__all__ = [
    # Rate Limiting
    "TokenBucketRateLimiter",
    "RateBudget",
    "QueuedUnit",
    "RateLimitStatus",
    "RateLimiterStatus",
    "compute_backoff",
    "get_rate_limiter",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitSnapshot",
]
