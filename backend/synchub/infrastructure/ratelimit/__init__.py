"""
  Rate limit infrastructure utilities.
     from synchub.infrastructure.ratelimit import FixedWindowRateLimiter
"""
from .fixed_window import FixedWindowRateLimiter, RateLimitResult

__all__ = ["FixedWindowRateLimiter", "RateLimitResult"]
