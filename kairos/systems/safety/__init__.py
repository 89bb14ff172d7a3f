"""
KairOS -- Safety

Throttles shared by authentication and peer discovery.
"""

from kairos.systems.safety.rate_limit import RateLimiter

__all__ = ["RateLimiter"]
