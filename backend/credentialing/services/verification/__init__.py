"""
Verification aggregator: registry, credit, legal-issue and restriction lookups
with fallback and caching.
"""
from .cache import TTLCache, InMemoryTTLCache, SingleFlight
from .aggregator import (
    VerificationAggregator, build_default_aggregator, get_aggregator,
    CACHED_SUFFIX, FALLBACK, FALLBACK_SIMULATED, UNAVAILABLE,
)

__all__ = [
    "TTLCache",
    "InMemoryTTLCache",
    "SingleFlight",
    "VerificationAggregator",
    "build_default_aggregator",
    "get_aggregator",
    "CACHED_SUFFIX",
    "FALLBACK",
    "FALLBACK_SIMULATED",
    "UNAVAILABLE",
]
