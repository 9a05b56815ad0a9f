"""Freshness cache and stores for platform metrics."""

from .freshness import MetricsCache, MetricsStore, default_ttls, is_cache_eligible
from .memory_store import InMemoryMetricsStore

__all__ = ["InMemoryMetricsStore", "MetricsCache", "MetricsStore", "default_ttls", "is_cache_eligible"]
