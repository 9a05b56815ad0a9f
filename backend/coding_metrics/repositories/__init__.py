"""Repository helpers for persisted metrics."""

from .platform_metrics import DatabaseMetricsStore, PlatformMetricsRepository, platform_metrics

__all__ = ["DatabaseMetricsStore", "PlatformMetricsRepository", "platform_metrics"]
