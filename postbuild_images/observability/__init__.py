"""
Observability Module — Build metrics.
"""

from .metrics import Counter, Histogram, MetricPoint, MetricsRegistry

__all__ = [
    "MetricsRegistry",
    "MetricPoint",
    "Counter",
    "Histogram",
]
