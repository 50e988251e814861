"""
Monitoring and observability package.
"""

from dexgate.monitoring.metrics_rich import RichMetrics

__all__ = [
    "RichMetrics",
]
