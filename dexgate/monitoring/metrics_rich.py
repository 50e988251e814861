"""
Prometheus metrics for gateway observability.

Organized into: nonces, operations, ledger, http.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class RichMetrics:
    """Metrics exported on /metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Nonce Metrics ===
        self.nonces_allocated = Counter(
            'nonces_allocated_total',
            'Sequence numbers handed out by the account registry',
            labelnames=['address'],
            registry=reg
        )
        self.nonce_misses = Counter(
            'nonce_misses_total',
            'Allocations refused because the address was never initialized',
            registry=reg
        )

        # === Operation Metrics ===
        self.operations_created = Counter(
            'operations_created_total',
            'Operation records created',
            labelnames=['kind'],
            registry=reg
        )
        self.operations_resolved = Counter(
            'operations_resolved_total',
            'Operation records reaching a terminal state',
            labelnames=['kind', 'status'],
            registry=reg
        )
        self.operations_pending = Gauge(
            'operations_pending',
            'Operation records currently pending',
            registry=reg
        )

        # === Ledger Metrics ===
        self.submissions = Counter(
            'ledger_submissions_total',
            'Extrinsics submitted to the ledger',
            labelnames=['call'],
            registry=reg
        )
        self.submission_failures = Counter(
            'ledger_submission_failures_total',
            'Extrinsics rejected by the ledger',
            labelnames=['call'],
            registry=reg
        )
        self.inclusion_latency_sec = Histogram(
            'ledger_inclusion_latency_sec',
            'Time from submission to block inclusion (seconds)',
            buckets=[1, 2, 4, 6, 12, 24, 60, 120],
            registry=reg
        )

        # === HTTP Metrics ===
        self.http_requests = Counter(
            'http_requests_total',
            'HTTP requests served',
            labelnames=['method', 'route', 'status'],
            registry=reg
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)
