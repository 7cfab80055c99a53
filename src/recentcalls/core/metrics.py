"""Prometheus metrics for recent-call resolution.

Metrics exported:
- recent_calls_remote_queries_total: Counter of remote call-log queries
- recent_calls_resolutions_total: Counter of finished resolutions by outcome
- recent_calls_resolution_latency_seconds: Histogram of resolution latency

Resolution outcomes:
- local: satisfied from the local call log
- remote: remote fallback was used
- empty: contact has no usable phone identities
- reset: contact was cleared
- stale: result discarded because a newer request superseded it
- error: remote fallback failed
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

if TYPE_CHECKING:
    from collections.abc import Callable

remote_queries_total = Counter(
    "recent_calls_remote_queries_total",
    "Total number of remote call-log queries",
    labelnames=["identity_kind", "status"],
)

resolutions_total = Counter(
    "recent_calls_resolutions_total",
    "Total number of finished recent-call resolutions",
    labelnames=["outcome"],
)

resolution_latency_seconds = Histogram(
    "recent_calls_resolution_latency_seconds",
    "Latency of recent-call resolutions in seconds",
    labelnames=["outcome"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class ResolutionMetrics:
    """Thin recorder over the module-level collectors."""

    def record_remote_query(self, identity_kind: str, status: str) -> None:
        """Record one remote call-log query.

        Args:
            identity_kind: "direct_phone" or "extension"
            status: "success", "error" or "rate_limited"
        """
        remote_queries_total.labels(identity_kind=identity_kind, status=status).inc()

    def record_resolution(self, outcome: str, latency: float | None = None) -> None:
        resolutions_total.labels(outcome=outcome).inc()
        if latency is not None:
            resolution_latency_seconds.labels(outcome=outcome).observe(latency)

    @contextmanager
    def track_resolution(self, outcome_callback: Callable[[], str]) -> Iterator[None]:
        """Time a resolution and record it with the outcome known on exit.

        Example:
            with metrics.track_resolution(lambda: outcome):
                ...
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.record_resolution(
                outcome=outcome_callback(),
                latency=time.perf_counter() - start_time,
            )
