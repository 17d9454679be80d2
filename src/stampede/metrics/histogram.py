"""Latency distribution backed by an HDR histogram.

``hdrh`` only stores integers, so latencies are recorded as microseconds.
Count, sum, min and max are tracked exactly alongside the histogram; the
histogram itself is used for percentiles only.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

from stampede.metrics.models import LatencySummary

# Range: 1 microsecond to 60 seconds (in microseconds)
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 60_000_000
_SIGNIFICANT_DIGITS = 3

SUMMARY_PERCENTILES = (50.0, 75.0, 90.0, 95.0, 99.0, 99.9)


class LatencyHistogram:
    """Mergeable latency accumulator, in milliseconds.

    Not thread-safe on its own; the aggregator guards each instance with
    its shard lock.
    """

    def __init__(self) -> None:
        self._histogram = HdrHistogram(
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, _SIGNIFICANT_DIGITS
        )
        self.count = 0
        self.total_ms = 0.0
        self.min_ms = 0.0
        self.max_ms = 0.0

    def record(self, latency_ms: float) -> None:
        """Record one latency value.

        Values outside 1us..60s are clamped for the percentile histogram
        only; count, sum, min and max keep the exact value.

        Args:
            latency_ms: Latency in milliseconds.
        """
        if self.count == 0:
            self.min_ms = self.max_ms = latency_ms
        else:
            self.min_ms = min(self.min_ms, latency_ms)
            self.max_ms = max(self.max_ms, latency_ms)
        self.count += 1
        self.total_ms += latency_ms

        value_us = int(latency_ms * 1000)
        self._histogram.record_value(
            max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        )

    def merge(self, other: LatencyHistogram) -> None:
        """Fold *other* into this histogram."""
        if other.count == 0:
            return
        if self.count == 0:
            self.min_ms, self.max_ms = other.min_ms, other.max_ms
        else:
            self.min_ms = min(self.min_ms, other.min_ms)
            self.max_ms = max(self.max_ms, other.max_ms)
        self.count += other.count
        self.total_ms += other.total_ms
        self._histogram.add(other._histogram)

    def percentile(self, percentile: float) -> float:
        """Return the latency at *percentile* (0-100) in ms, 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    def summarize(self) -> LatencySummary:
        """Freeze the current distribution into a ``LatencySummary``."""
        return LatencySummary(
            count=self.count,
            total_ms=self.total_ms,
            min_ms=self.min_ms,
            max_ms=self.max_ms,
            percentiles={p: self.percentile(p) for p in SUMMARY_PERCENTILES},
        )

    def reset(self) -> None:
        """Clear all recorded values."""
        self._histogram.reset()
        self.count = 0
        self.total_ms = 0.0
        self.min_ms = 0.0
        self.max_ms = 0.0
