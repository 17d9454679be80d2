"""Concurrent-safe run metrics, sharded to keep writers apart.

Every ``IterationResult`` lands in one shard picked by virtual user id. A
shard has its own lock, and a record only holds it for a handful of integer
additions and one histogram insert, so writers on different shards never
wait for each other. ``snapshot()`` visits the shards one at a time and
merges them into a fresh ``AggregateState``.

Shards only ever grow between resets, so a snapshot taken later in a run is
field-wise greater than or equal to an earlier one.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import TYPE_CHECKING

from stampede._internal.logging import get_logger
from stampede.metrics.histogram import LatencyHistogram
from stampede.metrics.models import AggregateState, CheckCounts

if TYPE_CHECKING:
    from stampede.metrics.models import IterationResult

logger = get_logger("metrics.aggregator")

_DEFAULT_SHARDS = 16


class _Shard:
    """One independently locked slice of the aggregate counters."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.iterations = 0
        self.requests = 0
        self.failed_transports = 0
        self.bytes_sent = 0
        self.bytes_received = 0
        # check name -> [passes, fails]
        self.checks: dict[str, list[int]] = {}
        self.status_counts: Counter[int] = Counter()
        self.errors_by_type: Counter[str] = Counter()
        self.latency = LatencyHistogram()

    def add(self, result: IterationResult) -> None:
        with self.lock:
            self.iterations += 1
            self.requests += result.requests
            self.failed_transports += result.failed_transports
            self.bytes_sent += result.bytes_sent
            self.bytes_received += result.bytes_received
            for latency_ms in result.latencies_ms:
                self.latency.record(latency_ms)
            for error_type in result.transport_errors:
                self.errors_by_type[error_type] += 1
            if result.status is not None:
                self.status_counts[result.status] += 1
            for check in result.checks:
                counts = self.checks.setdefault(check.name, [0, 0])
                counts[0 if check.passed else 1] += 1

    def clear(self) -> None:
        with self.lock:
            self.iterations = 0
            self.requests = 0
            self.failed_transports = 0
            self.bytes_sent = 0
            self.bytes_received = 0
            self.checks.clear()
            self.status_counts.clear()
            self.errors_by_type.clear()
            self.latency.reset()


class MetricsAggregator:
    """Accumulates iteration results from all virtual users.

    ``record`` may be called from any number of coroutines or threads at
    once; ``snapshot`` may be called at any time, including mid-run for
    live progress.

    Attributes:
        shard_count: Number of independently locked shards.
    """

    def __init__(self, shard_count: int = _DEFAULT_SHARDS) -> None:
        """Initialize an empty aggregator.

        Args:
            shard_count: Number of shards. Must be >= 1.

        Raises:
            ValueError: If *shard_count* is less than 1.
        """
        if shard_count < 1:
            msg = f"shard_count must be >= 1, got {shard_count}"
            raise ValueError(msg)
        self.shard_count = shard_count
        self._shards = [_Shard() for _ in range(shard_count)]

    def record(self, result: IterationResult) -> None:
        """Fold one iteration result into the counters.

        Args:
            result: The finished iteration.
        """
        self._shards[result.vu_id % self.shard_count].add(result)

    def snapshot(self) -> AggregateState:
        """Return an independent copy of the current aggregate state.

        Records made after this call never change the returned object.

        Returns:
            The merged state of all shards.
        """
        iterations = requests = failed_transports = 0
        bytes_sent = bytes_received = 0
        checks: dict[str, list[int]] = {}
        status_counts: Counter[int] = Counter()
        errors_by_type: Counter[str] = Counter()
        latency = LatencyHistogram()

        for shard in self._shards:
            with shard.lock:
                iterations += shard.iterations
                requests += shard.requests
                failed_transports += shard.failed_transports
                bytes_sent += shard.bytes_sent
                bytes_received += shard.bytes_received
                for name, (passes, fails) in shard.checks.items():
                    totals = checks.setdefault(name, [0, 0])
                    totals[0] += passes
                    totals[1] += fails
                status_counts.update(shard.status_counts)
                errors_by_type.update(shard.errors_by_type)
                latency.merge(shard.latency)

        return AggregateState(
            iterations=iterations,
            requests=requests,
            failed_transports=failed_transports,
            checks={
                name: CheckCounts(passes=passes, fails=fails)
                for name, (passes, fails) in checks.items()
            },
            latency=latency.summarize(),
            status_counts=dict(sorted(status_counts.items())),
            errors_by_type=dict(sorted(errors_by_type.items())),
            bytes_sent=bytes_sent,
            bytes_received=bytes_received,
        )

    def reset(self) -> None:
        """Clear all shards. Called at the start of every run."""
        for shard in self._shards:
            shard.clear()
        logger.debug("Aggregator reset (%d shards)", self.shard_count)
