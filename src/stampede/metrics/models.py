"""Metric dataclasses: per-iteration results, aggregate snapshots, summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from stampede.dsl.checks import CheckResult


def _empty_mapping() -> Mapping:  # type: ignore[type-arg]
    return MappingProxyType({})


@dataclass(frozen=True)
class IterationResult:
    """Everything one iteration reports to the aggregator.

    Attributes:
        vu_id: Virtual user that ran the iteration.
        iteration: Zero-based iteration index within that user.
        latencies_ms: Latency of every request attempt, retries included.
        transport_errors: Error type of every attempt that got no response.
        status: Status code of the final attempt, None if it failed.
        checks: Check results; empty when the final attempt failed.
        bytes_sent: Request body bytes sent over all attempts.
        bytes_received: Response body bytes received.
    """

    vu_id: int
    iteration: int
    latencies_ms: tuple[float, ...] = ()
    transport_errors: tuple[str, ...] = ()
    status: int | None = None
    checks: tuple[CheckResult, ...] = ()
    bytes_sent: int = 0
    bytes_received: int = 0

    @property
    def requests(self) -> int:
        """Return the number of request attempts."""
        return len(self.latencies_ms)

    @property
    def failed_transports(self) -> int:
        """Return the number of attempts that failed at the transport level."""
        return len(self.transport_errors)


@dataclass(frozen=True)
class CheckCounts:
    """Pass/fail tally for one named check."""

    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        """Return the number of evaluations."""
        return self.passes + self.fails

    @property
    def pass_rate(self) -> float:
        """Return passes / total, or 0.0 if never evaluated."""
        return self.passes / self.total if self.total else 0.0


@dataclass(frozen=True)
class LatencySummary:
    """Frozen view of a latency distribution, in milliseconds.

    Attributes:
        count: Number of recorded latencies.
        total_ms: Sum of all recorded latencies.
        min_ms: Smallest recorded latency.
        max_ms: Largest recorded latency.
        percentiles: Percentile (0-100) to latency.
    """

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    percentiles: Mapping[float, float] = field(default_factory=_empty_mapping)

    def __post_init__(self) -> None:
        object.__setattr__(self, "percentiles", MappingProxyType(dict(self.percentiles)))

    @property
    def avg_ms(self) -> float:
        """Return the mean latency, or 0.0 if empty."""
        return self.total_ms / self.count if self.count else 0.0

    def percentile(self, percentile: float) -> float:
        """Return a precomputed percentile, 0.0 if it was not computed."""
        return self.percentiles.get(percentile, 0.0)


@dataclass(frozen=True)
class AggregateState:
    """Point-in-time copy of the aggregated run metrics.

    Attributes:
        iterations: Completed iterations.
        requests: Request attempts, retries included.
        failed_transports: Attempts that got no HTTP response.
        checks: Check name to pass/fail counts.
        latency: Latency distribution over all attempts.
        status_counts: HTTP status code to count, final attempts only.
        errors_by_type: Transport error type to count.
        bytes_sent: Request body bytes sent.
        bytes_received: Response body bytes received.
    """

    iterations: int = 0
    requests: int = 0
    failed_transports: int = 0
    checks: Mapping[str, CheckCounts] = field(default_factory=_empty_mapping)
    latency: LatencySummary = field(default_factory=LatencySummary)
    status_counts: Mapping[int, int] = field(default_factory=_empty_mapping)
    errors_by_type: Mapping[str, int] = field(default_factory=_empty_mapping)
    bytes_sent: int = 0
    bytes_received: int = 0

    def __post_init__(self) -> None:
        for name in ("checks", "status_counts", "errors_by_type"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @property
    def checks_passed(self) -> int:
        """Return passes summed over all checks."""
        return sum(c.passes for c in self.checks.values())

    @property
    def checks_failed(self) -> int:
        """Return failures summed over all checks."""
        return sum(c.fails for c in self.checks.values())

    @property
    def check_failure_rate(self) -> float:
        """Return failed / evaluated checks, or 0.0 if none ran."""
        total = self.checks_passed + self.checks_failed
        return self.checks_failed / total if total else 0.0

    @property
    def transport_error_rate(self) -> float:
        """Return failed transports / requests, or 0.0 if none were sent."""
        return self.failed_transports / self.requests if self.requests else 0.0


@dataclass(frozen=True)
class Summary:
    """Immutable result of a run (or an interim progress view of one).

    Attributes:
        scenario_name: Name of the executed scenario.
        state: Aggregated metrics at the time the summary was taken.
        elapsed_seconds: Wall-clock seconds since the virtual users started.
        vus: Configured virtual user count.
        completed_vus: Virtual users that reached the done state.
        abandoned_vus: Virtual users that never reached the done state
            (cancelled after the grace period, or crashed). In a final summary
            it adds up to ``vus`` with ``completed_vus``.
    """

    scenario_name: str
    state: AggregateState
    elapsed_seconds: float
    vus: int
    completed_vus: int
    abandoned_vus: int = 0

    @property
    def requests_per_second(self) -> float:
        """Return the average request rate over the elapsed time."""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.state.requests / self.elapsed_seconds

    @property
    def iterations_per_second(self) -> float:
        """Return the average iteration rate over the elapsed time."""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.state.iterations / self.elapsed_seconds
