"""Per-user iteration loop: build, execute, check, record, pace."""

from __future__ import annotations

import asyncio
import contextlib
import random
import time
from enum import Enum, auto
from typing import TYPE_CHECKING

from stampede._internal.logging import get_logger, run_context
from stampede.dsl.http_client import ResponseOutcome
from stampede.dsl.scenario import build_request
from stampede.engine.evaluator import evaluate_checks
from stampede.metrics.models import IterationResult

if TYPE_CHECKING:
    from stampede.dsl.checks import CheckResult
    from stampede.dsl.scenario import RequestSpec, Scenario
    from stampede.engine.protocol import Executor, ExecutorFactory
    from stampede.metrics.aggregator import MetricsAggregator

logger = get_logger("engine.virtual_user")


class VUState(Enum):
    """Lifecycle of a virtual user."""

    IDLE = auto()
    RUNNING = auto()
    STOPPING = auto()
    DONE = auto()


class VirtualUser:
    """One simulated client running iterations until told to stop.

    State machine: IDLE -> RUNNING -> STOPPING -> DONE

    The user waits for the shared start event, then loops. The stop event
    is observed after every iteration and wakes the pacing sleep early; an
    iteration that is already in flight always completes and is recorded.
    A user cancelled by the scheduler never records its partial iteration
    and never reaches DONE.

    Attributes:
        vu_id: Zero-based id of this virtual user.
    """

    def __init__(
        self,
        vu_id: int,
        scenario: Scenario,
        executor_factory: ExecutorFactory,
        aggregator: MetricsAggregator,
        *,
        start_event: asyncio.Event,
        stop_event: asyncio.Event,
    ) -> None:
        """Initialize an idle virtual user.

        Args:
            vu_id: Zero-based id of this virtual user.
            scenario: Validated scenario to execute.
            executor_factory: Builds this user's executor.
            aggregator: Shared sink for iteration results.
            start_event: Set by the scheduler to release all users at once.
            stop_event: Set by the scheduler to ask all users to finish.
        """
        self.vu_id = vu_id
        self._scenario = scenario
        self._executor_factory = executor_factory
        self._aggregator = aggregator
        self._start_event = start_event
        self._stop_event = stop_event
        self._state = VUState.IDLE
        self._iterations = 0

    @property
    def state(self) -> VUState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def iterations(self) -> int:
        """Return the number of recorded iterations."""
        return self._iterations

    async def run(self) -> None:
        """Run the iteration loop until stopped or the iteration cap is hit."""
        await self._start_event.wait()
        self._state = VUState.RUNNING

        async with self._executor_factory(self.vu_id) as executor:
            while not self._stop_event.is_set():
                result = await self._run_iteration(executor)
                self._aggregator.record(result)
                self._iterations += 1

                if self._reached_iteration_cap():
                    break
                await self._pace()

            self._state = VUState.STOPPING

        self._state = VUState.DONE
        logger.debug(
            "User %d done after %d iterations",
            self.vu_id,
            self._iterations,
            extra=run_context(self._scenario.name, vu_id=self.vu_id),
        )

    async def _run_iteration(self, executor: Executor) -> IterationResult:
        spec = build_request(self._scenario, self.vu_id, self._iterations)
        body_size = len(spec.body) if spec.body is not None else 0

        latencies: list[float] = []
        errors: list[str] = []
        for _attempt in range(self._scenario.retries + 1):
            outcome = await self._execute(executor, spec)
            latencies.append(outcome.latency_ms)
            if not outcome.transport_failed:
                break
            errors.append(outcome.error_type or "Error")
            # Retries never extend shutdown.
            if self._stop_event.is_set():
                break

        checks: tuple[CheckResult, ...] = ()
        if not outcome.transport_failed:
            checks = tuple(evaluate_checks(outcome, self._scenario.checks))

        return IterationResult(
            vu_id=self.vu_id,
            iteration=self._iterations,
            latencies_ms=tuple(latencies),
            transport_errors=tuple(errors),
            status=outcome.status,
            checks=checks,
            bytes_sent=body_size * len(latencies),
            bytes_received=len(outcome.body) if outcome.body is not None else 0,
        )

    async def _execute(self, executor: Executor, spec: RequestSpec) -> ResponseOutcome:
        """Call the executor, turning an unexpected exception into a failure."""
        start = time.perf_counter()
        try:
            return await executor.execute(spec)
        except Exception as exc:
            logger.debug(
                "Executor raised for user %d, recording as transport failure",
                self.vu_id,
                exc_info=True,
                extra=run_context(self._scenario.name, vu_id=self.vu_id),
            )
            return ResponseOutcome(
                status=None,
                body=None,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _reached_iteration_cap(self) -> bool:
        cap = self._scenario.iterations
        return cap is not None and self._iterations >= cap

    async def _pace(self) -> None:
        """Sleep for the pacing interval, waking early on the stop signal."""
        low, high = self._scenario.pace_range
        delay = random.uniform(low, high) if high > low else low  # noqa: S311
        if delay <= 0:
            # Yield to the event loop between back-to-back iterations.
            await asyncio.sleep(0)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
