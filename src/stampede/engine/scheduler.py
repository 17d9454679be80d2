"""Virtual user scheduling: spawn, release, time-box, stop and drain."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from stampede._internal.errors import EngineError
from stampede._internal.logging import get_logger, run_context
from stampede.dsl.scenario import validate_scenario
from stampede.engine.virtual_user import VirtualUser, VUState
from stampede.metrics.models import Summary

if TYPE_CHECKING:
    from collections.abc import Callable

    from stampede.dsl.scenario import Scenario
    from stampede.engine.protocol import ExecutorFactory
    from stampede.metrics.aggregator import MetricsAggregator

logger = get_logger("engine.scheduler")

# Seconds to wait for cancelled users to unwind after the grace period.
_CANCEL_WAIT = 2.0


class Scheduler:
    """Runs one scenario's virtual users for a bounded wall-clock duration.

    All users are created first and released together through a shared
    start event. The run ends at the duration deadline, when every user
    has finished its iteration cap, or when ``request_stop()`` is called,
    whichever comes first. The stop event is then broadcast and users get
    ``grace_period`` seconds to finish their current iteration; any still
    running after that are cancelled and reported as abandoned.

    A run therefore returns within ``duration + grace_period`` plus a short
    cancellation allowance.
    """

    def __init__(
        self,
        aggregator: MetricsAggregator,
        executor_factory: ExecutorFactory,
        *,
        grace_period: float = 30.0,
        progress_interval: float = 1.0,
        on_progress: Callable[[Summary], None] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            aggregator: Sink every virtual user records into.
            executor_factory: Builds one executor per virtual user.
            grace_period: Seconds users get to finish after the stop signal.
            progress_interval: Seconds between ``on_progress`` calls.
            on_progress: Optional callback receiving interim summaries.
        """
        self._aggregator = aggregator
        self._executor_factory = executor_factory
        self._grace_period = grace_period
        self._progress_interval = progress_interval
        self._on_progress = on_progress
        self._halt: asyncio.Event | None = None
        self._users: list[VirtualUser] = []

    @property
    def users(self) -> list[VirtualUser]:
        """Return the virtual users of the current or last run."""
        return list(self._users)

    def request_stop(self) -> None:
        """Ask a running scheduler to end the run early. Idempotent."""
        if self._halt is not None and not self._halt.is_set():
            logger.info("Early stop requested")
            self._halt.set()

    async def run(self, scenario: Scenario) -> Summary:
        """Execute *scenario* and return its summary.

        Args:
            scenario: The scenario to run.

        Returns:
            Immutable summary of the run.

        Raises:
            ConfigurationError: If the scenario is invalid. Raised before
                any virtual user or executor is created.
            EngineError: If the scheduling loop fails unexpectedly.
        """
        validate_scenario(scenario)

        start_event = asyncio.Event()
        stop_event = asyncio.Event()
        self._halt = asyncio.Event()
        self._users = [
            VirtualUser(
                vu_id,
                scenario,
                self._executor_factory,
                self._aggregator,
                start_event=start_event,
                stop_event=stop_event,
            )
            for vu_id in range(scenario.vus)
        ]
        tasks = {
            asyncio.create_task(user.run(), name=f"virtual-user-{user.vu_id}")
            for user in self._users
        }

        logger.info(
            "Starting scenario %s: vus=%d, duration=%.1fs, target=%s %s",
            scenario.name,
            scenario.vus,
            scenario.duration,
            scenario.method,
            scenario.url,
            extra=run_context(scenario.name),
        )

        start_time = time.monotonic()
        start_event.set()
        halt_waiter = asyncio.create_task(self._halt.wait())
        abandoned = 0

        try:
            await self._wait_for_end(scenario, tasks, halt_waiter, start_time)
        except Exception as exc:
            logger.exception("Scheduler failed")
            msg = f"Scheduler failed while running scenario {scenario.name!r}"
            raise EngineError(msg) from exc
        finally:
            halt_waiter.cancel()
            abandoned = await self._drain(scenario, tasks, stop_event)

        summary = self._summarize(scenario, time.monotonic() - start_time, abandoned)
        logger.info(
            "Scenario %s finished: elapsed=%.1fs, iterations=%d, requests=%d, "
            "transport_errors=%d, checks_failed=%d, completed_vus=%d/%d",
            scenario.name,
            summary.elapsed_seconds,
            summary.state.iterations,
            summary.state.requests,
            summary.state.failed_transports,
            summary.state.checks_failed,
            summary.completed_vus,
            summary.vus,
            extra=run_context(scenario.name),
        )
        return summary

    async def _wait_for_end(
        self,
        scenario: Scenario,
        tasks: set[asyncio.Task[None]],
        halt_waiter: asyncio.Task[bool],
        start_time: float,
    ) -> None:
        """Block until the deadline, all users finished, or a stop request."""
        deadline = start_time + scenario.duration
        progress_enabled = self._on_progress is not None
        next_progress = start_time + self._progress_interval if progress_enabled else deadline
        pending = set(tasks)

        while pending and not halt_waiter.done():
            now = time.monotonic()
            if now >= deadline:
                break

            timeout = min(deadline, next_progress) - now
            done, _ = await asyncio.wait(
                {*pending, halt_waiter},
                timeout=max(timeout, 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
            pending -= done

            if progress_enabled and time.monotonic() >= next_progress:
                self._emit_progress(scenario, time.monotonic() - start_time)
                next_progress += self._progress_interval

    async def _drain(
        self,
        scenario: Scenario,
        tasks: set[asyncio.Task[None]],
        stop_event: asyncio.Event,
    ) -> int:
        """Broadcast stop, wait out the grace period, cancel stragglers.

        Returns:
            Number of users that never reached DONE: cancelled after the
            grace period or crashed.
        """
        stop_event.set()
        # Let every user observe the stop event once, even with no grace period.
        await asyncio.sleep(0)
        _done, pending = await asyncio.wait(tasks, timeout=self._grace_period)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=_CANCEL_WAIT)

        for task in tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.error(
                    "%s crashed",
                    task.get_name(),
                    exc_info=task.exception(),
                    extra=run_context(scenario.name),
                )

        abandoned = [user for user in self._users if user.state is not VUState.DONE]
        for user in abandoned:
            logger.warning(
                "User %d did not finish within the %.1fs grace period, abandoned",
                user.vu_id,
                self._grace_period,
                extra=run_context(scenario.name, vu_id=user.vu_id),
            )
        return len(abandoned)

    def _emit_progress(self, scenario: Scenario, elapsed: float) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(self._summarize(scenario, elapsed, abandoned=0))
        except Exception:
            logger.warning("Progress callback failed", exc_info=True)

    def _summarize(self, scenario: Scenario, elapsed: float, abandoned: int) -> Summary:
        return Summary(
            scenario_name=scenario.name,
            state=self._aggregator.snapshot(),
            elapsed_seconds=elapsed,
            vus=scenario.vus,
            completed_vus=sum(1 for user in self._users if user.state is VUState.DONE),
            abandoned_vus=abandoned,
        )
