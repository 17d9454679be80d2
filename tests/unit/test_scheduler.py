"""Tests for the Scheduler: spawning, time-boxing, stopping and draining."""

from __future__ import annotations

import asyncio
import time

import pytest

from stampede._internal.errors import ConfigurationError
from stampede.dsl.checks import Check, status_is
from stampede.dsl.http_client import ResponseOutcome
from stampede.dsl.scenario import Scenario
from stampede.engine.scheduler import Scheduler
from stampede.engine.virtual_user import VUState
from stampede.metrics.aggregator import MetricsAggregator

URL = "http://127.0.0.1:9/target"


class _HangingExecutor:
    """Executor whose requests never return."""

    async def __aenter__(self) -> _HangingExecutor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def execute(self, spec) -> ResponseOutcome:
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class TestScheduler:
    async def test_exact_counts_with_iteration_cap(self, fake_factory, fake_executors):
        """N users x M iterations records exactly N*M of everything."""
        scenario = Scenario(
            URL,
            vus=5,
            duration=10.0,
            iterations=4,
            checks=[Check("ok", status_is(200)), Check("created", status_is(201))],
        )
        aggregator = MetricsAggregator()
        summary = await Scheduler(aggregator, fake_factory).run(scenario)

        state = summary.state
        assert len(fake_executors) == 5
        assert state.iterations == 20
        assert state.requests == 20
        assert state.latency.count == 20
        assert state.checks["ok"].passes == 20
        assert state.checks["created"].fails == 20
        assert state.check_failure_rate == 0.5
        assert summary.vus == 5
        assert summary.completed_vus == 5
        assert summary.abandoned_vus == 0
        # All users finished early, so the run did not wait for the deadline.
        assert summary.elapsed_seconds < 5.0

    async def test_runs_for_duration(self, fake_factory):
        scenario = Scenario(URL, vus=3, duration=0.3, pace=0.01)
        began = time.monotonic()
        summary = await Scheduler(MetricsAggregator(), fake_factory, grace_period=1.0).run(
            scenario
        )
        elapsed = time.monotonic() - began

        assert 0.3 <= elapsed < 1.5
        assert summary.state.iterations > 0
        assert summary.completed_vus == 3

    async def test_users_get_distinct_ids(self, fake_factory, fake_executors):
        scenario = Scenario(URL + "?vu=$vu", vus=4, duration=5.0, iterations=1)
        await Scheduler(MetricsAggregator(), fake_factory).run(scenario)

        urls = sorted(executor.calls[0].url for executor in fake_executors)
        assert urls == [URL + f"?vu={vu}" for vu in range(4)]

    @pytest.mark.parametrize("vus", [0, -1])
    async def test_invalid_scenario_creates_no_executor(self, vus, fake_factory, fake_executors):
        scheduler = Scheduler(MetricsAggregator(), fake_factory)
        with pytest.raises(ConfigurationError):
            await scheduler.run(Scenario(URL, vus=vus, duration=1.0))
        assert fake_executors == []
        assert scheduler.users == []

    async def test_hanging_users_are_abandoned_after_grace(self):
        scenario = Scenario(URL, vus=2, duration=0.2)
        aggregator = MetricsAggregator()
        scheduler = Scheduler(aggregator, lambda _vu: _HangingExecutor(), grace_period=0.2)

        began = time.monotonic()
        summary = await asyncio.wait_for(scheduler.run(scenario), timeout=5.0)
        elapsed = time.monotonic() - began

        assert elapsed < 0.2 + 0.2 + 2.0 + 0.5
        assert summary.abandoned_vus == 2
        assert summary.completed_vus == 0
        # Abandoned iterations are never recorded.
        assert summary.state.iterations == 0
        assert all(user.state is not VUState.DONE for user in scheduler.users)

    async def test_request_stop_ends_run_early(self, fake_factory):
        scenario = Scenario(URL, vus=2, duration=30.0, pace=0.01)
        scheduler = Scheduler(MetricsAggregator(), fake_factory, grace_period=1.0)

        task = asyncio.create_task(scheduler.run(scenario))
        await asyncio.sleep(0.1)
        scheduler.request_stop()
        summary = await asyncio.wait_for(task, timeout=3.0)

        assert summary.elapsed_seconds < 3.0
        assert summary.completed_vus == 2

    async def test_progress_callback_receives_interim_summaries(self, fake_factory):
        seen = []
        scenario = Scenario(URL, vus=2, duration=0.5, pace=0.01)
        scheduler = Scheduler(
            MetricsAggregator(),
            fake_factory,
            progress_interval=0.1,
            on_progress=seen.append,
        )
        final = await scheduler.run(scenario)

        assert len(seen) >= 2
        iterations = [s.state.iterations for s in seen]
        assert iterations == sorted(iterations)
        assert final.state.iterations >= iterations[-1]

    async def test_failing_progress_callback_does_not_stop_run(self, fake_factory):
        def _broken(_summary) -> None:
            msg = "display crashed"
            raise RuntimeError(msg)

        scenario = Scenario(URL, vus=1, duration=0.3, pace=0.01)
        scheduler = Scheduler(
            MetricsAggregator(), fake_factory, progress_interval=0.05, on_progress=_broken
        )
        summary = await scheduler.run(scenario)
        assert summary.state.iterations > 0
        assert summary.completed_vus == 1


class TestDrainAccounting:
    async def test_zero_grace_period_never_double_counts_users(self, fake_factory):
        """Every user is either completed or abandoned, never both."""
        scenario = Scenario(URL, vus=3, duration=0.2, pace=5.0)
        scheduler = Scheduler(MetricsAggregator(), fake_factory, grace_period=0.0)

        summary = await asyncio.wait_for(scheduler.run(scenario), timeout=5.0)

        assert summary.completed_vus + summary.abandoned_vus == 3
        done = sum(1 for user in scheduler.users if user.state is VUState.DONE)
        assert summary.completed_vus == done
        assert summary.abandoned_vus == 3 - done

    async def test_zero_grace_period_keeps_recorded_iterations(self, fake_factory):
        """Iterations finished before the stop are counted even with no grace."""
        scenario = Scenario(URL, vus=3, duration=0.2, pace=5.0)
        scheduler = Scheduler(MetricsAggregator(), fake_factory, grace_period=0.0)

        summary = await scheduler.run(scenario)

        assert summary.state.iterations == 3
        assert summary.completed_vus + summary.abandoned_vus == 3

    async def test_tuple_checks_are_evaluated(self, fake_factory):
        scenario = Scenario(
            URL, vus=2, duration=10.0, iterations=3, checks=[("ok", status_is(200))]
        )
        summary = await Scheduler(MetricsAggregator(), fake_factory).run(scenario)

        assert summary.state.iterations == 6
        assert summary.state.checks["ok"].passes == 6
        assert summary.completed_vus == 2

    async def test_malformed_check_fails_before_any_user_starts(
        self, fake_factory, fake_executors
    ):
        scenario = Scenario(URL, vus=2, duration=1.0, checks=["status is 200"])
        with pytest.raises(ConfigurationError, match="checks"):
            await Scheduler(MetricsAggregator(), fake_factory).run(scenario)
        assert fake_executors == []
