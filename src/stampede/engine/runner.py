"""Top-level engine: wires aggregator, executors and scheduler for a run."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING

from stampede._internal.config import StampedeConfig
from stampede._internal.logging import get_logger
from stampede.dsl.http_client import HttpExecutor
from stampede.engine.scheduler import Scheduler
from stampede.metrics.aggregator import MetricsAggregator

if TYPE_CHECKING:
    from collections.abc import Callable

    from stampede.dsl.scenario import Scenario
    from stampede.engine.protocol import Executor, ExecutorFactory
    from stampede.metrics.models import Summary

logger = get_logger("engine.runner")


def _install_uvloop() -> None:
    """Install uvloop as the event loop policy when it is available.

    Falls back to the default asyncio loop on Windows or when uvloop is
    not installed.
    """
    if sys.platform == "win32":
        return

    try:
        import uvloop

        uvloop.install()
        logger.debug("uvloop installed as event loop policy")
    except ImportError:
        logger.debug("uvloop not available, using default asyncio event loop")


class LoadEngine:
    """Runs scenarios and returns their summaries.

    Each run starts from a reset aggregator, so one engine can execute
    several scenarios in sequence. ``aggregator.snapshot()`` may be read
    from another thread while a run is in progress.

    Attributes:
        config: Engine configuration (timeouts, grace period).
        aggregator: The metrics aggregator shared by all virtual users.
    """

    def __init__(
        self,
        config: StampedeConfig | None = None,
        *,
        executor_factory: ExecutorFactory | None = None,
        on_progress: Callable[[Summary], None] | None = None,
        handle_signals: bool = False,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration. Defaults to ``StampedeConfig()``.
            executor_factory: Builds one executor per virtual user. Defaults
                to an ``HttpExecutor`` using ``config.request_timeout``.
            on_progress: Optional callback receiving interim summaries every
                ``config.progress_interval`` seconds.
            handle_signals: Turn SIGINT/SIGTERM into an early, graceful stop
                while a run is in progress. Only valid on the main thread.
        """
        self.config = config or StampedeConfig()
        self.aggregator = MetricsAggregator()
        self._executor_factory = executor_factory or self._default_executor
        self._on_progress = on_progress
        self._handle_signals = handle_signals
        self._scheduler: Scheduler | None = None

    def run(self, scenario: Scenario) -> Summary:
        """Execute *scenario* in a fresh event loop. Blocks until done.

        Args:
            scenario: The scenario to execute.

        Returns:
            Immutable summary of the run.

        Raises:
            ConfigurationError: If the scenario is invalid.
            EngineError: If the engine fails unexpectedly.
        """
        _install_uvloop()
        return asyncio.run(self.run_async(scenario))

    async def run_async(self, scenario: Scenario) -> Summary:
        """Execute *scenario* on the running event loop.

        Args:
            scenario: The scenario to execute.

        Returns:
            Immutable summary of the run.

        Raises:
            ConfigurationError: If the scenario is invalid.
            EngineError: If the engine fails unexpectedly.
        """
        self.aggregator.reset()
        self._scheduler = Scheduler(
            self.aggregator,
            self._executor_factory,
            grace_period=self.config.grace_period,
            progress_interval=self.config.progress_interval,
            on_progress=self._on_progress,
        )

        if self._handle_signals:
            self._install_signal_handlers()
        try:
            return await self._scheduler.run(scenario)
        finally:
            if self._handle_signals:
                self._remove_signal_handlers()

    def stop(self) -> None:
        """Ask the current run to stop early. Call from the event loop thread."""
        if self._scheduler is not None:
            self._scheduler.request_stop()

    def _default_executor(self, vu_id: int) -> Executor:
        return HttpExecutor(timeout=self.config.request_timeout)

    def _install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to a graceful stop."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self.stop()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))
            signal.signal(signal.SIGTERM, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))

    def _remove_signal_handlers(self) -> None:
        """Restore default signal handling."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)


def run_scenario(
    scenario: Scenario,
    config: StampedeConfig | None = None,
    *,
    on_progress: Callable[[Summary], None] | None = None,
) -> Summary:
    """Run *scenario* with a default HTTP engine and return its summary.

    Args:
        scenario: The scenario to execute.
        config: Optional engine configuration.
        on_progress: Optional interim summary callback.

    Returns:
        Immutable summary of the run.
    """
    return LoadEngine(config, on_progress=on_progress).run(scenario)
