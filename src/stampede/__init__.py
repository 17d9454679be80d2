"""Stampede: many virtual users, one target, honest numbers."""

from __future__ import annotations

from stampede._internal.config import StampedeConfig, load_config
from stampede._internal.errors import ConfigurationError, EngineError, StampedeError
from stampede.dsl.checks import (
    Check,
    CheckResult,
    body_contains,
    header_equals,
    json_field_equals,
    latency_below,
    status_is,
)
from stampede.dsl.http_client import HttpExecutor, ResponseOutcome
from stampede.dsl.scenario import RequestSpec, Scenario
from stampede.engine.runner import LoadEngine, run_scenario
from stampede.metrics.aggregator import MetricsAggregator
from stampede.metrics.models import AggregateState, CheckCounts, LatencySummary, Summary

__version__ = "0.1.0"

__all__ = [
    "AggregateState",
    "Check",
    "CheckCounts",
    "CheckResult",
    "ConfigurationError",
    "EngineError",
    "HttpExecutor",
    "LatencySummary",
    "LoadEngine",
    "MetricsAggregator",
    "RequestSpec",
    "ResponseOutcome",
    "Scenario",
    "StampedeConfig",
    "StampedeError",
    "Summary",
    "body_contains",
    "header_equals",
    "json_field_equals",
    "latency_below",
    "load_config",
    "run_scenario",
    "status_is",
]
