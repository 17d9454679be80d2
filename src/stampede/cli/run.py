"""``stampede run``: execute one scenario with live terminal output."""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from stampede._internal.config import load_config
from stampede._internal.errors import StampedeError
from stampede._internal.logging import setup_logging
from stampede.dsl.checks import Check, status_is
from stampede.dsl.scenario import Scenario
from stampede.engine.runner import LoadEngine

if TYPE_CHECKING:
    from stampede._internal.types import PaceRange
    from stampede.metrics.models import Summary

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Flag parsing helpers
# ---------------------------------------------------------------------------


def _parse_headers(raw_headers: list[str]) -> dict[str, str]:
    """Parse repeated ``Name: value`` header flags.

    Args:
        raw_headers: Raw ``--header`` values.

    Returns:
        Header name to value.

    Raises:
        typer.BadParameter: If a value has no colon or an empty name.
    """
    headers: dict[str, str] = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            msg = f"Header must look like 'Name: value', got: {raw!r}"
            raise typer.BadParameter(msg, param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


def _parse_pace(raw: str) -> float | PaceRange:
    """Parse ``--pace`` as ``SECONDS`` or ``MIN:MAX``.

    Raises:
        typer.BadParameter: If the value is not numeric.
    """
    try:
        if ":" in raw:
            low, high = raw.split(":", 1)
            return (float(low), float(high))
        return float(raw)
    except ValueError:
        msg = f"Pace must be SECONDS or MIN:MAX, got: {raw!r}"
        raise typer.BadParameter(msg, param_hint="--pace") from None


def _build_payload(data: str | None, json_body: str | None) -> str | dict[str, Any] | None:
    """Pick the request payload from ``--data`` or ``--json``.

    Raises:
        typer.BadParameter: If both flags are given, or ``--json`` is not
            a JSON object.
    """
    if data is not None and json_body is not None:
        msg = "--data and --json are mutually exclusive"
        raise typer.BadParameter(msg)
    if json_body is None:
        return data

    try:
        parsed = json.loads(json_body)
    except json.JSONDecodeError as exc:
        msg = f"--json is not valid JSON: {exc}"
        raise typer.BadParameter(msg, param_hint="--json") from None
    if not isinstance(parsed, dict):
        msg = "--json must be a JSON object"
        raise typer.BadParameter(msg, param_hint="--json")
    return parsed


def _build_checks(expect_status: list[int]) -> list[Check]:
    if not expect_status:
        return []
    codes = sorted(set(expect_status))
    if len(codes) == 1:
        name = f"status is {codes[0]}"
    else:
        name = "status in " + ", ".join(str(code) for code in codes)
    return [Check(name, status_is(*codes))]


# ---------------------------------------------------------------------------
# Rich live display
# ---------------------------------------------------------------------------


def _make_live_table(summary: Summary | None) -> Table:
    """Build a Rich table with the current run metrics.

    Args:
        summary: Latest interim summary, or None before the first one.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if summary is None:
        table.add_row("Status", "Starting...")
        return table

    state = summary.state
    table.add_row("Elapsed", f"{summary.elapsed_seconds:.0f}s")
    table.add_row("Iterations", str(state.iterations))
    table.add_row("Requests/sec", f"{summary.requests_per_second:.1f}")
    table.add_row("p50 Latency", f"{state.latency.percentile(50.0):.1f}ms")
    table.add_row("p95 Latency", f"{state.latency.percentile(95.0):.1f}ms")
    table.add_row("Transport Errors", str(state.failed_transports))
    table.add_row("Checks Failed", f"{state.check_failure_rate * 100:.2f}%")
    return table


def _print_summary(summary: Summary) -> None:
    """Print the final summary tables after the run completes.

    Args:
        summary: Completed run summary.
    """
    state = summary.state
    table = Table(title="Run Complete", show_header=True, header_style="bold green", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Scenario", summary.scenario_name)
    table.add_row("Duration", f"{summary.elapsed_seconds:.1f}s")
    table.add_row("Virtual Users", f"{summary.completed_vus}/{summary.vus} completed")
    if summary.abandoned_vus:
        table.add_row("Abandoned Users", f"[yellow]{summary.abandoned_vus}[/yellow]")
    table.add_row("Iterations", str(state.iterations))
    table.add_row("Requests", str(state.requests))
    table.add_row("Avg Requests/sec", f"{summary.requests_per_second:.1f}")
    table.add_row("Transport Errors", str(state.failed_transports))
    table.add_row("Transport Error Rate", f"{state.transport_error_rate * 100:.2f}%")
    table.add_row("Data Sent", f"{state.bytes_sent} B")
    table.add_row("Data Received", f"{state.bytes_received} B")
    table.add_row("Avg Latency", f"{state.latency.avg_ms:.1f}ms")
    table.add_row("Min Latency", f"{state.latency.min_ms:.1f}ms")
    table.add_row("Max Latency", f"{state.latency.max_ms:.1f}ms")
    for percentile, value in state.latency.percentiles.items():
        table.add_row(f"p{percentile:g} Latency", f"{value:.1f}ms")
    console.print(table)

    if state.checks:
        check_table = Table(title="Checks", show_header=True, header_style="bold cyan", expand=True)
        check_table.add_column("Check")
        check_table.add_column("Passes", justify="right")
        check_table.add_column("Fails", justify="right")
        check_table.add_column("Pass %", justify="right")
        for name, counts in state.checks.items():
            check_table.add_row(
                name,
                str(counts.passes),
                str(counts.fails),
                f"{counts.pass_rate * 100:.2f}%",
            )
        console.print(check_table)

    if state.status_counts or state.errors_by_type:
        outcome_table = Table(
            title="Outcomes", show_header=True, header_style="bold cyan", expand=True
        )
        outcome_table.add_column("Outcome")
        outcome_table.add_column("Count", justify="right")
        for status, count in state.status_counts.items():
            outcome_table.add_row(f"HTTP {status}", str(count))
        for error_type, count in state.errors_by_type.items():
            outcome_table.add_row(f"[red]{error_type}[/red]", str(count))
        console.print(outcome_table)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    url: str | None = typer.Argument(
        None,
        help="Target URL. Defaults to $STAMPEDE_TARGET_URL.",
    ),
    vus: int = typer.Option(
        10,
        "--vus",
        "-u",
        help="Concurrent virtual users.",
    ),
    duration: float = typer.Option(
        30.0,
        "--duration",
        "-d",
        help="Run duration in seconds.",
    ),
    method: str | None = typer.Option(
        None,
        "--method",
        "-X",
        help="HTTP method (default: GET, or POST when a body is given).",
    ),
    data: str | None = typer.Option(
        None,
        "--data",
        "-b",
        help="Raw request body. Supports $vu and $iteration.",
    ),
    json_body: str | None = typer.Option(
        None,
        "--json",
        help="JSON object request body. Supports $vu and $iteration in strings.",
    ),
    header: list[str] | None = typer.Option(
        None,
        "--header",
        "-H",
        help="Request header as 'Name: value'. Repeatable.",
    ),
    pace: str = typer.Option(
        "0",
        "--pace",
        help="Pause between iterations: SECONDS or MIN:MAX.",
    ),
    expect_status: list[int] | None = typer.Option(
        None,
        "--expect-status",
        help="Expected HTTP status, checked on every response. Repeatable.",
    ),
    iterations: int | None = typer.Option(
        None,
        "--iterations",
        help="Stop each virtual user after this many iterations.",
    ),
    retries: int = typer.Option(
        0,
        "--retries",
        help="Retries per iteration after a transport failure.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds (default: $STAMPEDE_TIMEOUT or 10).",
    ),
    grace_period: float | None = typer.Option(
        None,
        "--grace-period",
        help="Seconds users get to finish after the run ends (default: 30).",
        min=0.0,
    ),
    fail_on_check_rate: float | None = typer.Option(
        None,
        "--fail-on-check-rate",
        help="Exit non-zero if the check failure rate exceeds this (e.g., 0.05).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit logs as one JSON object per line.",
    ),
) -> None:
    """Run a constant-concurrency load test against one URL."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=log_json)

    try:
        config = load_config()
    except StampedeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    overrides: dict[str, float] = {}
    if timeout is not None:
        if not timeout > 0:
            msg = f"Timeout must be positive, got: {timeout}"
            raise typer.BadParameter(msg, param_hint="--timeout")
        overrides["request_timeout"] = timeout
    if grace_period is not None:
        overrides["grace_period"] = grace_period
    config = dataclasses.replace(config, **overrides)

    target = url or config.default_target_url
    if not target:
        msg = "No target URL given and STAMPEDE_TARGET_URL is not set"
        raise typer.BadParameter(msg, param_hint="URL")

    scenario = Scenario(
        url=target,
        vus=vus,
        duration=duration,
        method=method,
        payload=_build_payload(data, json_body),
        headers=_parse_headers(header or []),
        pace=_parse_pace(pace),
        checks=_build_checks(expect_status or []),
        iterations=iterations,
        retries=retries,
    )

    console.print(
        Panel(
            f"[bold]Target:[/bold]   {scenario.method} {scenario.url}\n"
            f"[bold]Users:[/bold]    {scenario.vus}\n"
            f"[bold]Duration:[/bold] {scenario.duration}s",
            title="Stampede",
            border_style="cyan",
        )
    )

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=2,
            transient=True,
        ) as live:

            def _on_progress(summary: Summary) -> None:
                live.update(_make_live_table(summary))

            engine = LoadEngine(config, on_progress=_on_progress, handle_signals=True)
            summary = engine.run(scenario)
    except StampedeError as exc:
        console.print(f"[red]Load test failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    _print_summary(summary)

    failure_rate = summary.state.check_failure_rate
    if fail_on_check_rate is not None and failure_rate > fail_on_check_rate:
        console.print(
            f"[red]FAIL:[/red] Check failure rate {failure_rate * 100:.2f}% "
            f"exceeds threshold {fail_on_check_rate * 100:.2f}%"
        )
        raise typer.Exit(code=1)

    console.print("[green]Load test completed successfully.[/green]")
