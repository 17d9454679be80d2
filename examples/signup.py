"""Signup endpoint load test: 100 users posting for one minute.

Every virtual user posts a JSON signup form once every two seconds and
checks for a 200. Run with:

    python examples/signup.py
"""

from __future__ import annotations

import logging

from stampede import Check, Scenario, run_scenario, status_is
from stampede._internal.logging import setup_logging

scenario = Scenario(
    url="http://localhost:8080/signup",
    vus=100,
    duration=60.0,
    payload={
        "Name": "user-${vu}-${iteration}",
        "Email": "user${vu}.${iteration}@example.com",
        "Password": "123",
    },
    pace=2.0,
    checks=[Check("status should be 200", status_is(200))],
    name="signup",
)


if __name__ == "__main__":
    setup_logging(logging.INFO)
    summary = run_scenario(scenario)
    state = summary.state
    print(  # noqa: T201
        f"{state.iterations} iterations, {state.failed_transports} transport errors, "
        f"{state.check_failure_rate:.2%} checks failed, "
        f"p95 {state.latency.percentile(95.0):.1f}ms"
    )
