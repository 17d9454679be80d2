"""Scenario definition, request materialization and scenario validation."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from string import Template
from typing import TYPE_CHECKING, Any

from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from stampede._internal.errors import ConfigurationError
from stampede.dsl.checks import Check

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stampede._internal.types import Headers, PaceRange, Payload, Predicate

_ALLOWED_SCHEMES = frozenset({"http", "https"})


@dataclass(frozen=True)
class Scenario:
    """Immutable description of one load test run.

    Attributes:
        url: Target URL. May use ``$vu`` and ``$iteration`` placeholders.
        vus: Number of concurrent virtual users.
        duration: Total run duration in seconds.
        method: HTTP method. Defaults to POST when a payload is present,
            GET otherwise.
        payload: Request body template: text, raw bytes, or a mapping that
            is serialized to JSON. String parts may use ``$vu`` and
            ``$iteration``; write ``$$`` for a literal dollar sign.
        headers: Request headers. Keys are case-insensitive.
        pace: Pause between iterations of one virtual user, in seconds,
            either fixed or a ``(min, max)`` range sampled per iteration.
        checks: Named predicates evaluated against every response, in
            declaration order. A ``{name: predicate}`` mapping or
            ``(name, predicate)`` pairs are accepted too.
        iterations: Optional cap on iterations per virtual user.
        retries: Extra attempts a virtual user makes within one iteration
            when the request fails at the transport level.
        name: Label used in logs and reports.
    """

    url: str
    vus: int
    duration: float
    method: str | None = None
    payload: Payload | None = None
    headers: Headers = field(default_factory=dict)
    pace: float | PaceRange = 0.0
    checks: Sequence[Check] | Mapping[str, Predicate] = ()
    iterations: int | None = None
    retries: int = 0
    name: str = "default"

    def __post_init__(self) -> None:
        method = self.method
        if method is None:
            method = "GET" if self.payload is None else "POST"
        object.__setattr__(self, "method", method.upper())
        object.__setattr__(self, "headers", CIMultiDictProxy(CIMultiDict(self.headers)))

        checks = self.checks
        if isinstance(checks, Mapping):
            checks = [Check(name, predicate) for name, predicate in checks.items()]
        object.__setattr__(self, "checks", tuple(_as_check(entry) for entry in checks))

    @property
    def pace_range(self) -> PaceRange:
        """Return the pacing as a ``(min, max)`` range in seconds."""
        if isinstance(self.pace, tuple):
            low, high = self.pace
            return (float(low), float(high))
        return (float(self.pace), float(self.pace))


@dataclass(frozen=True)
class RequestSpec:
    """A request materialized from a scenario for one iteration.

    Attributes:
        method: HTTP method.
        url: Fully rendered URL.
        body: Encoded request body, or None.
        headers: Request headers for this call.
    """

    method: str
    url: str
    body: bytes | None
    headers: CIMultiDict[str]


def build_request(scenario: Scenario, vu_id: int, iteration: int) -> RequestSpec:
    """Materialize the scenario's request template for one iteration.

    Args:
        scenario: The scenario to render.
        vu_id: Virtual user id, substituted for ``$vu``.
        iteration: Zero-based iteration index, substituted for ``$iteration``.

    Returns:
        The rendered request.

    Raises:
        KeyError: If a template names an unknown placeholder.
        ValueError: If a template contains an invalid ``$`` sequence.
        TypeError: If a mapping payload is not JSON-serializable.
    """
    variables = {"vu": vu_id, "iteration": iteration}
    headers: CIMultiDict[str] = CIMultiDict(scenario.headers)
    payload = scenario.payload

    body: bytes | None
    if payload is None:
        body = None
    elif isinstance(payload, bytes):
        body = payload
    elif isinstance(payload, str):
        body = _render(payload, variables).encode("utf-8")
    else:
        body = json.dumps(_render_value(payload, variables)).encode("utf-8")
        if "Content-Type" not in headers:
            headers["Content-Type"] = "application/json"

    return RequestSpec(
        method=scenario.method or "GET",
        url=_render(scenario.url, variables),
        body=body,
        headers=headers,
    )


def validate_scenario(scenario: Scenario) -> None:
    """Fail fast on a scenario that cannot run.

    Also materializes the request once (VU 0, iteration 0) so a malformed
    template surfaces here rather than inside every virtual user.

    Args:
        scenario: The scenario to check.

    Raises:
        ConfigurationError: If any field is out of range or the request
            template cannot be rendered into a valid http(s) request.
    """
    if not _is_int(scenario.vus):
        msg = f"vus must be an integer, got {scenario.vus!r}"
        raise ConfigurationError(msg)
    if scenario.vus < 1:
        msg = f"vus must be >= 1, got {scenario.vus}"
        raise ConfigurationError(msg)
    if not _is_number(scenario.duration):
        msg = f"duration must be a number, got {scenario.duration!r}"
        raise ConfigurationError(msg)
    if not math.isfinite(scenario.duration) or scenario.duration <= 0:
        msg = f"duration must be positive, got {scenario.duration}"
        raise ConfigurationError(msg)
    if not scenario.url:
        msg = "url must not be empty"
        raise ConfigurationError(msg)

    try:
        low, high = scenario.pace_range
    except (TypeError, ValueError):
        msg = f"pace must be a number or a (min, max) pair, got {scenario.pace!r}"
        raise ConfigurationError(msg) from None
    if low < 0 or high < low:
        msg = f"pace must be >= 0 with min <= max, got {scenario.pace!r}"
        raise ConfigurationError(msg)
    if not _is_int(scenario.retries):
        msg = f"retries must be an integer, got {scenario.retries!r}"
        raise ConfigurationError(msg)
    if scenario.retries < 0:
        msg = f"retries must be >= 0, got {scenario.retries}"
        raise ConfigurationError(msg)
    if scenario.iterations is not None and not _is_int(scenario.iterations):
        msg = f"iterations must be an integer, got {scenario.iterations!r}"
        raise ConfigurationError(msg)
    if scenario.iterations is not None and scenario.iterations < 1:
        msg = f"iterations must be >= 1 when set, got {scenario.iterations}"
        raise ConfigurationError(msg)
    for index, check in enumerate(scenario.checks):
        if not isinstance(check, Check) or not isinstance(check.name, str):
            msg = f"checks[{index}] must be a Check or a (name, predicate) pair, got {check!r}"
            raise ConfigurationError(msg)
        if not callable(check.predicate):
            msg = f"check {check.name!r} has a non-callable predicate: {check.predicate!r}"
            raise ConfigurationError(msg)

    try:
        spec = build_request(scenario, vu_id=0, iteration=0)
    except (KeyError, ValueError, TypeError) as exc:
        msg = f"Scenario request template is malformed: {exc}"
        raise ConfigurationError(msg) from exc

    try:
        url = URL(spec.url)
    except ValueError:
        url = URL()
    if url.scheme not in _ALLOWED_SCHEMES or not url.host:
        msg = f"url must be an absolute http(s) URL, got {spec.url!r}"
        raise ConfigurationError(msg)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _as_check(entry: Any) -> Any:
    """Turn a ``(name, predicate)`` pair into a ``Check``; pass anything else on."""
    if isinstance(entry, tuple) and len(entry) == 2:
        return Check(*entry)
    return entry


def _render(template: str, variables: Mapping[str, Any]) -> str:
    return Template(template).substitute(variables)


def _render_value(value: Any, variables: Mapping[str, Any]) -> Any:
    """Render string leaves of a JSON-like structure."""
    if isinstance(value, str):
        return _render(value, variables)
    if isinstance(value, Mapping):
        return {key: _render_value(item, variables) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_render_value(item, variables) for item in value]
    return value
