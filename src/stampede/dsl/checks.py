"""Named response checks and ready-made predicates.

A check is a ``(name, predicate)`` pair. The predicate receives a
``ResponseOutcome`` and returns a bool; anything it raises counts as a
failed check. The factories below cover the common cases::

    checks = [
        Check("status should be 200", status_is(200)),
        Check("fast enough", latency_below(500.0)),
    ]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stampede._internal.types import Predicate
    from stampede.dsl.http_client import ResponseOutcome


@dataclass(frozen=True)
class Check:
    """A named boolean assertion over a response outcome.

    Attributes:
        name: Name used to group pass/fail counts.
        predicate: Pure function of ``ResponseOutcome`` returning a bool.
    """

    name: str
    predicate: Predicate


@dataclass(frozen=True)
class CheckResult:
    """Result of evaluating one check against one outcome."""

    name: str
    passed: bool


def status_is(*codes: int) -> Predicate:
    """Pass when the response status is one of *codes*."""
    allowed = frozenset(codes)

    def _predicate(outcome: ResponseOutcome) -> bool:
        return outcome.status in allowed

    return _predicate


def body_contains(text: str) -> Predicate:
    """Pass when the decoded response body contains *text*."""

    def _predicate(outcome: ResponseOutcome) -> bool:
        return text in outcome.text()

    return _predicate


def header_equals(name: str, value: str) -> Predicate:
    """Pass when response header *name* equals *value*."""

    def _predicate(outcome: ResponseOutcome) -> bool:
        return outcome.headers.get(name) == value

    return _predicate


def json_field_equals(key: str, value: Any) -> Predicate:
    """Pass when the JSON body is an object whose *key* equals *value*."""

    def _predicate(outcome: ResponseOutcome) -> bool:
        data = outcome.json()
        return bool(data[key] == value)

    return _predicate


def latency_below(threshold_ms: float) -> Predicate:
    """Pass when the request latency is under *threshold_ms*."""

    def _predicate(outcome: ResponseOutcome) -> bool:
        return outcome.latency_ms < threshold_ms

    return _predicate
