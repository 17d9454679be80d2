"""Check evaluation against a single response outcome."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stampede._internal.logging import get_logger
from stampede.dsl.checks import CheckResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from stampede.dsl.checks import Check
    from stampede.dsl.http_client import ResponseOutcome

logger = get_logger("engine.evaluator")


def evaluate_checks(outcome: ResponseOutcome, checks: Iterable[Check]) -> list[CheckResult]:
    """Evaluate every check against *outcome*, in declaration order.

    All checks run even after a failure so each one is counted on its own.
    A predicate that raises is recorded as a failed check.

    Args:
        outcome: The response to judge.
        checks: Named predicates to apply.

    Returns:
        One ``CheckResult`` per check, in the same order.
    """
    results: list[CheckResult] = []
    for check in checks:
        try:
            passed = bool(check.predicate(outcome))
        except Exception:
            logger.debug("Check %r raised, counting as failed", check.name, exc_info=True)
            passed = False
        results.append(CheckResult(name=check.name, passed=passed))
    return results
