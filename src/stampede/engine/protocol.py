"""Structural types the engine depends on instead of concrete classes."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from stampede.dsl.http_client import ResponseOutcome
    from stampede.dsl.scenario import RequestSpec


class Executor(Protocol):
    """Anything that can execute a ``RequestSpec`` inside an async context.

    ``HttpExecutor`` is the production implementation; tests plug in fakes.
    ``execute`` is expected to report transport failures in the returned
    outcome rather than raise.
    """

    async def __aenter__(self) -> Executor:
        """Acquire connections or other per-user resources."""
        ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Release per-user resources."""
        ...

    async def execute(self, spec: RequestSpec) -> ResponseOutcome:
        """Send one request and return its outcome."""
        ...


# Builds one executor per virtual user, given the user's id.
ExecutorFactory = Callable[[int], Executor]
