"""Custom exception hierarchy for Stampede."""

from __future__ import annotations


class StampedeError(Exception):
    """Base exception for all Stampede errors.

    Every error the engine raises on purpose derives from this class, so a
    caller can guard a whole run with a single except clause.
    """


class ConfigurationError(StampedeError):
    """Raised when a scenario or the environment configuration is invalid.

    This is the only error a run raises for bad input. It is always raised
    before any virtual user is spawned or any request is issued.

    Examples:
        - Virtual user count is zero or negative.
        - Duration is not positive.
        - Target URL is empty or not http(s).
        - The payload template cannot be materialized.
        - An environment variable has an invalid value.
    """


class EngineError(StampedeError):
    """Raised when the engine itself fails unexpectedly during a run.

    Per-iteration failures (transport errors, failed checks) never raise;
    they are folded into the run's metrics instead.
    """
