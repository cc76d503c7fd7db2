"""Errors that propagate out of a scout run.

Only setup failures leave the orchestrator; everything else is counted
in RunStats.
"""


class ScoutError(Exception):
    """Base class for scout errors."""


class SetupError(ScoutError):
    """The run could not start: sources unavailable or lock not acquired."""

    def __init__(self, message: str, city: str | None = None) -> None:
        super().__init__(message)
        self.city = city


class ScoutAlreadyRunningError(SetupError):
    """Another run holds a non-stale lock for the city."""
