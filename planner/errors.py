from __future__ import annotations


class PlannerError(Exception):
    """Base class for errors raised by the planner engine."""


class ValidationError(PlannerError, ValueError):
    """Input rejected locally; it never reaches a store."""


class TransientStoreError(PlannerError):
    """A remote read or write failed. The next sync trigger retries naturally."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(PlannerError):
    """The remote store refused the write because the record may not change any more."""
