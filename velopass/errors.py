"""Error taxonomy for advisor runs.

Every fatal error aborts the run. The agent attaches the partial timeline and
step log to the error before re-raising so callers can still audit the run.
`ExtractionWarning` is the only recoverable kind; the policy extractor raises
and catches it internally.
"""

from __future__ import annotations

from typing import Any, List


class VelopassError(Exception):
    """Base class for all advisor errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.timeline: List[Any] = []
        self.step_log: List[Any] = []

    def attach_trail(self, timeline: List[Any], step_log: List[Any]) -> None:
        """Attach the partial audit trail of the run that raised this error."""
        self.timeline = list(timeline)
        self.step_log = list(step_log)


class SchemaError(VelopassError):
    """Trip dataset lacks a duration column and a start/end timestamp pair."""


class QueryError(VelopassError):
    """The tabular engine rejected or failed a query (or the initial load)."""


class FetchError(VelopassError):
    """The pricing page was unreachable, timed out, or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalculationError(VelopassError):
    """The restricted evaluator was handed an invalid expression."""


class ExtractionWarning(VelopassError):
    """A tariff metric could not be extracted with confidence; recovered with a default."""
