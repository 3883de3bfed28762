"""Engine-agnostic duration and ride-class formulas built from a column mapping.

A formula describes *what* to compute; `to_sql()` renders it for the DuckDB
tabular engine and `evaluate()` applies it to a single in-memory record. Both
renderings obey the same rules: durations are in minutes and never negative,
and a missing ride-type column means every trip is classic.

The run itself only uses `to_sql()`; `evaluate()` and `is_ebike()` exist for
record-level checks of the same rules outside the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from velopass.domain import ColumnMapping

EBIKE_LABELS = ("electric_bike", "electric", "electric_bicycle", "ebike", "e-bike")


class DurationSource(str, Enum):
    """Where a trip's duration comes from."""
    SECONDS_COLUMN = "seconds_column"
    MINUTES_COLUMN = "minutes_column"
    TIMESTAMP_DIFF = "timestamp_diff"


def quote_identifier(name: str) -> str:
    """Quote a column name for SQL, escaping embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class DurationFormula:
    """Trip duration in minutes, clamped at zero."""
    source: DurationSource
    column: str | None = None
    start_column: str | None = None
    end_column: str | None = None

    def to_sql(self) -> str:
        """Render as a DuckDB expression."""
        if self.source is DurationSource.TIMESTAMP_DIFF:
            start = f"CAST({quote_identifier(self.start_column)} AS TIMESTAMP)"
            end = f"CAST({quote_identifier(self.end_column)} AS TIMESTAMP)"
            return f"GREATEST(CAST(date_diff('second', {start}, {end}) AS DOUBLE) / 60.0, 0)"
        col = quote_identifier(self.column)
        if self.source is DurationSource.SECONDS_COLUMN:
            return f"GREATEST(CAST({col} AS DOUBLE) / 60.0, 0)"
        return f"GREATEST(CAST({col} AS DOUBLE), 0)"

    def evaluate(self, record: Mapping[str, Any]) -> float:
        """Apply the formula to one record; unparseable inputs count as zero minutes."""
        if self.source is DurationSource.TIMESTAMP_DIFF:
            start = _as_datetime(record.get(self.start_column))
            end = _as_datetime(record.get(self.end_column))
            if start is None or end is None:
                return 0.0
            minutes = (end - start).total_seconds() / 60.0
        else:
            raw = _as_float(record.get(self.column))
            if raw is None:
                return 0.0
            minutes = raw / 60.0 if self.source is DurationSource.SECONDS_COLUMN else raw
        return max(minutes, 0.0)


@dataclass(frozen=True)
class RideClassPredicate:
    """Partition of trips into e-bike and classic; classic is the negation."""
    column: str | None = None
    labels: tuple[str, ...] = EBIKE_LABELS

    def ebike_sql(self) -> str:
        """Boolean DuckDB expression that is true for e-bike trips."""
        if not self.column:
            return "FALSE"
        quoted = ", ".join("'" + label.replace("'", "''") + "'" for label in self.labels)
        return f"LOWER(CAST({quote_identifier(self.column)} AS VARCHAR)) IN ({quoted})"

    def classic_sql(self) -> str:
        """Boolean DuckDB expression that is true for classic trips."""
        if not self.column:
            return "TRUE"
        # NULL ride types fall on the classic side
        return f"NOT COALESCE({self.ebike_sql()}, FALSE)"

    def is_ebike(self, record: Mapping[str, Any]) -> bool:
        """Classify one record."""
        if not self.column:
            return False
        value = record.get(self.column)
        if value is None:
            return False
        return str(value).strip().lower() in self.labels


def build_duration_formula(mapping: ColumnMapping) -> DurationFormula:
    """Choose the duration rule for a mapping.

    A duration column whose name contains "sec" is read as seconds; any other
    duration column is read as minutes. Without a duration column the formula
    falls back to end minus start.
    """
    if mapping.duration_col:
        if "sec" in mapping.duration_col.lower():
            return DurationFormula(DurationSource.SECONDS_COLUMN, column=mapping.duration_col)
        return DurationFormula(DurationSource.MINUTES_COLUMN, column=mapping.duration_col)
    return DurationFormula(
        DurationSource.TIMESTAMP_DIFF,
        start_column=mapping.start_col,
        end_column=mapping.end_col,
    )


def build_ride_class_predicate(mapping: ColumnMapping) -> RideClassPredicate:
    """E-bike predicate over the ride-type column, or always-false without one."""
    return RideClassPredicate(column=mapping.ride_type_col)
