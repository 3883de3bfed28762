"""Map a trip log's actual column names onto the semantic roles the pipeline needs.

Each role has a priority-ordered list of accepted spellings. Matching is exact
and case-insensitive; the first alias in priority order that exists wins.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from velopass.domain import ColumnMapping
from velopass.errors import SchemaError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="velopass/schema_mapper")

START_CANDIDATES = [
    "started_at",
    "start_time",
    "starttime",
    "start_time_local",
    "start_timestamp",
    "start_date",
    "starttime_local",
]

END_CANDIDATES = [
    "ended_at",
    "end_time",
    "stoptime",
    "stop_time",
    "end_time_local",
    "end_timestamp",
    "stop_timestamp",
    "end_date",
]

DURATION_CANDIDATES = [
    "duration",
    "duration_sec",
    "duration_secs",
    "duration_seconds",
    "duration_min",
    "duration_mins",
    "duration_minutes",
    "tripduration",
    "ride_duration",
]

RIDE_TYPE_CANDIDATES = [
    "rideable_type",
    "ride_type",
    "bike_type",
    "vehicle_type",
    "ride_category",
    "bike_class",
]

NO_RIDE_TYPE_ASSUMPTION = (
    "Dataset lacks an explicit e-bike indicator; treated every trip as classic for cost calculations."
)
NO_START_ASSUMPTION = "No trip start timestamp detected; weekly breakdown suppressed."


def select_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    """Return the actual column name for the first candidate present (case-insensitive)."""
    lower_to_actual: dict[str, str] = {}
    for name in columns:
        # first spelling wins if the file repeats a name in different case
        lower_to_actual.setdefault(str(name).lower(), str(name))
    for candidate in candidates:
        actual = lower_to_actual.get(candidate.lower())
        if actual:
            return actual
    return None


def map_columns(columns: Sequence[str]) -> ColumnMapping:
    """Build the column mapping for a dataset, raising SchemaError if it is unusable."""
    if not columns:
        raise SchemaError("Unable to inspect trip dataset schema (no columns reported).")

    mapping = ColumnMapping(
        start_col=select_column(columns, START_CANDIDATES),
        end_col=select_column(columns, END_CANDIDATES),
        duration_col=select_column(columns, DURATION_CANDIDATES),
        ride_type_col=select_column(columns, RIDE_TYPE_CANDIDATES),
    )

    if not mapping.is_viable:
        raise SchemaError(
            "Trip dataset must include either a duration column (e.g., duration_sec) "
            "or both start and end timestamps."
        )

    if not mapping.ride_type_col:
        mapping.assumptions.append(NO_RIDE_TYPE_ASSUMPTION)
    if not mapping.start_col:
        mapping.assumptions.append(NO_START_ASSUMPTION)

    logger.info(
        "Mapped trip columns",
        extra={
            "duration_col": mapping.duration_col,
            "start_col": mapping.start_col,
            "end_col": mapping.end_col,
            "ride_type_col": mapping.ride_type_col,
        },
    )
    return mapping
