"""Overall and weekly usage aggregates over the trip dataset.

The engine only builds SQL from the duration formula and ride-class predicate
and hands it to the tabular collaborator; it issues exactly one overall query
and, when a start timestamp exists, one weekly query.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping

from velopass.cost_model import MEMBER_FREE_MINUTES, NON_MEMBER_FREE_MINUTES
from velopass.domain import AggregateStats, WeeklyBucket
from velopass.errors import QueryError
from velopass.formulas import DurationFormula, RideClassPredicate, quote_identifier
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="velopass/aggregation")

QueryFn = Callable[..., List[Dict[str, Any]]]

_METRIC_COLUMNS = """
          SUM(duration_minutes) AS total_minutes,
          AVG(duration_minutes) AS avg_minutes,
          SUM(CASE WHEN {ebike} THEN 1 ELSE 0 END) AS ebike_rides,
          SUM(CASE WHEN {ebike} THEN duration_minutes ELSE 0 END) AS ebike_minutes,
          SUM(CASE WHEN {classic} THEN duration_minutes ELSE 0 END) AS classic_minutes,
          SUM(CASE WHEN {classic} THEN GREATEST(duration_minutes - {non_member_free}, 0) ELSE 0 END) AS classic_over_30,
          SUM(CASE WHEN {classic} THEN GREATEST(duration_minutes - {member_free}, 0) ELSE 0 END) AS classic_over_45"""


def _num(row: Mapping[str, Any], key: str) -> float:
    value = row.get(key)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _stats_fields(row: Mapping[str, Any], rides_key: str) -> dict:
    return {
        "total_rides": int(_num(row, rides_key)),
        "total_minutes": _num(row, "total_minutes"),
        "avg_minutes": _num(row, "avg_minutes"),
        "ebike_rides": int(_num(row, "ebike_rides")),
        "ebike_minutes": _num(row, "ebike_minutes"),
        "classic_minutes": _num(row, "classic_minutes"),
        "classic_over_30": _num(row, "classic_over_30"),
        "classic_over_45": _num(row, "classic_over_45"),
    }


class AggregationEngine:
    """Build and run the two aggregate queries for a run."""

    def __init__(
        self,
        query: QueryFn,
        table_name: str,
        duration: DurationFormula,
        ride_class: RideClassPredicate,
    ) -> None:
        self._query = query
        self.table_name = table_name
        self.duration = duration
        self.ride_class = ride_class

    def _metric_columns(self) -> str:
        return _METRIC_COLUMNS.format(
            ebike=self.ride_class.ebike_sql(),
            classic=self.ride_class.classic_sql(),
            non_member_free=NON_MEMBER_FREE_MINUTES,
            member_free=MEMBER_FREE_MINUTES,
        )

    def _enriched_cte(self) -> str:
        return (
            "WITH trips_enriched AS (\n"
            f"  SELECT *, {self.duration.to_sql()} AS duration_minutes\n"
            f"  FROM {self.table_name}\n"
            ")"
        )

    def overall_sql(self) -> str:
        return (
            f"{self._enriched_cte()}\n"
            "SELECT\n"
            f"          COUNT(*) AS total_rides,{self._metric_columns()}\n"
            "FROM trips_enriched"
        )

    def weekly_sql(self, start_column: str) -> str:
        start = f"CAST({quote_identifier(start_column)} AS TIMESTAMP)"
        return (
            f"{self._enriched_cte()}\n"
            "SELECT\n"
            f"          CAST(date_trunc('week', {start}) AS DATE) AS week_start,\n"
            f"          COUNT(*) AS rides,{self._metric_columns()}\n"
            "FROM trips_enriched\n"
            "GROUP BY 1\n"
            "ORDER BY 1"
        )

    def overall(self) -> AggregateStats:
        """Totals across the whole trip log."""
        rows = self._query(sql=self.overall_sql())
        if not rows:
            raise QueryError("Trip dataset returned no rows.")
        stats = AggregateStats(**_stats_fields(rows[0], "total_rides"))
        logger.info("Aggregated %d rides", stats.total_rides)
        return stats

    def weekly(self, start_column: str) -> List[WeeklyBucket]:
        """One bucket per calendar week, ordered by week start."""
        rows = self._query(sql=self.weekly_sql(start_column))
        buckets = [
            WeeklyBucket(week_start=str(row["week_start"]), **_stats_fields(row, "rides"))
            for row in rows
            if row.get("week_start") is not None
        ]
        return sorted(buckets, key=lambda b: b.week_start)
