import pytest

from velopass.aggregation import AggregationEngine
from velopass.data_sources.duckdb_source import DuckDBTripSource
from velopass.errors import QueryError
from velopass.formulas import build_duration_formula, build_ride_class_predicate
from velopass.schema_mapper import map_columns


def _engine(source):
    mapping = map_columns([row["name"] for row in source.query(source.schema_sql())])
    return mapping, AggregationEngine(
        source.query,
        source.table_name,
        build_duration_formula(mapping),
        build_ride_class_predicate(mapping),
    )


def test_overall_aggregates_from_timestamp_pair(trips_csv):
    with DuckDBTripSource(trips_csv) as source:
        _, engine = _engine(source)
        stats = engine.overall()

    assert stats.total_rides == 4
    # 40 + 10 + 60 + 0 (end before start clamps to zero)
    assert stats.total_minutes == pytest.approx(110.0)
    assert stats.avg_minutes == pytest.approx(27.5)
    assert stats.ebike_rides == 1
    assert stats.ebike_minutes == pytest.approx(10.0)
    assert stats.classic_minutes == pytest.approx(100.0)
    assert stats.classic_over_30 == pytest.approx(40.0)
    assert stats.classic_over_45 == pytest.approx(15.0)
    assert stats.ebike_share == pytest.approx(0.25)


def test_weekly_buckets_are_ordered_by_week_start(trips_csv):
    with DuckDBTripSource(trips_csv) as source:
        mapping, engine = _engine(source)
        buckets = engine.weekly(mapping.start_col)

    assert [b.week_start for b in buckets] == ["2024-03-04", "2024-03-11"]
    assert [b.total_rides for b in buckets] == [2, 2]
    assert buckets[0].ebike_minutes == pytest.approx(10.0)
    assert buckets[1].classic_over_45 == pytest.approx(15.0)


def test_dataset_without_ride_type_is_all_classic(duration_only_csv):
    with DuckDBTripSource(duration_only_csv) as source:
        mapping, engine = _engine(source)
        stats = engine.overall()

    assert mapping.ride_type_col is None
    assert any("treated every trip as classic" in a for a in mapping.assumptions)
    assert stats.ebike_rides == 0
    assert stats.ebike_minutes == 0
    assert stats.classic_minutes == pytest.approx(60.0)
    assert stats.classic_over_30 == pytest.approx(20.0)
    assert stats.classic_over_45 == pytest.approx(5.0)


def test_engine_issues_one_query_per_aggregate():
    seen = []

    def fake_query(sql):
        seen.append(sql)
        return [{"total_rides": 3, "total_minutes": None, "avg_minutes": 5}]

    mapping = map_columns(["duration"])
    engine = AggregationEngine(
        fake_query, "trips_x", build_duration_formula(mapping), build_ride_class_predicate(mapping)
    )
    stats = engine.overall()

    assert len(seen) == 1
    assert seen[0].lstrip().upper().startswith("WITH")
    assert stats.total_rides == 3
    assert stats.total_minutes == 0.0
    assert stats.ebike_minutes == 0.0


def test_empty_result_raises_query_error():
    mapping = map_columns(["duration"])
    engine = AggregationEngine(
        lambda sql: [], "trips_x", build_duration_formula(mapping), build_ride_class_predicate(mapping)
    )
    with pytest.raises(QueryError):
        engine.overall()
