import pytest

from tests.sample_data import DURATION_ONLY_CSV, TRIPS_CSV


@pytest.fixture
def trips_csv(tmp_path):
    path = tmp_path / "trips.csv"
    path.write_text(TRIPS_CSV)
    return path


@pytest.fixture
def duration_only_csv(tmp_path):
    path = tmp_path / "durations.csv"
    path.write_text(DURATION_ONLY_CSV)
    return path
