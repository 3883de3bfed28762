import pytest

import run_analysis
from tests.sample_data import PRICING_HTML
from velopass.data_sources import pricing_page


class _Resp:
    status_code = 200
    ok = True
    text = PRICING_HTML


class _Session:
    def get(self, url, **kwargs):
        return _Resp()


@pytest.fixture(autouse=True)
def fake_session(monkeypatch):
    monkeypatch.setattr(pricing_page, "session", _Session())


def test_reports_each_file_and_succeeds(trips_csv, capsys):
    assert run_analysis.main([str(trips_csv)]) == 0
    out = capsys.readouterr().out
    assert "=== Scenario: trips ===" in out
    assert "Decision: Buy Monthly Membership" in out
    assert "Summary: trips: Buy Monthly Membership." in out


def test_any_failed_file_gives_non_zero_exit(trips_csv, tmp_path):
    bad = tmp_path / "bad.csv"
    bad.write_text("station,capacity\nA,10\n")
    assert run_analysis.main([str(trips_csv), str(bad)]) == 1
