from __future__ import annotations

import pytest

from ride_stats.csv_io import load_ping_inputs
from ride_stats.models import PingInput


def test_load_skips_bad_rows(tmp_path):
    p = tmp_path / "pings.csv"
    p.write_text(
        "user_id,username,timestamp,latitude,longitude\n"
        "1,@alina,1722850000,55.75,37.61\n"
        "2,,1722850060.0,55.76,37.62\n"
        "x,@bad,1722850000,55.75,37.61\n"
        "3,@short,1722850000\n",
        encoding="utf-8",
    )
    reports, summary = load_ping_inputs(p)
    assert reports == [
        PingInput(1, "@alina", 1722850000, 55.75, 37.61),
        PingInput(2, "2", 1722850060, 55.76, 37.62),
    ]
    assert summary.rows_total == 4
    assert summary.rows_skipped == 2


def test_missing_column(tmp_path):
    p = tmp_path / "pings.csv"
    p.write_text("user_id,timestamp,latitude\n1,0,55.0\n", encoding="utf-8")
    with pytest.raises(KeyError):
        load_ping_inputs(p)
