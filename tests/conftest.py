from __future__ import annotations

import pytest

from ride_stats.store import InMemoryLocationStore, SqliteLocationStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryLocationStore()
    return SqliteLocationStore(tmp_path / "locations.sqlite3")
