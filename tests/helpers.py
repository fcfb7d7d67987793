from __future__ import annotations

from ride_stats.models import Ping

TZ = "Europe/Moscow"

# ~111.2 m per 0.001 degree of latitude
BASE_LAT = 55.75
BASE_LON = 37.61


def make_ping(
    user_id: int,
    timestamp: int,
    lat: float = BASE_LAT,
    lon: float = BASE_LON,
    session_id: int = 1,
    username: str | None = None,
) -> Ping:
    return Ping(
        user_id=user_id,
        username=username if username is not None else f"user{user_id}",
        timestamp=timestamp,
        latitude=lat,
        longitude=lon,
        session_id=session_id,
    )
