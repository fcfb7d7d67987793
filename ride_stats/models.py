"""Data models for location pings, trip stats and leaderboards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

UserId = int


@dataclass(frozen=True, slots=True)
class PingInput:
    """A raw position report as delivered by the transport layer.

    Attributes:
        user_id: Stable identifier of the reporting user.
        username: Display label captured at ping time (handle or first name).
        timestamp: Unix epoch seconds, the platform-reported event time.
        latitude: Latitude in decimal degrees (WGS84).
        longitude: Longitude in decimal degrees (WGS84).
    """

    user_id: UserId
    username: str
    timestamp: int
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Ping:
    """A stored position report with its assigned trip session.

    Note:
        Pings are immutable. Corrections such as edited live locations are
        appended as new pings rather than updating an old one.
    """

    user_id: UserId
    username: str
    timestamp: int
    latitude: float
    longitude: float
    session_id: int

    @classmethod
    def from_input(cls, candidate: PingInput, session_id: int) -> Ping:
        return cls(
            user_id=candidate.user_id,
            username=candidate.username,
            timestamp=candidate.timestamp,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            session_id=session_id,
        )


@dataclass(frozen=True, slots=True)
class StatsResult:
    """Distance/speed summary of one user over one window."""

    distance_km: float = 0.0
    avg_speed_kmh: float = 0.0
    daily_distances_km: tuple[float, ...] = field(default_factory=tuple)

    def rounded(self, ndigits: int = 2) -> StatsResult:
        """Report form: every number rounded to ``ndigits`` decimals."""

        return StatsResult(
            distance_km=round(self.distance_km, ndigits),
            avg_speed_kmh=round(self.avg_speed_kmh, ndigits),
            daily_distances_km=tuple(round(d, ndigits) for d in self.daily_distances_km),
        )


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """One ranked user."""

    user_id: UserId
    username: str
    distance_km: float


DEFAULT_TZ: Final[str] = "Europe/Moscow"
DEFAULT_DB: Final[str] = "ride_stats.sqlite3"
