"""Distance / speed aggregation over a time window."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Final

from ride_stats.geo import distance_m
from ride_stats.models import StatsResult, UserId
from ride_stats.store import LocationStore
from ride_stats.timeutils import day_range_unix, resolve_window

logger = logging.getLogger(__name__)

# Gaps of an hour or more are treated as a stop: their distance still counts,
# their duration does not enter the average-speed denominator.
IDLE_GAP_S: Final[int] = 3600


def aggregate(
    store: LocationStore,
    user_id: UserId,
    start_unix: int,
    end_unix: int,
    bucket_index_of: Callable[[int], int] | None = None,
    bucket_count: int = 0,
) -> StatsResult:
    """Compute distance, average speed and per-bucket distance for one user.

    Pings are walked in ``(session_id, timestamp)`` order. A pair of consecutive
    pings from different sessions is skipped entirely: neither its distance nor
    its elapsed time is counted.

    Args:
        store: Ping storage.
        user_id: User to aggregate.
        start_unix: Inclusive window start.
        end_unix: Inclusive window end.
        bucket_index_of: Maps a timestamp to a bucket index (see TimeWindow).
        bucket_count: Number of buckets; 0 disables the per-day breakdown.

    Returns:
        StatsResult in kilometers and km/h. Fewer than two pings in range
        (including ``start_unix > end_unix``) yields a zero result.

    Raises:
        StoreError: Propagated from the store.
    """

    if start_unix > end_unix:
        return StatsResult()

    pings = store.query_range(user_id, start_unix, end_unix)
    if len(pings) < 2:
        return StatsResult()

    total_m = 0.0
    moving_s = 0
    skipped = 0
    buckets = [0.0] * bucket_count if bucket_index_of is not None else []

    for prev, curr in zip(pings, pings[1:]):
        if curr.session_id != prev.session_id:
            skipped += 1
            continue

        dist = distance_m(prev, curr)
        total_m += dist

        elapsed = curr.timestamp - prev.timestamp
        if 0 <= elapsed < IDLE_GAP_S:
            moving_s += elapsed

        if buckets:
            idx = bucket_index_of(curr.timestamp)  # type: ignore[misc]
            if 0 <= idx < len(buckets):
                buckets[idx] += dist

    avg_speed = (total_m / 1000.0) / (moving_s / 3600.0) if moving_s > 0 else 0.0
    logger.debug(
        "user=%s pings=%s skipped_boundaries=%s distance=%.1fm moving=%ss",
        user_id,
        len(pings),
        skipped,
        total_m,
        moving_s,
    )
    return StatsResult(
        distance_km=total_m / 1000.0,
        avg_speed_kmh=avg_speed,
        daily_distances_km=tuple(d / 1000.0 for d in buckets),
    )


def aggregate_period(
    store: LocationStore,
    user_id: UserId,
    period: str,
    reference: datetime,
    tz_name: str,
) -> StatsResult:
    """Aggregate over the week or month containing ``reference``, with day buckets.

    Raises:
        ValueError: Unknown period or timezone (before any store access).
    """

    window = resolve_window(period, reference, tz_name)
    return aggregate(
        store,
        user_id,
        window.start_unix,
        window.end_unix,
        bucket_index_of=window.bucket_index_of,
        bucket_count=window.bucket_count,
    )


def aggregate_between(
    store: LocationStore,
    user_id: UserId,
    start_day: date,
    end_day: date,
    tz_name: str,
) -> StatsResult:
    """Aggregate over whole local days ``start_day`` .. ``end_day`` (no buckets)."""

    start_unix, end_unix = day_range_unix(start_day, end_day, tz_name)
    return aggregate(store, user_id, start_unix, end_unix)
