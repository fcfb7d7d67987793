"""Cross-user ranking by distance for a week or month."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Final

from ride_stats.models import LeaderboardEntry
from ride_stats.stats import aggregate
from ride_stats.store import LocationStore
from ride_stats.timeutils import resolve_window

logger = logging.getLogger(__name__)

DEFAULT_LIMIT: Final[int] = 10


def rank(
    store: LocationStore,
    period: str,
    reference: datetime,
    tz_name: str,
    limit: int = DEFAULT_LIMIT,
    max_workers: int = 8,
) -> list[LeaderboardEntry]:
    """Rank users by distance over the week/month containing ``reference``.

    Every user with at least one ping in the window is aggregated over that
    same window; per-user aggregations run on a bounded thread pool.

    Args:
        store: Ping storage.
        period: "week" or "month".
        reference: Any instant in the wanted window.
        tz_name: IANA timezone for calendar boundaries.
        limit: Maximum number of entries returned.
        max_workers: Upper bound on concurrent aggregations.

    Returns:
        Entries sorted by ``distance_km`` descending, at most ``limit`` long.
        Ties keep the store's user order.

    Raises:
        ValueError: Unknown period, timezone, or negative limit.
        StoreError: Propagated from the store.
    """

    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    window = resolve_window(period, reference, tz_name)

    users = store.distinct_users_in_range(window.start_unix, window.end_unix)
    if not users or limit == 0:
        return []

    def _one(user: tuple[int, str]) -> LeaderboardEntry:
        user_id, username = user
        res = aggregate(store, user_id, window.start_unix, window.end_unix)
        return LeaderboardEntry(user_id=user_id, username=username, distance_km=res.distance_km)

    workers = max(1, min(int(max_workers), len(users)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        # map() yields in input order, so the stable sort below keeps ties in user order
        entries = list(executor.map(_one, users))

    entries.sort(key=lambda e: e.distance_km, reverse=True)
    logger.debug("ranked %s users for %s starting %s", len(entries), window.period, window.start_unix)
    return entries[:limit]
