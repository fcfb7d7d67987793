"""Trip segmentation: assign each incoming ping to a session or drop it."""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Final, Iterable, Iterator

from ride_stats.geo import distance_m
from ride_stats.models import Ping, PingInput, UserId
from ride_stats.store import LocationStore, StoreError

logger = logging.getLogger(__name__)

# Compare-and-append rounds before giving up on a contended user.
MAX_APPEND_ATTEMPTS: Final[int] = 20


@dataclass(frozen=True, slots=True)
class SegmentParams:
    """Thresholds controlling session segmentation."""

    # Moves shorter than this are GPS jitter and are not stored.
    min_distance_m: float = 60.0
    # A jump longer than this between consecutive pings starts a new trip.
    max_distance_m: float = 500.0
    # Silence longer than this starts a new trip. None disables the time trigger.
    max_time_gap_s: float | None = 30 * 60.0

    def __post_init__(self) -> None:
        if self.min_distance_m < 0 or self.max_distance_m < 0:
            raise ValueError("distance thresholds must be non-negative")
        if self.max_time_gap_s is not None and self.max_time_gap_s < 0:
            raise ValueError("max_time_gap_s must be non-negative")


class Outcome(enum.Enum):
    DISCARD = "discard"
    FIRST_OF_TIMELINE = "first_of_timeline"
    CONTINUE_SESSION = "continue_session"
    NEW_SESSION = "new_session"


@dataclass(frozen=True, slots=True)
class Decision:
    """Classification of one candidate ping.

    Attributes:
        outcome: What happens to the candidate.
        session_id: Assigned session, or None when discarded.
        distance_m: Displacement from the last stored ping (0.0 if none).
        elapsed_s: Seconds since the last stored ping (0 if none).
        reason: Short tag explaining the decision, for logs and counters.
    """

    outcome: Outcome
    session_id: int | None
    distance_m: float = 0.0
    elapsed_s: int = 0
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.outcome is not Outcome.DISCARD


def classify(last: Ping | None, candidate: PingInput, params: SegmentParams) -> Decision:
    """Decide whether ``candidate`` continues, starts, or is dropped from a trip.

    Args:
        last: The user's most recent stored ping, if any.
        candidate: The incoming report.
        params: Segmentation thresholds.

    Returns:
        Decision with the session id to store the candidate under.
    """

    if last is None:
        return Decision(Outcome.FIRST_OF_TIMELINE, session_id=1, reason="first")

    elapsed = candidate.timestamp - last.timestamp
    dist = distance_m(last, candidate)

    if elapsed < 0:
        # a report older than what is already stored would break timestamp order
        return Decision(Outcome.DISCARD, None, dist, elapsed, reason="out_of_order")
    if dist < params.min_distance_m:
        return Decision(Outcome.DISCARD, None, dist, elapsed, reason="too_close")

    if dist > params.max_distance_m:
        return Decision(Outcome.NEW_SESSION, last.session_id + 1, dist, elapsed, reason="distance_jump")
    if params.max_time_gap_s is not None and elapsed > params.max_time_gap_s:
        return Decision(Outcome.NEW_SESSION, last.session_id + 1, dist, elapsed, reason="time_gap")
    return Decision(Outcome.CONTINUE_SESSION, last.session_id, dist, elapsed, reason="continue")


class _KeyedLocks:
    """One lock per user, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> (lock, number of threads holding or waiting)
        self._locks: dict[UserId, tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextlib.contextmanager
    def hold(self, key: UserId) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


class SessionSegmenter:
    """Reads a user's last ping, classifies the candidate and appends it.

    The append is conditional on the user's last ping still being the one the
    decision was based on (``LocationStore.append_if_last``). If another writer
    got in between, the candidate is classified again against the new last
    ping. This holds across segmenters and processes sharing one store. Inside
    one segmenter a per-user lock keeps its own threads from racing at all;
    reports for different users never wait on each other.
    """

    def __init__(self, store: LocationStore, params: SegmentParams | None = None) -> None:
        self.store = store
        self.params = params or SegmentParams()
        self._locks = _KeyedLocks()

    def ingest(self, candidate: PingInput) -> Decision:
        """Classify and (unless discarded) store one report.

        Raises:
            StoreError: If reading or appending fails (not retried), or if the
                user's timeline keeps changing under us.
        """

        with self._locks.hold(candidate.user_id):
            for _ in range(MAX_APPEND_ATTEMPTS):
                last = self.store.last_ping(candidate.user_id)
                decision = classify(last, candidate, self.params)
                if decision.session_id is None:
                    break
                if self.store.append_if_last(last, Ping.from_input(candidate, decision.session_id)):
                    break
                logger.debug("user=%s last ping changed concurrently, classifying again", candidate.user_id)
            else:
                raise StoreError(
                    f"user {candidate.user_id}: last ping kept changing, gave up after {MAX_APPEND_ATTEMPTS} attempts"
                )

        logger.debug(
            "user=%s ts=%s -> %s (session=%s, d=%.1fm, dt=%ss, %s)",
            candidate.user_id,
            candidate.timestamp,
            decision.outcome.value,
            decision.session_id,
            decision.distance_m,
            decision.elapsed_s,
            decision.reason,
        )
        return decision

    def ingest_many(self, candidates: Iterable[PingInput]) -> Counter[str]:
        """Feed a batch through :meth:`ingest` in timestamp order.

        Returns:
            Counter keyed by outcome value and by discard reason
            (e.g. ``{"continue_session": 10, "discard": 3, "too_close": 3}``).
        """

        counts: Counter[str] = Counter()
        for candidate in sorted(candidates, key=lambda c: c.timestamp):
            decision = self.ingest(candidate)
            counts[decision.outcome.value] += 1
            if not decision.accepted:
                counts[decision.reason] += 1
        return counts
