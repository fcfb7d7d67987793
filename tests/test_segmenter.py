from __future__ import annotations

import threading
import time

import pytest

from ride_stats.geo import distance_m
from ride_stats.models import PingInput
from ride_stats.segmenter import Outcome, SegmentParams, SessionSegmenter, classify
from ride_stats.store import InMemoryLocationStore, SqliteLocationStore, StoreError
from tests.helpers import BASE_LAT, BASE_LON, make_ping

PARAMS = SegmentParams(min_distance_m=60.0, max_distance_m=500.0, max_time_gap_s=1800.0)

# 0.001 degree of latitude is ~111 m
STEP = 0.001


def report(timestamp: int, north_steps: float = 0.0, user_id: int = 1, lon: float = BASE_LON) -> PingInput:
    return PingInput(
        user_id=user_id,
        username=f"user{user_id}",
        timestamp=timestamp,
        latitude=BASE_LAT + north_steps * STEP,
        longitude=lon,
    )


def test_first_ping_starts_session_one():
    d = classify(None, report(0), PARAMS)
    assert d.outcome is Outcome.FIRST_OF_TIMELINE
    assert d.session_id == 1


def test_jitter_is_discarded():
    last = make_ping(1, 0)
    d = classify(last, report(60, 0.3), PARAMS)  # ~33 m
    assert d.outcome is Outcome.DISCARD
    assert d.session_id is None
    assert d.reason == "too_close"


def test_normal_move_continues_session():
    last = make_ping(1, 0, session_id=4)
    d = classify(last, report(60, 2), PARAMS)  # ~222 m
    assert d.outcome is Outcome.CONTINUE_SESSION
    assert d.session_id == 4


def test_distance_jump_starts_new_session():
    last = make_ping(1, 0, session_id=4)
    d = classify(last, report(60, 10), PARAMS)  # ~1.1 km
    assert d.outcome is Outcome.NEW_SESSION
    assert d.session_id == 5
    assert d.reason == "distance_jump"


def test_time_gap_starts_new_session():
    last = make_ping(1, 0, session_id=2)
    d = classify(last, report(7200, 2), PARAMS)
    assert d.outcome is Outcome.NEW_SESSION
    assert d.session_id == 3
    assert d.reason == "time_gap"


def test_time_trigger_can_be_disabled():
    last = make_ping(1, 0, session_id=2)
    d = classify(last, report(7200, 2), SegmentParams(max_time_gap_s=None))
    assert d.outcome is Outcome.CONTINUE_SESSION
    assert d.session_id == 2


def test_older_report_is_rejected():
    last = make_ping(1, 1000)
    d = classify(last, report(900, 3), PARAMS)
    assert d.outcome is Outcome.DISCARD
    assert d.reason == "out_of_order"


def test_negative_thresholds_are_rejected():
    with pytest.raises(ValueError):
        SegmentParams(min_distance_m=-1.0)
    with pytest.raises(ValueError):
        SegmentParams(max_time_gap_s=-5.0)


def test_worked_example_session_ids(store):
    seg = SessionSegmenter(store, SegmentParams(min_distance_m=60.0, max_distance_m=500.0))
    pings = [
        PingInput(1, "@u", 0, 55.75, 37.61),
        PingInput(1, "@u", 60, 55.7505, 37.6105),
        PingInput(1, "@u", 120, 55.76, 37.65),
    ]
    outcomes = [seg.ingest(p).outcome for p in pings]
    assert outcomes == [Outcome.FIRST_OF_TIMELINE, Outcome.CONTINUE_SESSION, Outcome.NEW_SESSION]
    assert [p.session_id for p in store.query_range(1, 0, 120)] == [1, 1, 2]


def test_discarded_ping_leaves_store_untouched(store):
    seg = SessionSegmenter(store, PARAMS)
    seg.ingest(report(0))
    before = store.last_ping(1)
    d = seg.ingest(report(30, 0.2))
    assert d.outcome is Outcome.DISCARD
    assert store.last_ping(1) == before
    assert len(store.query_range(1, 0, 100)) == 1


def test_users_have_independent_timelines(store):
    seg = SessionSegmenter(store, PARAMS)
    seg.ingest(report(0, user_id=1))
    d = seg.ingest(report(10, 50, user_id=2))
    assert d.outcome is Outcome.FIRST_OF_TIMELINE
    assert d.session_id == 1


def test_ingest_many_orders_by_time_and_counts():
    store = InMemoryLocationStore()
    seg = SessionSegmenter(store, PARAMS)
    batch = [report(120, 4), report(0, 0), report(60, 2), report(90, 2.1), report(3000, 5)]
    counts = seg.ingest_many(batch)

    assert counts["first_of_timeline"] == 1
    assert counts["continue_session"] == 2
    assert counts["new_session"] == 1
    assert counts["discard"] == 1
    assert counts["too_close"] == 1
    assert [(p.timestamp, p.session_id) for p in store.query_range(1, 0, 10_000)] == [
        (0, 1),
        (60, 1),
        (120, 1),
        (3000, 2),
    ]


def test_session_ids_step_by_one():
    store = InMemoryLocationStore()
    seg = SessionSegmenter(store, PARAMS)
    t = 0
    for i in range(30):
        t += 60
        # every fifth report jumps far away
        seg.ingest(report(t, i * 2 + (20 * (i // 5))))
    ids = [p.session_id for p in sorted(store.query_range(1, 0, t), key=lambda p: p.timestamp)]
    assert ids[0] == 1
    assert all(b - a in (0, 1) for a, b in zip(ids, ids[1:]))
    assert ids[-1] > 1


class _FailingStore(InMemoryLocationStore):
    def append_ping(self, ping):
        raise StoreError("disk full")


def test_append_failure_propagates():
    seg = SessionSegmenter(_FailingStore(), PARAMS)
    with pytest.raises(StoreError):
        seg.ingest(report(0))


@pytest.mark.parametrize(
    "make_params",
    [
        # displacement exactly at the jitter floor is kept
        lambda d: SegmentParams(min_distance_m=d, max_distance_m=500.0, max_time_gap_s=1800.0),
        # displacement exactly at the jump threshold stays in the trip
        lambda d: SegmentParams(min_distance_m=60.0, max_distance_m=d, max_time_gap_s=1800.0),
        # silence exactly at the gap threshold stays in the trip
        lambda d: SegmentParams(min_distance_m=60.0, max_distance_m=500.0, max_time_gap_s=1800.0),
    ],
    ids=["min_distance", "max_distance", "max_time_gap"],
)
def test_thresholds_are_exclusive(make_params):
    last = make_ping(1, 0, session_id=3)
    candidate = report(1800, 3)
    params = make_params(distance_m(last, candidate))

    d = classify(last, candidate, params)
    assert d.outcome is Outcome.CONTINUE_SESSION
    assert d.session_id == 3


def test_locks_are_released_after_ingest():
    seg = SessionSegmenter(InMemoryLocationStore(), PARAMS)
    for user_id in range(50):
        seg.ingest(report(0, user_id=user_id))
    assert len(seg._locks) == 0


class _SlowStore(InMemoryLocationStore):
    """Widens the gap between reading the last ping and appending."""

    def last_ping(self, user_id):
        last = super().last_ping(user_id)
        time.sleep(0.05)
        return last


class _SlowSqliteStore(SqliteLocationStore):
    def last_ping(self, user_id):
        last = super().last_ping(user_id)
        time.sleep(0.05)
        return last


def _race(segmenters) -> None:
    """Send two conflicting reports for one user at the same moment.

    450 m from the origin continues the trip; 550 m from the origin would start
    a new one, but it is only ~100 m from the 450 m report.
    """

    reports = (report(100, 450 / 111.19), report(200, 550 / 111.19))
    barrier = threading.Barrier(2)

    def _send(seg, r):
        barrier.wait()
        seg.ingest(r)

    threads = [threading.Thread(target=_send, args=(seg, r)) for seg, r in zip(segmenters, reports)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()


def _assert_consistent(store) -> None:
    stored = sorted(store.query_range(1, 0, 1000), key=lambda p: p.timestamp)
    assert stored[0].timestamp == 0
    # every stored ping must agree with what its actual predecessor implies
    for prev, curr in zip(stored, stored[1:]):
        expected = classify(prev, report(curr.timestamp, (curr.latitude - BASE_LAT) / STEP), PARAMS)
        assert expected.session_id == curr.session_id


def test_concurrent_reports_for_one_user_are_serialized():
    store = _SlowStore()
    seg = SessionSegmenter(store, PARAMS)
    seg.ingest(report(0, 0))
    _race([seg, seg])
    _assert_consistent(store)


def test_two_segmenters_sharing_a_memory_store():
    store = _SlowStore()
    first = SessionSegmenter(store, PARAMS)
    first.ingest(report(0, 0))
    _race([first, SessionSegmenter(store, PARAMS)])
    _assert_consistent(store)


def test_two_segmenters_sharing_a_database_file(tmp_path):
    path = tmp_path / "rides.sqlite3"
    first = SessionSegmenter(_SlowSqliteStore(path), PARAMS)
    second = SessionSegmenter(_SlowSqliteStore(path), PARAMS)
    first.ingest(report(0, 0))
    _race([first, second])
    _assert_consistent(SqliteLocationStore(path))


class _AlwaysBehindStore(InMemoryLocationStore):
    def append_if_last(self, expected_last, ping):
        return False


def test_endless_contention_is_reported():
    seg = SessionSegmenter(_AlwaysBehindStore(), PARAMS)
    with pytest.raises(StoreError):
        seg.ingest(report(0))
