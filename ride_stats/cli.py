"""Command-line interface for ride_stats.

Run:
    python -m ride_stats ingest --csv pings.csv
    python -m ride_stats stats --user 42 --period week
    python -m ride_stats top --period month --limit 5
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime

from ride_stats.csv_io import load_ping_inputs
from ride_stats.leaderboard import DEFAULT_LIMIT, rank
from ride_stats.models import DEFAULT_DB, DEFAULT_TZ
from ride_stats.segmenter import SegmentParams, SessionSegmenter
from ride_stats.stats import aggregate_between, aggregate_period
from ride_stats.store import SqliteLocationStore, StoreError
from ride_stats.timeutils import PERIODS, parse_day, resolve_window, shift_reference, tzinfo_from_name

logger = logging.getLogger(__name__)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _reference(args: argparse.Namespace) -> datetime:
    tz = tzinfo_from_name(args.tz)
    if args.at:
        try:
            ref = datetime.fromisoformat(args.at.strip().replace("T", " "))
        except ValueError as exc:
            raise ValueError(f"Cannot parse --at: {args.at!r}. Example: 2024-08-05 12:00:00") from exc
        ref = ref.replace(tzinfo=tz) if ref.tzinfo is None else ref.astimezone(tz)
    else:
        ref = datetime.now(tz)
    if getattr(args, "previous", False):
        ref = shift_reference(args.period, ref, -1)
    return ref


def _cmd_ingest(args: argparse.Namespace) -> int:
    reports, summary = load_ping_inputs(args.csv)
    print(f"rows total={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")

    params = SegmentParams(
        min_distance_m=args.min_distance_m,
        max_distance_m=args.max_distance_m,
        max_time_gap_s=None if args.max_time_gap_s < 0 else args.max_time_gap_s,
    )
    segmenter = SessionSegmenter(SqliteLocationStore(args.db), params)
    counts = segmenter.ingest_many(reports)

    accepted = sum(counts[k] for k in ("first_of_timeline", "continue_session", "new_session"))
    print(
        f"stored={accepted} (new sessions={counts['first_of_timeline'] + counts['new_session']}), "
        f"discarded={counts['discard']} (too_close={counts['too_close']}, out_of_order={counts['out_of_order']})"
    )
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    ref = _reference(args)
    window = resolve_window(args.period, ref, args.tz)
    store = SqliteLocationStore(args.db)
    res = aggregate_period(store, args.user, args.period, ref, args.tz).rounded()

    if args.json:
        print(json.dumps(asdict(res) | {"start_unix": window.start_unix, "end_unix": window.end_unix}, indent=2))
        return 0

    print(f"### {args.period} starting {datetime.fromtimestamp(window.start_unix, ref.tzinfo).date()}")
    print(f"distance={res.distance_km:.2f} km, avg_speed={res.avg_speed_kmh:.2f} km/h")
    if res.daily_distances_km:
        print()
        print("### per day")
        for i, km in enumerate(res.daily_distances_km):
            label = WEEKDAYS[i] if args.period == "week" else f"day {i + 1:2d}"
            print(f"{label}: {km:.2f} km")
    return 0


def _cmd_range_stats(args: argparse.Namespace) -> int:
    start_day = parse_day(args.start)
    end_day = parse_day(args.end)
    if start_day > end_day:
        raise ValueError("--start must not be later than --end")

    store = SqliteLocationStore(args.db)
    res = aggregate_between(store, args.user, start_day, end_day, args.tz).rounded()
    if args.json:
        print(json.dumps({"distance_km": res.distance_km, "avg_speed_kmh": res.avg_speed_kmh}, indent=2))
        return 0
    print(
        f"{start_day.isoformat()} .. {end_day.isoformat()}: "
        f"distance={res.distance_km:.2f} km, avg_speed={res.avg_speed_kmh:.2f} km/h"
    )
    return 0


def _cmd_top(args: argparse.Namespace) -> int:
    ref = _reference(args)
    store = SqliteLocationStore(args.db)
    entries = rank(store, args.period, ref, args.tz, limit=args.limit, max_workers=args.workers)

    if args.json:
        print(json.dumps([asdict(e) | {"distance_km": round(e.distance_km, 2)} for e in entries], indent=2))
        return 0
    print(f"### top {args.limit} by distance ({args.period})")
    if not entries:
        print("(no rides in this window)")
    for i, e in enumerate(entries, start=1):
        print(f"{i}. {e.username}: {e.distance_km:.2f} km")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", type=str, default=DEFAULT_DB, help="SQLite database path")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help=f"IANA timezone, default {DEFAULT_TZ}")
    p.add_argument("--json", action="store_true", help="print machine-readable JSON")


def _add_window(p: argparse.ArgumentParser) -> None:
    p.add_argument("--period", type=str, choices=PERIODS, default="week")
    p.add_argument("--at", type=str, default=None, help="reference time, e.g. '2024-08-05 12:00' (default now)")
    p.add_argument("--previous", action="store_true", help="use the previous week/month instead of the current one")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    defaults = SegmentParams()
    p = argparse.ArgumentParser(prog="ride_stats")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ing = sub.add_parser("ingest", help="segment a CSV of location reports into trips and store them")
    p_ing.add_argument("--csv", type=str, required=True, help="input CSV (user_id,username,timestamp,latitude,longitude)")
    p_ing.add_argument("--min-distance-m", type=float, default=defaults.min_distance_m, help="jitter floor in meters")
    p_ing.add_argument(
        "--max-distance-m", type=float, default=defaults.max_distance_m, help="jump that starts a new trip"
    )
    p_ing.add_argument(
        "--max-time-gap-s",
        type=float,
        default=defaults.max_time_gap_s,
        help="silence that starts a new trip; negative disables",
    )
    _add_common(p_ing)
    p_ing.set_defaults(func=_cmd_ingest)

    p_st = sub.add_parser("stats", help="distance/speed for one user over a week or month")
    p_st.add_argument("--user", type=int, required=True)
    _add_window(p_st)
    _add_common(p_st)
    p_st.set_defaults(func=_cmd_stats)

    p_rs = sub.add_parser("range-stats", help="distance/speed for one user between two dates")
    p_rs.add_argument("--user", type=int, required=True)
    p_rs.add_argument("--start", type=str, required=True, help="DD.MM.YYYY or YYYY-MM-DD")
    p_rs.add_argument("--end", type=str, required=True, help="DD.MM.YYYY or YYYY-MM-DD (inclusive)")
    _add_common(p_rs)
    p_rs.set_defaults(func=_cmd_range_stats)

    p_top = sub.add_parser("top", help="leaderboard by distance")
    p_top.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    p_top.add_argument("--workers", type=int, default=8, help="parallel per-user aggregations")
    _add_window(p_top)
    _add_common(p_top)
    p_top.set_defaults(func=_cmd_top)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return int(args.func(args))
    except (ValueError, KeyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except StoreError as exc:
        logger.error("storage failure: %s", exc)
        return 2
