from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import streamlit as st

from ride_stats.cli import WEEKDAYS
from ride_stats.leaderboard import DEFAULT_LIMIT, rank
from ride_stats.models import DEFAULT_DB, DEFAULT_TZ
from ride_stats.stats import aggregate_between, aggregate_period
from ride_stats.store import SqliteLocationStore, StoreError
from ride_stats.timeutils import resolve_window, shift_reference, tzinfo_from_name


def _day_label(period: str, index: int, start: datetime) -> str:
    if period == "week":
        return f"{index + 1}. {WEEKDAYS[index]}"
    return (start + timedelta(days=index)).date().isoformat()


def main() -> None:
    st.set_page_config(page_title="Ride stats", layout="wide")
    st.title("Ride stats: trips, distance and leaderboard")

    with st.sidebar:
        st.subheader("Data and timezone")
        tz_name = st.text_input("Timezone (IANA)", value=DEFAULT_TZ)
        db_path = st.text_input("SQLite database", value=DEFAULT_DB)

        st.subheader("Window")
        period = st.radio("Period", options=["week", "month"], horizontal=True)
        previous = st.checkbox("Previous (last completed) period", value=False)
        limit = int(st.number_input("Leaderboard size", value=DEFAULT_LIMIT, min_value=1, step=1))

    if not Path(db_path).exists():
        st.error(f"Database not found: {db_path!r}. Load data first: python -m ride_stats ingest --csv pings.csv")
        return

    try:
        tz = tzinfo_from_name(tz_name)
    except ValueError as exc:
        st.error(str(exc))
        return

    ref = datetime.now(tz)
    if previous:
        ref = shift_reference(period, ref, -1)
    window = resolve_window(period, ref, tz_name)
    window_start = datetime.fromtimestamp(window.start_unix, tz)
    window_end = datetime.fromtimestamp(window.end_unix, tz)
    st.caption(f"Window: {window_start.isoformat(sep=' ')} .. {window_end.isoformat(sep=' ')}")

    try:
        _render(SqliteLocationStore(db_path), period, ref, tz_name, limit, window_start, window_end)
    except StoreError as exc:
        st.error(f"Cannot read {db_path!r}: {exc}")


def _render(
    store: SqliteLocationStore,
    period: str,
    ref: datetime,
    tz_name: str,
    limit: int,
    window_start: datetime,
    window_end: datetime,
) -> None:
    entries = rank(store, period, ref, tz_name, limit=limit)

    st.subheader("Leaderboard")
    if not entries:
        st.info("No rides in this window.")
    else:
        st.dataframe(
            [
                {"place": i, "user": e.username, "distance_km": round(e.distance_km, 2)}
                for i, e in enumerate(entries, start=1)
            ],
            use_container_width=True,
        )

    st.subheader("Rider")
    options = {f"{e.username} ({e.user_id})": e.user_id for e in entries}
    if not options:
        return
    user_id = options[st.selectbox("User", options=list(options))]

    res = aggregate_period(store, user_id, period, ref, tz_name).rounded()
    c1, c2 = st.columns(2)
    c1.metric("Distance", f"{res.distance_km:.2f} km")
    c2.metric("Average speed", f"{res.avg_speed_kmh:.2f} km/h")

    if res.daily_distances_km:
        day_rows = [
            {"day": _day_label(period, i, window_start), "km": km} for i, km in enumerate(res.daily_distances_km)
        ]
        st.bar_chart(day_rows, x="day", y="km")

    with st.expander("Custom date range", expanded=False):
        start_d = st.date_input("Start date", value=window_start.date())
        end_d = st.date_input("End date", value=window_end.date())
        if start_d > end_d:
            st.error("Start date must not be later than end date.")
        else:
            custom = aggregate_between(store, user_id, start_d, end_d, tz_name).rounded()
            st.write(f"{custom.distance_km:.2f} km at {custom.avg_speed_kmh:.2f} km/h")


if __name__ == "__main__":
    main()
