from __future__ import annotations

import argparse
import csv
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Europe/Moscow"


@dataclass(frozen=True, slots=True)
class Rider:
    user_id: int
    username: str
    home_lat: float
    home_lon: float
    speed_kmh: float


def generate_rides(
    *,
    rider: Rider,
    days: int,
    seed: int,
    start_local: datetime,
) -> list[dict[str, str]]:
    """Generate live-location reports: one or two rides per day with stops in between."""

    rng = random.Random(seed * 1_000 + rider.user_id)
    tz = ZoneInfo(TZ)
    day0 = start_local.replace(tzinfo=tz)

    out: list[dict[str, str]] = []
    for day in range(days):
        for _ in range(rng.choice([0, 1, 1, 2])):
            cur = day0 + timedelta(days=day, hours=rng.uniform(0, 12))
            # each ride starts a short drive away from home
            lat = rider.home_lat + rng.uniform(-0.03, 0.03)
            lon = rider.home_lon + rng.uniform(-0.03, 0.03)
            heading = rng.uniform(0, 2 * math.pi)

            for _ in range(rng.randint(20, 60)):
                step_s = rng.uniform(20, 90)
                step_m = rider.speed_kmh / 3.6 * step_s * rng.uniform(0.6, 1.2)
                heading += rng.uniform(-0.4, 0.4)
                lat += step_m * math.cos(heading) / 111_320.0
                lon += step_m * math.sin(heading) / (111_320.0 * math.cos(math.radians(lat)))
                cur = cur + timedelta(seconds=step_s)

                # GPS jitter while standing at a light
                if rng.random() < 0.05:
                    jitter_lat = lat + rng.uniform(-0.0001, 0.0001)
                    out.append(_row(rider, cur + timedelta(seconds=5), jitter_lat, lon))

                out.append(_row(rider, cur, lat, lon))

    out.sort(key=lambda r: int(r["timestamp"]))
    return out


def _row(rider: Rider, when: datetime, lat: float, lon: float) -> dict[str, str]:
    return {
        "user_id": str(rider.user_id),
        "username": rider.username,
        "timestamp": str(int(when.timestamp())),
        "latitude": f"{lat:.7f}",
        "longitude": f"{lon:.7f}",
    }


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake pings CSV for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/pings.csv", help="Output CSV path")
    p.add_argument("--days", type=int, default=45, help="Number of days to simulate")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2024-07-01 07:00:00",
        help=f"Start local time in {TZ}, e.g. '2024-07-01 07:00:00'",
    )
    args = p.parse_args()

    start_local = datetime.fromisoformat(args.start)
    riders = [
        Rider(101, "@alina", 55.7558, 37.6173, 18.0),
        Rider(102, "@boris", 55.7000, 37.5300, 24.0),
        Rider(103, "Vera", 55.8000, 37.7000, 14.0),
        Rider(104, "@grisha", 55.7300, 37.6000, 30.0),
    ]

    rows: list[dict[str, str]] = []
    for rider in riders:
        rows.extend(generate_rides(rider=rider, days=args.days, seed=args.seed, start_local=start_local))
    rows.sort(key=lambda r: int(r["timestamp"]))

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["user_id", "username", "timestamp", "latitude", "longitude"])
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, riders={len(riders)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
