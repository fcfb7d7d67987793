"""Module entry point: python -m ride_stats ..."""

from __future__ import annotations

from ride_stats.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
