"""CSV input for batches of location reports."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from ride_stats.models import PingInput

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: tuple[str, ...] = ("user_id", "timestamp", "latitude", "longitude")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_row(row: Mapping[str, str]) -> PingInput:
    user_id = int(row["user_id"].strip())
    username = (row.get("username") or "").strip() or str(user_id)
    return PingInput(
        user_id=user_id,
        username=username,
        timestamp=int(float(row["timestamp"].strip())),
        latitude=float(row["latitude"].strip()),
        longitude=float(row["longitude"].strip()),
    )


def load_ping_inputs(csv_path: str | Path) -> tuple[list[PingInput], CsvSummary]:
    """Load location reports from a CSV file.

    Expected columns: ``user_id, username, timestamp, latitude, longitude``
    (``username`` optional; ``timestamp`` in unix seconds).

    Args:
        csv_path: Path to the CSV.

    Returns:
        (reports, summary). Malformed rows are skipped and counted.

    Raises:
        KeyError: If a required column is missing from the header.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[PingInput] = []

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames: Sequence[str] = reader.fieldnames or ()
        missing = [c for c in REQUIRED_COLUMNS if c not in fieldnames]
        if missing:
            raise KeyError(f"CSV is missing required columns: {missing}. Found: {list(fieldnames)}")

        for row in reader:
            rows_total += 1
            try:
                parsed.append(_parse_row(row))
            except (AttributeError, ValueError, TypeError):
                # blank or damaged rows
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("skipped %s unparseable CSV rows", summary.rows_skipped)
    return parsed, summary
