"""
Timestamp helpers for snapshot selection.

Days for `--date` are America/New_York calendar days; a day's snapshot is
taken at the NY midnight that ends it.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
import pytz

NY_TZ = pytz.timezone("America/New_York")


def ny_date_to_utc_window(date_str: str) -> tuple[int, int]:
    """
    Given a NY date string 'YYYY-MM-DD', return (ts_start_utc, ts_end_utc):
    NY midnight at the start of that date and NY midnight at the start of the next.
    """
    d = datetime.fromisoformat(date_str).date()

    start_ny = NY_TZ.localize(datetime(d.year, d.month, d.day, 0, 0, 0))
    # Re-localize the next day so DST transitions keep midnight at midnight.
    nxt = d + timedelta(days=1)
    end_ny = NY_TZ.localize(datetime(nxt.year, nxt.month, nxt.day, 0, 0, 0))

    ts_start_utc = int(start_ny.astimezone(timezone.utc).timestamp())
    ts_end_utc = int(end_ny.astimezone(timezone.utc).timestamp())
    return ts_start_utc, ts_end_utc


def snapshot_ts_for_ny_date(date_str: str) -> int:
    return ny_date_to_utc_window(date_str)[1]
