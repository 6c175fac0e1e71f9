"""Read-only store of normalized AVL location reports.

The store wraps a table of already-parsed vehicle-location reports (one row per
report) and answers the two queries block inference needs:

- every report in a time window ``[begin, end)``, ascending by time, and
- every report for one vehicle in a time window, ascending by time.

Reports are loaded from a CSV export of the AVL database. Column names from
the original AVL tables (``vehicleId``, ``assignmentId``, ``field1Value``, …)
are accepted as aliases. Timestamps without an offset are read as wall-clock
times in the configured agency timezone; rows whose timestamp cannot be parsed
are dropped before anything downstream sees them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import pandas as pd

DEFAULT_TIMEZONE = "America/New_York"

REQUIRED_COLUMNS: tuple[str, ...] = ("vehicle_id", "time", "assignment_id", "block_code")
OPTIONAL_COLUMNS: tuple[str, ...] = ("lat", "lon")

COLUMN_ALIASES: dict[str, str] = {
    "vehicleId": "vehicle_id",
    "vehicle": "vehicle_id",
    "timestamp": "time",
    "avl_time": "time",
    "assignmentId": "assignment_id",
    "assignment": "assignment_id",
    "field1Value": "block_code",
    "field1_value": "block_code",
    "block_id": "block_code",
    "latitude": "lat",
    "longitude": "lon",
}

_OFFSET_PATTERN = r"(?:Z|[+-]\d{2}:?\d{2})$"


@dataclass(frozen=True)
class LocationReport:
    """One AVL observation as delivered by the feed layer."""

    vehicle_id: str
    time: pd.Timestamp
    assignment_id: str
    block_code: str
    lat: Optional[float] = None
    lon: Optional[float] = None


# =============================================================================
# DATE WINDOWS
# =============================================================================


def parse_begin_date(date_str: str, timezone: str = DEFAULT_TIMEZONE) -> pd.Timestamp:
    """Return local midnight of *date_str* in *timezone*.

    Raises:
        ValueError: *date_str* is empty or not a parseable date.
    """
    try:
        ts = pd.Timestamp(date_str)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Could not parse date {date_str!r}.") from exc
    if pd.isna(ts):
        raise ValueError(f"Could not parse date {date_str!r}.")

    ts = ts.tz_localize(timezone) if ts.tzinfo is None else ts.tz_convert(timezone)
    return ts.normalize()


def day_windows(
    begin: pd.Timestamp, number_of_days: int
) -> list[tuple[pd.Timestamp, pd.Timestamp]]:
    """Split ``number_of_days`` local calendar days starting at *begin* into windows."""
    if number_of_days < 1:
        raise ValueError(f"number_of_days must be at least 1, got {number_of_days}.")
    return [
        (begin + pd.DateOffset(days=day), begin + pd.DateOffset(days=day + 1))
        for day in range(number_of_days)
    ]


# =============================================================================
# TABLE PREPARATION
# =============================================================================


def localize_times(series: pd.Series, timezone: str = DEFAULT_TIMEZONE) -> pd.Series:
    """Parse ISO‑8601 strings into tz-aware timestamps in *timezone*.

    Values carrying a UTC offset are converted; naive values are localized.
    Naive times in the repeated hour of a fall-back day are read as daylight
    time (the first pass through that hour). Unparseable values and local
    times skipped by a spring-forward change become ``NaT``.
    """
    text = series.astype("string").str.strip()
    has_offset = text.str.contains(_OFFSET_PATTERN, regex=True, na=False).astype(bool)

    result = pd.Series(pd.NaT, index=text.index, dtype=pd.DatetimeTZDtype("ns", timezone))
    if has_offset.any():
        aware = pd.to_datetime(text[has_offset], errors="coerce", utc=True, format="ISO8601")
        result.loc[has_offset] = aware.dt.tz_convert(timezone)
    if (~has_offset).any():
        naive = pd.to_datetime(text[~has_offset], errors="coerce", format="ISO8601")
        result.loc[~has_offset] = naive.dt.tz_localize(
            timezone, ambiguous=[True] * len(naive), nonexistent="NaT"
        )
    return result


def prepare_reports(raw: pd.DataFrame, timezone: str = DEFAULT_TIMEZONE) -> pd.DataFrame:
    """Rename, validate, clean and time-sort a raw AVL report table."""
    df = raw.rename(columns=lambda c: COLUMN_ALIASES.get(str(c).strip(), str(c).strip()))

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"AVL reports are missing required columns: {', '.join(missing)}")

    df = df.copy()
    for col in ("vehicle_id", "assignment_id", "block_code"):
        df[col] = df[col].fillna("").astype(str).str.strip()
    for col in OPTIONAL_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce") if col in df.columns else float("nan")

    df["time"] = localize_times(df["time"], timezone)

    bad = df["time"].isna() | (df["vehicle_id"] == "")
    if bad.any():
        logging.warning("Dropped %d AVL report(s) with no usable time or vehicle.", int(bad.sum()))
        df = df[~bad]

    # mergesort keeps feed order for reports sharing a timestamp
    df = df.sort_values("time", kind="mergesort").reset_index(drop=True)
    return df[list(REQUIRED_COLUMNS + OPTIONAL_COLUMNS)]


def _optional_float(value: object) -> Optional[float]:
    return None if pd.isna(value) else float(value)  # type: ignore[arg-type]


# =============================================================================
# STORE
# =============================================================================


class AvlReportStore:
    """Time-ordered, read-only collection of :class:`LocationReport` rows."""

    def __init__(self, reports: pd.DataFrame, timezone: str = DEFAULT_TIMEZONE) -> None:
        self.timezone = timezone
        self._df = prepare_reports(reports, timezone)

    @classmethod
    def from_csv(
        cls, path: str | os.PathLike[str], timezone: str = DEFAULT_TIMEZONE
    ) -> "AvlReportStore":
        """Load an AVL report export; raises ``OSError`` / ``ValueError`` like GTFS loading."""
        if not os.path.exists(path):
            raise OSError(f"AVL report file '{os.fspath(path)}' does not exist.")
        try:
            raw = pd.read_csv(path, dtype=str, low_memory=False)
        except pd.errors.EmptyDataError as exc:
            raise ValueError(f"AVL report file '{os.fspath(path)}' is empty.") from exc
        except pd.errors.ParserError as exc:
            raise ValueError(f"Parser error in '{os.fspath(path)}': {exc}") from exc

        store = cls(raw, timezone)
        logging.info("Loaded %d AVL reports from %s.", len(store), os.fspath(path))
        return store

    def __len__(self) -> int:
        return len(self._df)

    @property
    def vehicle_ids(self) -> list[str]:
        return sorted(self._df["vehicle_id"].unique())

    def _window(self, begin: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
        times = self._df["time"]
        return self._df[(times >= begin) & (times < end)]

    @staticmethod
    def _to_reports(frame: pd.DataFrame) -> list[LocationReport]:
        return [
            LocationReport(
                vehicle_id=row.vehicle_id,
                time=row.time,
                assignment_id=row.assignment_id,
                block_code=row.block_code,
                lat=_optional_float(row.lat),
                lon=_optional_float(row.lon),
            )
            for row in frame.itertuples(index=False)
        ]

    def reports_between(self, begin: pd.Timestamp, end: pd.Timestamp) -> list[LocationReport]:
        """All reports with ``begin <= time < end``, ascending by time."""
        return self._to_reports(self._window(begin, end))

    def reports_for_vehicle(
        self, vehicle_id: str, begin: pd.Timestamp, end: pd.Timestamp
    ) -> list[LocationReport]:
        """Reports for *vehicle_id* with ``begin <= time < end``, ascending by time."""
        window = self._window(begin, end)
        return self._to_reports(window[window["vehicle_id"] == vehicle_id])
