"""Shared GTFS loading and time-of-day helpers."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from typing import Any, Optional, cast

import pandas as pd

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86_400


def load_gtfs_data(
    gtfs_folder_path: str | os.PathLike[str],
    files: Optional[Sequence[str]] = None,
    dtype: str | type[str] | Mapping[str, Any] = str,
) -> dict[str, pd.DataFrame]:
    """Load one or more GTFS text files into memory.

    Args:
        gtfs_folder_path: Absolute or relative path to the folder
            containing the GTFS feed.
        files: Explicit sequence of file names to load. If ``None``,
            the files needed for block inference are loaded
            (``trips.txt`` and ``stop_times.txt``).
        dtype: Value forwarded to :pyfunc:`pandas.read_csv(dtype=…)` to
            control column dtypes. Supply a mapping for per-column dtypes.

    Returns:
        Mapping of file stem → :class:`pandas.DataFrame`; for example,
        ``data["trips"]`` holds the parsed *trips.txt* table.

    Raises:
        OSError: Folder missing or one of *files* not present.
        ValueError: Empty file or CSV parser failure.
        RuntimeError: Generic OS error while reading a file.

    Notes:
        All columns default to ``str`` so trip short names such as ``"0012"``
        keep their leading zeros.
    """
    folder = os.fspath(gtfs_folder_path)
    if not os.path.exists(folder):
        raise OSError(f"The directory '{folder}' does not exist.")

    if files is None:
        files = ("trips.txt", "stop_times.txt")

    missing = [f for f in files if not os.path.exists(os.path.join(folder, f))]
    if missing:
        raise OSError(f"Missing GTFS files in '{folder}': {', '.join(missing)}")

    data: dict[str, pd.DataFrame] = {}
    for file_name in files:
        key = file_name.replace(".txt", "")
        file_path = os.path.join(folder, file_name)
        try:
            df = pd.read_csv(file_path, dtype=cast("Any", dtype), low_memory=False)
        except pd.errors.EmptyDataError as exc:
            raise ValueError(f"File '{file_name}' in '{folder}' is empty.") from exc
        except pd.errors.ParserError as exc:
            raise ValueError(f"Parser error in '{file_name}' in '{folder}': {exc}") from exc
        except OSError as exc:
            raise RuntimeError(
                f"OS error reading file '{file_name}' in '{folder}': {exc}"
            ) from exc

        data[key] = df
        logging.info("Loaded %s (%d records).", file_name, len(df))

    return data


def gtfs_time_to_seconds(time_str: Any) -> Optional[int]:
    """Convert GTFS ``HH:MM[:SS]`` → seconds after midnight (hours may exceed 24).

    Blank or missing values return ``None``; malformed values raise ``ValueError``.
    """
    if time_str is None or (isinstance(time_str, float) and pd.isna(time_str)):
        return None
    text = str(time_str).strip()
    if not text:
        return None

    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid GTFS time {time_str!r}; expected HH:MM[:SS].")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise ValueError(f"Invalid GTFS time {time_str!r}; expected HH:MM[:SS].") from exc
    return hours * SECONDS_PER_HOUR + minutes * SECONDS_PER_MINUTE + seconds


def seconds_to_hhmmss(total: Optional[int]) -> str:
    """Convert seconds → HH:MM:SS (zero‑padded, >24 h allowed); ``None`` → ``--:--:--``."""
    if total is None:
        return "--:--:--"
    sign = "-" if total < 0 else ""
    total = abs(int(total))
    return (
        f"{sign}{total // SECONDS_PER_HOUR:02d}:"
        f"{total % SECONDS_PER_HOUR // SECONDS_PER_MINUTE:02d}:"
        f"{total % SECONDS_PER_MINUTE:02d}"
    )


def seconds_into_day(timestamp: pd.Timestamp) -> int:
    """Return whole seconds since local midnight of *timestamp*'s wall clock."""
    return (
        timestamp.hour * SECONDS_PER_HOUR
        + timestamp.minute * SECONDS_PER_MINUTE
        + timestamp.second
    )
