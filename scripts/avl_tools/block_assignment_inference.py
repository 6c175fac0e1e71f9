"""Infer which block each scheduled trip actually ran under from historical AVL data.

Operators key a trip (pattern) code and a block (workpiece) code into the
vehicle terminal, and every AVL report echoes both. The codes are noisy: the
terminal is sometimes set up for the *next* trip while the vehicle is still
finishing the previous one, placeholder codes show up between assignments,
and older data used a ``dd00`` encoding for what the GTFS calls ``dd``.

This tool replays one or more service days of AVL reports and builds a
corrected trip short name → block ID mapping:

- Reports are grouped per vehicle, ordered by time, and collapsed into
  *assignment segments* (runs of the same trip/block pair).
- Each segment is judged against the GTFS schedule. An assignment that shows
  up 15 minutes or more before its trip is due to start is treated as a
  pre-staged artifact of the previous trip and rejected, unless the vehicle
  had no block at all before it.
- Accepted segments are folded into a single mapping. When a trip is seen
  with a different block than before, the newest observation wins and every
  block seen for that trip is kept for the conflict report.

Outputs
-------
- ``trips.txt``            : supplemental GTFS trips file (trip_short_name, block_id)
- ``block_conflicts.csv``  : trips observed with more than one block (optional)
- ``segment_audit.csv``    : every evaluated segment and its decision (optional)
- ``block_assignment_review.xlsx`` : the above as formatted sheets plus daily counts
- ``block_assignment_inference.log``

The behaviour is controlled by the *CONFIGURATION* constants below; every
constant can also be overridden from the command line.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from scripts.avl_tools.avl_report_store import (
    AvlReportStore,
    LocationReport,
    day_windows,
    parse_begin_date,
)
from scripts.utils.gtfs_helpers import (
    SECONDS_PER_DAY,
    SECONDS_PER_MINUTE,
    gtfs_time_to_seconds,
    load_gtfs_data,
    seconds_into_day,
    seconds_to_hhmmss,
)
from scripts.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

GTFS_FOLDER_PATH: Path | str = r"Path\To\Your\GTFS_Folder"
AVL_REPORTS_PATH: Path | str = r"Path\To\Your\avl_reports.csv"
OUTPUT_DIR: Path | str | None = None  # None → <GTFS folder>/supplement

BEGIN_DATE: str = "2014-03-10"  # first service day, YYYY-MM-DD
NUMBER_OF_DAYS: int = 1
TIMEZONE: str = "America/New_York"

EARLY_ASSIGNMENT_THRESHOLD_MIN: int = 15

WRITE_CONFLICT_CSV: bool = True
WRITE_SEGMENT_AUDIT: bool = False
WRITE_REVIEW_WORKBOOK: bool = True

LOG_LEVEL: str = "INFO"  # DEBUG prints one line per assignment segment

# Feed codes
PLACEHOLDER_TRIP_CODE: str = "000"  # bad/placeholder trip, dropped
END_OF_TRIP_CODE: str = "9999"  # vehicle finished its trip
NO_BLOCK_CODE: str = "000"

SUPPLEMENT_TRIPS_FILENAME = "trips.txt"
CONFLICT_CSV_FILENAME = "block_conflicts.csv"
SEGMENT_AUDIT_FILENAME = "segment_audit.csv"
REVIEW_WORKBOOK_FILENAME = "block_assignment_review.xlsx"
LOG_FILENAME = "block_assignment_inference.log"

AUDIT_COLUMNS: list[str] = [
    "service_date",
    "vehicle_id",
    "first_time",
    "trip_short_name",
    "block_id",
    "earliness_secs",
    "trip_start",
    "trip_end",
    "decision",
    "applied",
    "lat",
    "lon",
]

EARLY_ASSIGNMENT_THRESHOLD_SECS: int = EARLY_ASSIGNMENT_THRESHOLD_MIN * SECONDS_PER_MINUTE

# =============================================================================
# DATA MODEL
# =============================================================================


class TripMarker(Enum):
    """Trip codes that do not name a trip."""

    PLACEHOLDER = PLACEHOLDER_TRIP_CODE
    END_OF_TRIP = END_OF_TRIP_CODE


TripCode = Union[str, TripMarker]


class Decision(Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class NormalizedAssignment:
    """Trip/block pair after code cleanup; ``block_id`` is ``None`` for "no block"."""

    trip: TripCode
    block_id: Optional[str]

    @property
    def is_placeholder(self) -> bool:
        return self.trip is TripMarker.PLACEHOLDER

    @property
    def is_resolvable(self) -> bool:
        """True when the pair may be written into the trip → block mapping."""
        return isinstance(self.trip, str) and self.block_id is not None


@dataclass(frozen=True)
class ScheduleWindow:
    """Earliest and latest scheduled arrival of a trip, in seconds after midnight."""

    start: int
    end: int


@dataclass(frozen=True)
class AssignmentSegment:
    """A run of consecutive reports from one vehicle sharing the same assignment."""

    vehicle_id: str
    trip: TripCode
    block_id: Optional[str]
    first_time: pd.Timestamp
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def assignment(self) -> NormalizedAssignment:
        return NormalizedAssignment(self.trip, self.block_id)

    @property
    def is_resolvable(self) -> bool:
        return self.assignment.is_resolvable


@dataclass(frozen=True)
class SegmentEvaluation:
    """Outcome of judging one segment against the schedule."""

    segment: AssignmentSegment
    decision: Decision
    earliness: Optional[int] = None  # None → trip not in the schedule
    window: Optional[ScheduleWindow] = None

    @property
    def applies(self) -> bool:
        """Accepted and carrying a real trip and block."""
        return self.decision is Decision.ACCEPT and self.segment.is_resolvable


@dataclass
class DaySummary:
    service_date: str
    reports: int = 0
    vehicles: int = 0
    segments: int = 0
    accepted: int = 0
    rejected: int = 0
    excluded: int = 0
    conflicts: int = 0
    failed_vehicles: list[str] = field(default_factory=list)
    evaluations: list[SegmentEvaluation] = field(default_factory=list, repr=False)


# =============================================================================
# CODE NORMALIZATION
# =============================================================================


def adjust_assignment(code: str) -> str:
    """Map legacy ``dd00`` codes to ``dd`` so they match GTFS trip short names.

    Early AVL data stored assignments such as ``"1200"`` for trip ``"12"``.
    Any other code is returned unchanged, so the rule is idempotent.
    """
    if len(code) == 4 and code.endswith("00"):
        return code[:2]
    return code


def normalize_trip_code(raw: Optional[str]) -> TripCode:
    """Return the trip short name, or a :class:`TripMarker` for special codes."""
    code = adjust_assignment((raw or "").strip())
    if not code or code == PLACEHOLDER_TRIP_CODE:
        return TripMarker.PLACEHOLDER
    if code == END_OF_TRIP_CODE:
        return TripMarker.END_OF_TRIP
    return code


def normalize_block_code(raw: Optional[str]) -> Optional[str]:
    """Return the block ID, or ``None`` when the vehicle has no block."""
    code = adjust_assignment((raw or "").strip())
    if not code or code == NO_BLOCK_CODE:
        return None
    return code


def normalize_report(report: LocationReport) -> NormalizedAssignment:
    return NormalizedAssignment(
        trip=normalize_trip_code(report.assignment_id),
        block_id=normalize_block_code(report.block_code),
    )


def trip_label(trip: TripCode) -> str:
    return trip.value if isinstance(trip, TripMarker) else trip


def block_label(block_id: Optional[str]) -> str:
    return NO_BLOCK_CODE if block_id is None else block_id


# =============================================================================
# SCHEDULE INDEX
# =============================================================================


def build_schedule_index(
    trip_to_short_name: Mapping[str, str],
    stop_times: Iterable[tuple[str, Optional[int]]],
) -> dict[str, ScheduleWindow]:
    """Find the first and last scheduled arrival of every trip short name.

    Args:
        trip_to_short_name: GTFS ``trip_id`` → ``trip_short_name``.
        stop_times: ``(trip_id, arrival seconds)`` pairs in any order.

    Returns:
        Trip short name → :class:`ScheduleWindow`. Stop times whose trip has
        no short name, or that have no arrival time, contribute nothing.
    """
    bounds: dict[str, tuple[int, int]] = {}
    for trip_id, arrival in stop_times:
        short_name = trip_to_short_name.get(trip_id)
        if not short_name or arrival is None:
            continue
        arrival = int(arrival)
        current = bounds.get(short_name)
        if current is None:
            bounds[short_name] = (arrival, arrival)
        else:
            bounds[short_name] = (min(current[0], arrival), max(current[1], arrival))

    return {name: ScheduleWindow(start, end) for name, (start, end) in bounds.items()}


def load_schedule_index(gtfs_folder_path: Path | str) -> dict[str, ScheduleWindow]:
    """Build the schedule index from ``trips.txt`` and ``stop_times.txt``."""
    gtfs = load_gtfs_data(gtfs_folder_path, files=("trips.txt", "stop_times.txt"))

    trips = gtfs["trips"]
    if "trip_short_name" not in trips.columns:
        raise ValueError("trips.txt has no 'trip_short_name' column; cannot match AVL trips.")
    named = trips.dropna(subset=["trip_short_name"])
    trip_to_short_name = dict(zip(named["trip_id"], named["trip_short_name"].str.strip()))

    def _arrival_secs(value: object) -> Optional[int]:
        try:
            return gtfs_time_to_seconds(value)
        except ValueError:
            logging.warning("Ignoring malformed arrival_time %r in stop_times.txt.", value)
            return None

    stop_times = gtfs["stop_times"]
    arrivals = stop_times["arrival_time"].map(_arrival_secs)
    has_arrival = arrivals.notna()
    pairs = zip(
        stop_times.loc[has_arrival, "trip_id"],
        arrivals[has_arrival].astype(int),
    )

    index = build_schedule_index(trip_to_short_name, pairs)
    logging.info(
        "Schedule index holds %d trip short names (%d stop times without usable arrival).",
        len(index),
        int((~has_arrival).sum()),
    )
    return index


# =============================================================================
# SEGMENTER
# =============================================================================


def segment_vehicle_reports(reports: Sequence[LocationReport]) -> list[AssignmentSegment]:
    """Collapse one vehicle's time-ordered reports into assignment segments.

    Placeholder-trip reports are dropped before collapsing. End-of-trip
    reports are kept. Only the first report of each run contributes its time
    and position. Reports sharing a timestamp with different codes never open
    two segments: the last one in feed order wins, so segment start times are
    strictly increasing.

    Raises:
        ValueError: Reports mix vehicles or go backwards in time.
    """
    segments: list[AssignmentSegment] = []
    vehicle_id: Optional[str] = None
    last_time: Optional[pd.Timestamp] = None

    for report in reports:
        if vehicle_id is None:
            vehicle_id = report.vehicle_id
        elif report.vehicle_id != vehicle_id:
            raise ValueError(
                f"Reports for vehicle {vehicle_id} include vehicle {report.vehicle_id}."
            )
        if last_time is not None and report.time < last_time:
            raise ValueError(
                f"Reports for vehicle {vehicle_id} are not in time order "
                f"({report.time} follows {last_time})."
            )
        last_time = report.time

        assignment = normalize_report(report)
        if assignment.is_placeholder:
            continue
        if segments and segments[-1].first_time == report.time:
            # same instant: the later report replaces the segment it started
            if segments[-1].assignment == assignment:
                continue
            segments.pop()
        if segments and segments[-1].assignment == assignment:
            continue

        segments.append(
            AssignmentSegment(
                vehicle_id=report.vehicle_id,
                trip=assignment.trip,
                block_id=assignment.block_id,
                first_time=report.time,
                lat=report.lat,
                lon=report.lon,
            )
        )

    return segments


# =============================================================================
# HEURISTIC EVALUATOR
# =============================================================================


def service_seconds(timestamp: pd.Timestamp, window: ScheduleWindow) -> int:
    """Seconds into the day of *timestamp* on the clock *window* is written in.

    GTFS times past 24:00 belong to the previous service day, so an early
    morning report for such a trip is read as ``24:00`` plus its time of day
    when that lands closer to the trip start.
    """
    secs = seconds_into_day(timestamp)
    if window.start >= SECONDS_PER_DAY and secs < window.start - SECONDS_PER_DAY // 2:
        secs += SECONDS_PER_DAY
    return secs


def evaluate_segment(
    previous: Optional[AssignmentSegment],
    segment: AssignmentSegment,
    schedule_index: Mapping[str, ScheduleWindow],
    threshold_secs: int = EARLY_ASSIGNMENT_THRESHOLD_SECS,
) -> SegmentEvaluation:
    """Accept or reject the assignment a segment starts.

    An assignment seen ``threshold_secs`` or more before the trip's scheduled
    start is usually the terminal being set up for the next trip, so it is
    rejected. The exception is a vehicle that had no block before the change
    (or no earlier segment at all): then the early signal is the best there is.
    Trips missing from the schedule are always accepted.
    """
    window = schedule_index.get(segment.trip) if isinstance(segment.trip, str) else None
    if window is None:
        return SegmentEvaluation(segment, Decision.ACCEPT)

    earliness = window.start - service_seconds(segment.first_time, window)
    previous_block = previous.block_id if previous is not None else None

    if earliness >= threshold_secs and previous_block is not None:
        decision = Decision.REJECT
    else:
        decision = Decision.ACCEPT
    return SegmentEvaluation(segment, decision, earliness, window)


def format_earliness(earliness: Optional[int]) -> str:
    if earliness is None:
        return "-----------"
    text = f"{earliness}s".ljust(5)
    return f"{text} early" if earliness >= 0 else f"{text} LATE!"


def evaluate_vehicle_segments(
    segments: Sequence[AssignmentSegment],
    schedule_index: Mapping[str, ScheduleWindow],
    threshold_secs: int = EARLY_ASSIGNMENT_THRESHOLD_SECS,
) -> list[SegmentEvaluation]:
    """Evaluate a vehicle's segments in order, each against its predecessor."""
    evaluations: list[SegmentEvaluation] = []
    previous: Optional[AssignmentSegment] = None

    for segment in segments:
        evaluation = evaluate_segment(previous, segment, schedule_index, threshold_secs)
        evaluations.append(evaluation)
        previous = segment

        window = evaluation.window
        logging.debug(
            "  avl_time=%s trip=%-4s block=%-4s leeway=%s trip_start=%s trip_end=%s "
            "lat=%s lon=%s -> %s%s",
            segment.first_time.isoformat(),
            trip_label(segment.trip),
            block_label(segment.block_id),
            format_earliness(evaluation.earliness),
            seconds_to_hhmmss(window.start if window else None),
            seconds_to_hhmmss(window.end if window else None),
            segment.lat,
            segment.lon,
            evaluation.decision.value,
            "" if segment.is_resolvable else " (not mapped)",
        )

    return evaluations


# =============================================================================
# GLOBAL RESOLVER
# =============================================================================


class BlockAssignmentResolver:
    """Trip short name → block ID mapping built up over a whole run.

    The most recently accepted block wins. Every block ever accepted for a
    trip that changed block is kept in :attr:`conflicts`, which always holds
    the current mapping value for such trips.
    """

    def __init__(self) -> None:
        self.trip_to_block: dict[str, str] = {}
        self.conflicts: dict[str, set[str]] = {}

    def accept(
        self, trip_short_name: str, block_id: str, service_date: Optional[str] = None
    ) -> bool:
        """Record that *trip_short_name* ran as *block_id*; return True on a conflict."""
        if not isinstance(trip_short_name, str) or not trip_short_name:
            raise ValueError(f"Cannot map non-trip code {trip_short_name!r} to a block.")
        if not block_id:
            raise ValueError(f"Cannot map trip {trip_short_name} to an empty block.")

        previous = self.trip_to_block.get(trip_short_name)
        conflict = previous is not None and previous != block_id
        if conflict:
            blocks = self.conflicts.setdefault(trip_short_name, set())
            blocks.add(block_id)
            blocks.add(previous)
            logging.warning(
                "Mismatched block assignment for trip %s: block was %s but for %s it is %s.",
                trip_short_name,
                previous,
                service_date or "this run",
                block_id,
            )

        self.trip_to_block[trip_short_name] = block_id
        return conflict

    def apply(self, evaluation: SegmentEvaluation, service_date: Optional[str] = None) -> bool:
        """Fold an evaluated segment in if it applies; return True on a conflict."""
        if not evaluation.applies:
            return False
        segment = evaluation.segment
        return self.accept(str(segment.trip), str(segment.block_id), service_date)

    def conflicting_trips(self) -> dict[str, set[str]]:
        """Trips seen with two or more blocks, sorted by trip short name."""
        return {
            trip: set(blocks)
            for trip, blocks in sorted(self.conflicts.items())
            if len(blocks) >= 2
        }


# =============================================================================
# PER-DAY DRIVER
# =============================================================================


def partition_by_vehicle(
    reports: Iterable[LocationReport],
) -> dict[str, list[LocationReport]]:
    """Group reports by vehicle; each list is time-sorted, ties keep feed order."""
    grouped: dict[str, list[LocationReport]] = {}
    for report in reports:
        grouped.setdefault(report.vehicle_id, []).append(report)
    return {
        vehicle_id: sorted(vehicle_reports, key=lambda r: r.time)
        for vehicle_id, vehicle_reports in sorted(grouped.items())
    }


def process_day(
    reports: Sequence[LocationReport],
    schedule_index: Mapping[str, ScheduleWindow],
    resolver: BlockAssignmentResolver,
    service_date: str,
    threshold_secs: int = EARLY_ASSIGNMENT_THRESHOLD_SECS,
) -> DaySummary:
    """Evaluate one service day of reports and fold the results into *resolver*.

    Vehicles are evaluated independently first; a vehicle that fails is logged
    and skipped. The accepted segments are then applied vehicle by vehicle, in
    time order within each vehicle.
    """
    summary = DaySummary(service_date=service_date, reports=len(reports))
    by_vehicle = partition_by_vehicle(reports)
    summary.vehicles = len(by_vehicle)

    evaluated: dict[str, list[SegmentEvaluation]] = {}
    for vehicle_id, vehicle_reports in by_vehicle.items():
        logging.debug("For vehicle_id=%s (%d reports)", vehicle_id, len(vehicle_reports))
        try:
            segments = segment_vehicle_reports(vehicle_reports)
            evaluated[vehicle_id] = evaluate_vehicle_segments(
                segments, schedule_index, threshold_secs
            )
        except Exception:  # noqa: BLE001
            logging.exception("Skipping vehicle %s on %s.", vehicle_id, service_date)
            summary.failed_vehicles.append(vehicle_id)

    for evaluations in evaluated.values():
        for evaluation in evaluations:
            summary.segments += 1
            summary.evaluations.append(evaluation)
            if not evaluation.segment.is_resolvable:
                summary.excluded += 1
            elif evaluation.decision is Decision.REJECT:
                summary.rejected += 1
            else:
                summary.accepted += 1
                if resolver.apply(evaluation, service_date):
                    summary.conflicts += 1

    logging.info(
        "%s: %d reports, %d vehicles, %d segments → %d accepted, %d rejected, "
        "%d not mapped, %d conflicts, %d failed vehicles.",
        service_date,
        summary.reports,
        summary.vehicles,
        summary.segments,
        summary.accepted,
        summary.rejected,
        summary.excluded,
        summary.conflicts,
        len(summary.failed_vehicles),
    )
    return summary


def infer_block_assignments(
    store: AvlReportStore,
    schedule_index: Mapping[str, ScheduleWindow],
    begin: pd.Timestamp,
    number_of_days: int,
    threshold_secs: int = EARLY_ASSIGNMENT_THRESHOLD_SECS,
    resolver: Optional[BlockAssignmentResolver] = None,
) -> tuple[BlockAssignmentResolver, list[DaySummary]]:
    """Replay *number_of_days* service days starting at *begin*, in date order."""
    resolver = resolver if resolver is not None else BlockAssignmentResolver()
    summaries: list[DaySummary] = []

    for day_begin, day_end in day_windows(begin, number_of_days):
        logging.info(
            "Processing data for begin=%s end=%s", day_begin.isoformat(), day_end.isoformat()
        )
        reports = store.reports_between(day_begin, day_end)
        logging.info("Read in %d AVL reports for %s", len(reports), day_begin.date())
        summaries.append(
            process_day(
                reports,
                schedule_index,
                resolver,
                day_begin.date().isoformat(),
                threshold_secs,
            )
        )

    return resolver, summaries


# =============================================================================
# REPORT EMITTER
# =============================================================================


def trip_block_frame(trip_to_block: Mapping[str, str]) -> pd.DataFrame:
    return pd.DataFrame(sorted(trip_to_block.items()), columns=["trip_short_name", "block_id"])


def conflict_frame(conflicts: Mapping[str, set[str]]) -> pd.DataFrame:
    rows = [
        {
            "trip_short_name": trip,
            "block_ids": ";".join(sorted(blocks)),
            "block_count": len(blocks),
        }
        for trip, blocks in sorted(conflicts.items())
        if len(blocks) >= 2
    ]
    return pd.DataFrame(rows, columns=["trip_short_name", "block_ids", "block_count"])


def segment_audit_frame(summaries: Sequence[DaySummary]) -> pd.DataFrame:
    """One row per evaluated segment, for reviewing the heuristic by hand."""
    rows = []
    for summary in summaries:
        for evaluation in summary.evaluations:
            segment = evaluation.segment
            window = evaluation.window
            rows.append(
                {
                    "service_date": summary.service_date,
                    "vehicle_id": segment.vehicle_id,
                    "first_time": segment.first_time.isoformat(),
                    "trip_short_name": trip_label(segment.trip),
                    "block_id": block_label(segment.block_id),
                    "earliness_secs": evaluation.earliness,
                    "trip_start": seconds_to_hhmmss(window.start) if window else "",
                    "trip_end": seconds_to_hhmmss(window.end) if window else "",
                    "decision": evaluation.decision.value,
                    "applied": evaluation.applies,
                    "lat": segment.lat,
                    "lon": segment.lon,
                }
            )
    df = pd.DataFrame(rows, columns=AUDIT_COLUMNS)
    df["earliness_secs"] = df["earliness_secs"].astype("Int64")
    return df


def day_summary_frame(summaries: Sequence[DaySummary]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "service_date": s.service_date,
                "reports": s.reports,
                "vehicles": s.vehicles,
                "segments": s.segments,
                "accepted": s.accepted,
                "rejected": s.rejected,
                "not_mapped": s.excluded,
                "conflicts": s.conflicts,
                "failed_vehicles": ";".join(s.failed_vehicles),
            }
            for s in summaries
        ]
    )


def write_supplemental_trips_file(trip_to_block: Mapping[str, str], path: Path) -> Path:
    """Write ``trip_short_name,block_id`` rows, sorted by trip short name."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df = trip_block_frame(trip_to_block)
    df.to_csv(path, index=False)
    logging.info("Wrote %d trip/block rows → %s", len(df), path.resolve())
    return path


def format_conflict_report(conflicts: Mapping[str, set[str]]) -> list[str]:
    return [
        f"For tripShortName={trip} blocks=[{', '.join(sorted(blocks))}]"
        for trip, blocks in sorted(conflicts.items())
        if len(blocks) >= 2
    ]


def log_conflict_report(conflicts: Mapping[str, set[str]]) -> None:
    lines = format_conflict_report(conflicts)
    logging.info("Trips associated with more than a single block: %d", len(lines))
    for line in lines:
        logging.info(line)


def write_conflict_csv(conflicts: Mapping[str, set[str]], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    df = conflict_frame(conflicts)
    df.to_csv(path, index=False)
    logging.info("Wrote %d conflicting trips → %s", len(df), path.resolve())
    return path


def write_segment_audit(summaries: Sequence[DaySummary], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    df = segment_audit_frame(summaries)
    df.to_csv(path, index=False)
    logging.info("Wrote %d segment audit rows → %s", len(df), path.resolve())
    return path


def _format_sheet(worksheet: Any) -> None:
    """Bold the header row and size each column to its longest value."""
    for cell in worksheet[1]:
        cell.font = Font(bold=True)
    for col_idx, column_cells in enumerate(worksheet.columns, start=1):
        max_length = 0
        for cell in column_cells:
            cell_val = str(cell.value) if cell.value is not None else ""
            max_length = max(max_length, len(cell_val))
        worksheet.column_dimensions[get_column_letter(col_idx)].width = max_length + 2


def write_review_workbook(
    resolver: BlockAssignmentResolver,
    summaries: Sequence[DaySummary],
    path: Path,
    include_segments: bool = False,
) -> Path:
    """Write an XLSX with the trip/block mapping, conflicts and per-day counts.

    Sheets: ``Trip Blocks``, ``Conflicts``, ``Daily Summary`` and, when
    *include_segments* is set, ``Segments``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    sheets = {
        "Trip Blocks": trip_block_frame(resolver.trip_to_block),
        "Conflicts": conflict_frame(resolver.conflicting_trips()),
        "Daily Summary": day_summary_frame(summaries),
    }
    if include_segments:
        sheets["Segments"] = segment_audit_frame(summaries)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            _format_sheet(writer.sheets[sheet_name])

    logging.info("Wrote review workbook → %s", path.resolve())
    return path


# =============================================================================
# MAIN
# =============================================================================


def build_argparser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    p = argparse.ArgumentParser(
        description="Infer the block each GTFS trip ran under from historical AVL assignments."
    )
    p.add_argument("-b", "--begin-date", default=BEGIN_DATE, help="First service day (YYYY-MM-DD).")
    p.add_argument(
        "-n", "--days", type=int, default=NUMBER_OF_DAYS, help="Number of service days to replay."
    )
    p.add_argument("-g", "--gtfs", default=GTFS_FOLDER_PATH, help="Folder holding the GTFS feed.")
    p.add_argument("-a", "--avl", default=AVL_REPORTS_PATH, help="CSV export of AVL reports.")
    p.add_argument(
        "-o",
        "--outdir",
        default=OUTPUT_DIR,
        help="Output folder (default: <gtfs>/supplement).",
    )
    p.add_argument("--timezone", default=TIMEZONE, help="Agency timezone for AVL times.")
    p.add_argument(
        "--early-threshold-min",
        type=int,
        default=EARLY_ASSIGNMENT_THRESHOLD_MIN,
        help="Reject assignments seen this many minutes or more before the trip start.",
    )
    p.add_argument(
        "--no-conflict-csv", action="store_true", help="Do not write block_conflicts.csv."
    )
    p.add_argument(
        "--segment-audit", action="store_true", help="Also write segment_audit.csv."
    )
    p.add_argument(
        "--no-excel", action="store_true", help="Do not write block_assignment_review.xlsx."
    )
    p.add_argument("--log-level", default=LOG_LEVEL, help="DEBUG / INFO / WARNING / ERROR.")
    return p


def main(argv: Optional[Sequence[str]] = None) -> None:
    """End‑to‑end pipeline: load GTFS + AVL, infer blocks, write outputs."""
    args = build_argparser().parse_args(argv)

    gtfs_path = Path(args.gtfs)
    outdir = Path(args.outdir) if args.outdir else gtfs_path / "supplement"

    try:
        begin = parse_begin_date(args.begin_date, args.timezone)
    except (KeyError, ValueError) as exc:
        sys.exit(f"ERROR: invalid begin date {args.begin_date!r} ({exc}).")
    if args.days < 1:
        sys.exit(f"ERROR: --days must be at least 1, got {args.days}.")

    setup_logging(args.log_level.upper(), outdir / LOG_FILENAME)

    schedule_index = load_schedule_index(gtfs_path)
    store = AvlReportStore.from_csv(args.avl, args.timezone)

    resolver, summaries = infer_block_assignments(
        store,
        schedule_index,
        begin,
        args.days,
        threshold_secs=args.early_threshold_min * SECONDS_PER_MINUTE,
    )

    conflicts = resolver.conflicting_trips()
    log_conflict_report(conflicts)

    write_supplemental_trips_file(resolver.trip_to_block, outdir / SUPPLEMENT_TRIPS_FILENAME)
    if WRITE_CONFLICT_CSV and not args.no_conflict_csv:
        write_conflict_csv(conflicts, outdir / CONFLICT_CSV_FILENAME)
    write_audit = WRITE_SEGMENT_AUDIT or args.segment_audit
    if write_audit:
        write_segment_audit(summaries, outdir / SEGMENT_AUDIT_FILENAME)
    if WRITE_REVIEW_WORKBOOK and not args.no_excel:
        write_review_workbook(
            resolver, summaries, outdir / REVIEW_WORKBOOK_FILENAME, include_segments=write_audit
        )


if __name__ == "__main__":
    main()
