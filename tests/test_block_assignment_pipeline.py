import shutil
import sys
from pathlib import Path
from unittest.mock import patch

import pandas as pd
import pytest

from scripts.avl_tools import block_assignment_inference

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def gtfs_dir(tmp_path: Path) -> Path:
    """Copy of the GTFS fixture so the default supplement folder lands in tmp_path."""
    target = tmp_path / "gtfs"
    shutil.copytree(FIXTURES / "gtfs_blocks", target)
    return target


def _run(argv: list[str]) -> None:
    with patch.object(sys, "argv", ["block_assignment_inference.py", *argv]):
        block_assignment_inference.main()


def test_two_day_run_writes_supplement_and_conflicts(gtfs_dir: Path) -> None:
    """Replay 2014-03-10 and 2014-03-11 from the AVL fixture.

    Day 1: vehicle 101 picks up block 05 for trip 12 while still blockless, so
    the early sighting counts; its 08:35 switch to trip 13 is 25 minutes early
    after running block 05 and is rejected. Vehicle 202 runs trip 20 on block 07.
    Day 2: vehicle 101 runs trip 20 on block 08 (conflict, newest wins) and an
    unscheduled trip 77. The 2014-03-12 report is outside the window.
    """
    _run(
        [
            "--gtfs",
            str(gtfs_dir),
            "--avl",
            str(FIXTURES / "avl_reports.csv"),
            "--begin-date",
            "2014-03-10",
            "--days",
            "2",
            "--segment-audit",
        ]
    )

    outdir = gtfs_dir / "supplement"
    trips = pd.read_csv(outdir / "trips.txt", dtype=str)
    assert trips.values.tolist() == [["12", "05"], ["20", "08"], ["77", "08"]]

    conflicts = pd.read_csv(outdir / "block_conflicts.csv", dtype=str)
    assert conflicts.values.tolist() == [["20", "07;08", "2"]]

    audit = pd.read_csv(outdir / "segment_audit.csv", dtype=str)
    assert len(audit) == 9
    assert audit["service_date"].value_counts().to_dict() == {"2014-03-10": 6, "2014-03-11": 3}
    rejected = audit[audit["decision"] == "reject"]
    assert rejected["trip_short_name"].tolist() == ["13"]
    assert rejected["earliness_secs"].tolist() == ["1500"]
    assert set(audit.loc[audit["applied"] == "True", "trip_short_name"]) == {"12", "20", "77"}
    assert "9999" not in set(trips["trip_short_name"])

    workbook = pd.read_excel(outdir / "block_assignment_review.xlsx", sheet_name=None, dtype=str)
    assert list(workbook) == ["Trip Blocks", "Conflicts", "Daily Summary", "Segments"]
    assert workbook["Trip Blocks"].values.tolist() == trips.values.tolist()
    assert workbook["Daily Summary"]["accepted"].tolist() == ["2", "2"]
    assert workbook["Daily Summary"]["rejected"].tolist() == ["1", "0"]

    assert (outdir / "block_assignment_inference.log").exists()


def test_outdir_and_threshold_overrides(gtfs_dir: Path, tmp_path: Path) -> None:
    """A 30 minute threshold lets the 25 minute early trip 13 assignment through."""
    outdir = tmp_path / "out"
    _run(
        [
            "--gtfs",
            str(gtfs_dir),
            "--avl",
            str(FIXTURES / "avl_reports.csv"),
            "--outdir",
            str(outdir),
            "--begin-date",
            "2014-03-10",
            "--early-threshold-min",
            "30",
            "--no-conflict-csv",
            "--no-excel",
        ]
    )

    trips = pd.read_csv(outdir / "trips.txt", dtype=str)
    assert trips.values.tolist() == [["12", "05"], ["13", "05"], ["20", "07"]]
    assert not (outdir / "block_conflicts.csv").exists()
    assert not (outdir / "segment_audit.csv").exists()
    assert not (outdir / "block_assignment_review.xlsx").exists()


@pytest.mark.parametrize(
    "argv",
    [["--begin-date", "not-a-date"], ["--begin-date", "2014-03-10", "--days", "0"]],
)
def test_bad_run_window_is_fatal(gtfs_dir: Path, tmp_path: Path, argv: list[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        _run(
            [
                "--gtfs",
                str(gtfs_dir),
                "--avl",
                str(FIXTURES / "avl_reports.csv"),
                "--outdir",
                str(tmp_path / "out"),
                *argv,
            ]
        )
    assert "ERROR" in str(excinfo.value.code)
    assert not (tmp_path / "out").exists()
    assert not (gtfs_dir / "supplement").exists()
