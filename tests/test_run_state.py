"""
Unit tests for run_state.py and backup_log.py.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, get_type_hints

from backup_log import BackupLog
from drive_manager import ReachableDestination
from fsarchiver_manager import ArchiverProcess
from run_state import Outcome, RunState, format_backup_date


class TestOutcome:
    """Test terminal state precedence."""

    def test_success(self):
        state = RunState()

        assert state.outcome() is Outcome.SUCCESS
        assert state.outcome().exit_code == 0

    def test_errors_give_partial_failure(self):
        state = RunState()
        state.record_error("something failed")

        assert state.outcome() is Outcome.PARTIAL_FAILURE
        assert state.outcome().exit_code == 1
        assert state.error_details == "something failed"

    def test_interruption_takes_precedence(self):
        state = RunState()
        state.record_error("something failed")
        state.interrupted = True

        assert state.outcome() is Outcome.INTERRUPTED
        assert state.outcome().exit_code == 130


class TestSlots:
    """Test the in-flight output and archiver slots."""

    def test_take_empties_the_slot(self):
        state = RunState()
        state.publish_output("/media/b/x.fsa")

        assert state.take_output() == Path("/media/b/x.fsa")
        assert state.take_output() is None

    def test_clear(self):
        state = RunState()
        state.publish_archiver(object())
        state.clear_archiver()

        assert state.take_archiver() is None

    def test_slot_annotations_name_the_in_flight_types(self):
        hints = get_type_hints(
            RunState,
            localns={
                "ReachableDestination": ReachableDestination,
                "ArchiverProcess": ArchiverProcess,
            },
        )

        assert hints["selected_destination"] == Optional[ReachableDestination]
        assert hints["current_archiver"] == Optional[ArchiverProcess]
        assert hints["current_output_file"] == Optional[Path]


class TestBackupDate:
    def test_format(self):
        assert format_backup_date(datetime(2025, 3, 7, 4, 5, 6)) == "07.March.2025,04:05:06"


class TestBackupLog:
    """Test the durable log file."""

    def test_reset_truncates(self, tmp_path):
        log = BackupLog(tmp_path / "sub" / "bkp.log")
        log.reset()
        log.write("old")
        log.reset()

        assert log.tail() == []

    def test_tail_returns_last_lines(self, tmp_path):
        log = BackupLog(tmp_path / "bkp.log")
        log.reset()
        for i in range(10):
            log.write(f"line {i}")

        assert log.tail(3) == ["line 7", "line 8", "line 9"]

    def test_markers(self, tmp_path):
        log = BackupLog(tmp_path / "bkp.log")
        log.reset()
        moment = datetime(2025, 1, 2, 3, 4, 5)
        log.write_start_marker(moment)
        log.write_interruption_marker(moment)

        assert log.tail() == [
            "Backup started: 02.January.2025,03:04:05",
            "Backup interrupted: 02.January.2025,03:04:05",
        ]

    def test_missing_log_has_no_tail(self, tmp_path):
        assert BackupLog(tmp_path / "none.log").tail() == []
