"""
Unit tests for interrupt_handler.py.

The interruption path is exercised against a real `sleep` child so that
termination of the in-flight process is observed, not assumed.
"""

import os
import signal

import pytest
import sh

from backup_errors import BackupInterrupted
from backup_log import BackupLog
from conftest import FakeCommand, FakeInspector, RecordingNotifier, error_return_code
from fsarchiver_manager import ArchiverProcess
from interrupt_handler import InterruptionController
from mail_notifier import NotificationVariant
from mount_cleanup import TemporaryMountSweeper
from run_state import INTERRUPTED_EXIT_CODE, Outcome, RunState


@pytest.fixture
def state():
    return RunState()


@pytest.fixture
def controller(tmp_path, state):
    backup_log = BackupLog(tmp_path / "bkp.log")
    backup_log.reset()
    sweeper = TemporaryMountSweeper(
        FakeInspector(), str(tmp_path / "fsa"), umount=FakeCommand(), settle_delay=0
    )
    return InterruptionController(state, sweeper, backup_log, RecordingNotifier(), grace=2)


class TestHandleSignal:
    """Test the signal handler itself."""

    def test_marks_state_and_raises(self, controller, state):
        with pytest.raises(BackupInterrupted) as excinfo:
            controller.handle_signal(signal.SIGTERM, None)

        assert excinfo.value.signum == signal.SIGTERM
        assert state.interrupted
        assert state.interrupt_signal == signal.SIGTERM
        assert state.outcome() is Outcome.INTERRUPTED

    def test_second_signal_is_ignored(self, controller, state):
        with pytest.raises(BackupInterrupted):
            controller.handle_signal(signal.SIGINT, None)

        controller.handle_signal(signal.SIGINT, None)

        assert len(state.error_log) == 1

    def test_signals_during_finalizing_are_ignored(self, controller, state):
        state.finalizing = True

        controller.handle_signal(signal.SIGHUP, None)

        assert not state.interrupted

    def test_deferred_signal_only_marks_state(self, controller, state):
        state.defer_interrupts = True

        controller.handle_signal(signal.SIGTERM, None)

        assert state.interrupted

    def test_arm_and_disarm_restore_handlers(self, controller):
        previous = signal.getsignal(signal.SIGTERM)

        controller.arm()
        assert signal.getsignal(signal.SIGTERM) == controller.handle_signal
        controller.disarm()

        assert signal.getsignal(signal.SIGTERM) == previous


class TestCleanup:
    """Test the teardown sequence after an interruption."""

    def test_live_process_and_partial_file_are_cleaned_up(self, tmp_path, controller, state):
        state.record_error("fsarchiver exit code 1 for device /dev/sda1")
        partial = tmp_path / "backup-root-20250101-000000.fsa"
        partial.write_bytes(b"partial")
        process = ArchiverProcess(sh.sleep(30, _bg=True, _bg_exc=False))
        pid = process.pid
        state.publish_output(partial)
        state.publish_archiver(process)

        with pytest.raises(BackupInterrupted):
            controller.handle_signal(signal.SIGTERM, None)
        code = controller.cleanup()

        assert code == INTERRUPTED_EXIT_CODE
        assert not partial.exists()
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
        assert state.outcome() is Outcome.INTERRUPTED
        assert state.current_output_file is None
        assert state.current_archiver is None

    def test_marker_and_single_notification(self, controller, state):
        with pytest.raises(BackupInterrupted):
            controller.handle_signal(signal.SIGINT, None)
        controller.cleanup()

        assert controller.backup_log.tail(1)[0].startswith("Backup interrupted: ")
        [payload] = controller.notifier.payloads
        assert payload.variant is NotificationVariant.INTERRUPTED
        assert payload.backup_date == state.backup_date

    def test_nothing_in_flight(self, controller, state):
        state.interrupted = True

        assert controller.cleanup() == INTERRUPTED_EXIT_CODE

    def test_failing_mount_query_still_notifies(self, controller, state):
        def findmnt_failed(prefix_path):
            raise error_return_code(32, "findmnt")

        controller.sweeper.inspector.list_temporary_mounts_under = findmnt_failed
        state.interrupted = True

        assert controller.cleanup() == INTERRUPTED_EXIT_CODE
        assert "Temporary mounts could not be checked" in state.error_details
        assert len(controller.notifier.payloads) == 1
