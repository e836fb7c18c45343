#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Handling of SIGINT, SIGTERM and SIGHUP during a backup pass.

The signal handler itself does the minimum: it marks the run as
interrupted and raises BackupInterrupted, which unwinds the orchestrator
out of whatever it was waiting on. The orchestrator then calls cleanup(),
which tears down the in-flight work in a fixed order:

1. stop the running archiver (SIGTERM, then SIGKILL after a grace period);
2. delete the partial archive file;
3. force-sweep the archiver's temporary mounts;
4. write the interruption marker to the durable log;
5. send the "interrupted" notification with the runtime so far;
6. hand back the exit status reserved for interruptions.

Further signals during cleanup are logged and otherwise ignored.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import signal
from datetime import datetime
from typing import Dict, Sequence

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_errors import BackupInterrupted, PartialCleanupError
from backup_log import BackupLog
from fsarchiver_manager import DEFAULT_TERMINATE_GRACE
from mail_notifier import MailNotifier, NotificationPayload, NotificationVariant
from mount_cleanup import TemporaryMountSweeper
from run_state import INTERRUPTED_EXIT_CODE, RunState

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class InterruptionController:
    """Arms the termination-signal handlers and performs interruption cleanup."""

    def __init__(
        self,
        run_state: RunState,
        sweeper: TemporaryMountSweeper,
        backup_log: BackupLog,
        notifier: MailNotifier,
        grace: float = DEFAULT_TERMINATE_GRACE,
        signals: Sequence[int] = HANDLED_SIGNALS,
    ):
        self.run_state = run_state
        self.sweeper = sweeper
        self.backup_log = backup_log
        self.notifier = notifier
        self.grace = grace
        self.signals = tuple(signals)
        self._previous: Dict[int, object] = {}

    def arm(self) -> None:
        """Registers the handler for every termination signal."""
        for signum in self.signals:
            self._previous[signum] = signal.signal(signum, self.handle_signal)

    def disarm(self) -> None:
        """Restores the handlers that were active before arm()."""
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()

    def handle_signal(self, signum, frame) -> None:
        if self.run_state.interrupted:
            logging.warning(f"Signal {signum} received while already shutting down. Ignoring.")
            return
        if self.run_state.finalizing:
            logging.warning(f"Signal {signum} received while finishing the run. Ignoring.")
            return

        logging.warning("Backup interruption detected...")
        self.run_state.interrupted = True
        self.run_state.interrupt_signal = signum
        self.run_state.record_error(
            "Backup was interrupted by user intervention or system signal."
        )
        if self.run_state.defer_interrupts:
            # The orchestrator re-raises once the archiver handle is published.
            return
        raise BackupInterrupted(signum)

    def cleanup(self) -> int:
        """Tears down the in-flight job and reports the interruption. Returns the exit code."""
        self.run_state.interrupted = True

        process = self.run_state.take_archiver()
        if process is not None:
            process.stop(self.grace)

        output = self.run_state.take_output()
        if output is not None and output.exists():
            logging.warning(f"Removing incomplete backup file: {output.name}")
            try:
                output.unlink()
                logging.info("✓ Incomplete backup file removed")
            except OSError as e:
                self.run_state.record_error(
                    f"Error removing incomplete backup file: {output} ({e})"
                )

        logging.warning("Cleaning up fsarchiver mount points after interruption...")
        try:
            self.sweeper.sweep(force_unmount=True)
        except PartialCleanupError as e:
            self.run_state.record_error(str(e))
        except sh.ErrorReturnCode as e:
            self.run_state.record_error(
                f"Temporary mounts could not be checked: '{e.full_cmd}' exited with {e.exit_code}"
            )

        self.backup_log.write_interruption_marker(datetime.now())

        minutes, seconds = self.run_state.elapsed()
        self.notifier.notify(
            NotificationPayload(
                variant=NotificationVariant.INTERRUPTED,
                backup_date=self.run_state.backup_date,
                runtime_minutes=minutes,
                runtime_seconds=seconds,
                error_details=self.run_state.error_details,
            )
        )

        logging.error("=" * 40)
        logging.error("BACKUP WAS INTERRUPTED")
        logging.error(f"Runtime: {minutes} minutes and {seconds} seconds")
        logging.error("=" * 40)
        return INTERRUPTED_EXIT_CODE
