#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Orchestrates one fsarchiver backup pass across all configured jobs.

This module manages the high-level backup workflow:
1. Sweeps leftover fsarchiver mounts and resolves every job's source device.
2. Finds the reachable destinations and picks the most stale one.
3. Validates the chosen destination (reachable, writable, not a source).
4. Runs fsarchiver for each job in name order, checks the result and
   prunes old versions of jobs that succeeded.
5. Sends exactly one notification and returns the process exit code.

A termination signal at any point after the handlers are armed unwinds the
pass through BackupInterrupted; InterruptionController.cleanup() then tears
down whatever was in flight.

NOTE: Like the other high-level orchestrators, this file does not run any
      command itself. Shell work is delegated to the manager classes; only
      their sh exceptions are caught here.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
from datetime import datetime
from typing import List, Optional, Union

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_config import BackupJob, Config
from backup_errors import (
    BackupError,
    BackupInterrupted,
    NotMountedError,
    PartialCleanupError,
    SourceResolutionError,
)
from backup_log import BackupLog
from destination_validator import DestinationValidator
from drive_manager import CandidateDriveResolver, DriveSelector, ReachableDestination
from fsarchiver_manager import ArchiveChecker, FsArchiverManager
from interrupt_handler import InterruptionController
from mail_notifier import MailNotifier, NotificationPayload, NotificationVariant
from mount_cleanup import TemporaryMountSweeper
from mount_inspector import MountInspector
from run_state import Outcome, Phase, RunState
from version_store import VersionStore

OUTCOME_VARIANTS = {
    Outcome.SUCCESS: NotificationVariant.SUCCESS,
    Outcome.PARTIAL_FAILURE: NotificationVariant.ERROR,
    Outcome.INTERRUPTED: NotificationVariant.INTERRUPTED,
}


def describe_failure(error: Exception) -> str:
    """One-line description of an error for the log and the notification."""
    if isinstance(error, sh.ErrorReturnCode):
        return f"Command '{error.full_cmd}' failed with exit code {error.exit_code}"
    if isinstance(error, sh.CommandNotFound):
        return f"Required command not found: {error}"
    return str(error)


class BackupOrchestrator:
    """Coordinates the entire fsarchiver backup process."""

    def __init__(
        self,
        config: Config,
        inspector: Optional[MountInspector] = None,
        sweeper: Optional[TemporaryMountSweeper] = None,
        resolver: Optional[CandidateDriveResolver] = None,
        selector: Optional[DriveSelector] = None,
        validator: Optional[DestinationValidator] = None,
        version_store: Optional[VersionStore] = None,
        archiver: Optional[FsArchiverManager] = None,
        checker: Optional[ArchiveChecker] = None,
        backup_log: Optional[BackupLog] = None,
        notifier: Optional[MailNotifier] = None,
        run_state: Optional[RunState] = None,
        interrupts: Optional[InterruptionController] = None,
    ):
        """Initializes the orchestrator with configuration and service managers."""
        self.config = config
        self.inspector = inspector or MountInspector()
        self.sweeper = sweeper or TemporaryMountSweeper(self.inspector, config.temp_mount_root)
        self.resolver = resolver or CandidateDriveResolver(self.inspector, config.temp_mount_root)
        self.version_store = version_store or VersionStore()
        self.selector = selector or DriveSelector(self.version_store)
        self.validator = validator or DestinationValidator(
            self.inspector, timeout=config.probe_timeout
        )
        self.archiver = archiver or FsArchiverManager()
        self.checker = checker or ArchiveChecker(min_size=config.min_backup_size)
        self.backup_log = backup_log or BackupLog(config.backup_log)
        self.notifier = notifier or MailNotifier(config.mail)
        self.state = run_state or RunState()
        self.interrupts = interrupts or InterruptionController(
            self.state, self.sweeper, self.backup_log, self.notifier
        )

    def run(self) -> int:
        """Executes the entire backup pass and returns the process exit code."""
        logging.info("====== fsarchiver Backup Process Starting ======")
        self.interrupts.arm()
        try:
            try:
                self._run_pass()
                return self._finalize()
            except BackupInterrupted:
                raise
            except (BackupError, sh.ErrorReturnCode, sh.CommandNotFound) as e:
                return self._abort(e)
        except BackupInterrupted:
            return self.interrupts.cleanup()
        finally:
            self.interrupts.disarm()

    # --- Pass steps ---

    def _run_pass(self) -> None:
        logging.info("--> Step 1: Checking for leftover fsarchiver mounts.")
        self._sweep_before_run()

        logging.info("--> Step 2: Resolving job sources to devices.")
        jobs = self._resolve_jobs()
        passphrase = self.config.load_passphrase()

        logging.info("--> Step 3: Selecting the backup destination.")
        self.state.phase = Phase.DESTINATION_SELECTION
        candidates = self.resolver.resolve(self.config.destinations)
        destination = self.selector.select(candidates, jobs)
        self.state.selected_destination = destination

        logging.info("--> Step 4: Validating the backup destination.")
        self.state.phase = Phase.VALIDATION
        self.validator.validate(destination, jobs)

        self.backup_log.reset()
        self.backup_log.write_start_marker(self.state.start_time)

        logging.info(f"--> Step 5: Backing up {len(jobs)} job(s) to {destination.path}.")
        for job in sorted(jobs, key=lambda j: j.name):
            if self.state.interrupted:
                break
            self._run_job(job, destination, passphrase)

    def _sweep_before_run(self) -> None:
        try:
            self.sweeper.sweep(force_unmount=True)
        except PartialCleanupError as e:
            logging.warning(f"Leftover fsarchiver mounts could not be removed: {e}")
            logging.warning("Continuing anyway; results of this run may be affected.")
        except sh.ErrorReturnCode as e:
            logging.warning(f"Leftover fsarchiver mounts could not be checked: {describe_failure(e)}")
            logging.warning("Continuing anyway; results of this run may be affected.")

    def _resolve_jobs(self) -> List[BackupJob]:
        """
        Fills in the backing device of every job.

        Raises:
            SourceResolutionError: Listing every source that could not be resolved.
        """
        self.state.phase = Phase.INIT
        resolved: List[BackupJob] = []
        problems: List[str] = []
        for job in self.config.jobs:
            if job.is_raw_device:
                logging.info(f"✓ {job.name}: using device {job.source} directly")
                resolved.append(job.with_device(job.source))
                continue
            try:
                device = self.inspector.resolve_device_for_mount_point(job.source)
            except NotMountedError:
                problems.append(
                    f"Mount point {job.source} of job {job.name} does not exist "
                    "or is not mounted"
                )
                continue
            logging.info(f"✓ {job.name}: {job.source} is on {device}")
            resolved.append(job.with_device(device))

        if problems:
            raise SourceResolutionError("\n".join(problems))
        return resolved

    def _run_job(
        self, job: BackupJob, destination: ReachableDestination, passphrase: Optional[str]
    ) -> None:
        """Runs, checks and prunes one job. Per-job failures are recorded, not raised."""
        device = job.resolved_device
        logging.info(f"Starting backup: {job.name} ({device})")

        self.state.phase = Phase.PREPARING
        output = destination.path / self.version_store.make_name(job.base_name, datetime.now())
        self.state.publish_output(output)
        logging.info(f"Backup file: {output}")
        self.backup_log.write(f"Backing up device {device} ({job.name})")
        self.backup_log.write(self.inspector.describe_device(device))

        self.state.phase = Phase.RUNNING
        with self.backup_log.open_sink() as sink:
            self.state.defer_interrupts = True
            try:
                process = self.archiver.start(
                    device,
                    output,
                    self.config.exclude_paths,
                    self.config.compression_level,
                    passphrase,
                    sink,
                )
                self.state.publish_archiver(process)
            finally:
                self.state.defer_interrupts = False
            self._raise_if_interrupted()

            exit_code = process.wait()
            self.state.clear_archiver()
        self._raise_if_interrupted()

        self.state.phase = Phase.POST_CHECK
        job_errors: List[str] = []
        if exit_code != 0:
            job_errors.append(f"fsarchiver exit code {exit_code} for device {device}")
        job_errors += self.checker.check(self.backup_log, device, output)
        for message in job_errors:
            self.state.record_error(message)

        self._sweep_after_job(device)
        self.state.clear_output()

        if job_errors:
            logging.error(f"✗ Backup of {job.name} failed, old versions are kept")
            return
        if self.state.interrupted:
            return

        self.state.phase = Phase.PRUNING
        _deleted, prune_errors = self.version_store.prune_to_retain(
            destination.path, job.base_name, self.config.versions_to_keep
        )
        for message in prune_errors:
            self.state.record_error(message)
        logging.info(f"✓ Backup of {job.name} complete")

    def _sweep_after_job(self, device: str) -> None:
        try:
            self.sweeper.sweep(force_unmount=True)
        except PartialCleanupError as e:
            self.state.record_error(
                f"Warning: fsarchiver mount points after backup of {device} "
                f"could not be completely removed: {', '.join(e.residual)}"
            )
        except sh.ErrorReturnCode as e:
            self.state.record_error(
                f"Warning: fsarchiver mount points after backup of {device} "
                f"could not be checked: {describe_failure(e)}"
            )

    def _raise_if_interrupted(self) -> None:
        """Re-raises a signal that arrived while interruption was deferred."""
        if self.state.interrupted:
            raise BackupInterrupted(self.state.interrupt_signal or 0)

    # --- Terminal states ---

    def _discard_in_flight(self) -> None:
        """Stops a still running archiver and deletes its incomplete output."""
        process = self.state.take_archiver()
        if process is not None:
            process.stop(self.interrupts.grace)
        output = self.state.take_output()
        if output is not None and output.exists():
            logging.warning(f"Removing incomplete backup file: {output.name}")
            try:
                output.unlink()
            except OSError as e:
                self.state.record_error(f"Error removing incomplete backup file: {output} ({e})")

    def _notify(self, variant: NotificationVariant) -> None:
        minutes, seconds = self.state.elapsed()
        self.notifier.notify(
            NotificationPayload(
                variant=variant,
                backup_date=self.state.backup_date,
                runtime_minutes=minutes,
                runtime_seconds=seconds,
                error_details=self.state.error_details or None,
            )
        )

    def _abort(self, error: Union[BackupError, sh.ErrorReturnCode, sh.CommandNotFound]) -> int:
        """
        Reports an error that stopped the pass: a fatal configuration or
        validation error, or an OS tool failing unexpectedly mid-job.
        """
        self.state.finalizing = True
        self.state.phase = Phase.FINALIZING
        logging.critical("--- BACKUP ABORTED WITH AN UNRECOVERABLE ERROR ---")
        self.state.record_error(describe_failure(error))
        self._discard_in_flight()
        self._notify(NotificationVariant.ERROR)
        return Outcome.PARTIAL_FAILURE.exit_code

    def _finalize(self) -> int:
        """Determines the terminal state and sends the single notification."""
        if self.state.interrupted:
            return self.interrupts.cleanup()

        self.state.finalizing = True
        self.state.phase = Phase.FINALIZING
        outcome = self.state.outcome()
        self._notify(OUTCOME_VARIANTS[outcome])

        minutes, seconds = self.state.elapsed()
        if outcome is Outcome.SUCCESS:
            logging.info("====== fsarchiver Backup Process Finished Successfully ======")
        else:
            logging.error("====== fsarchiver Backup Process Finished With Errors ======")
            for message in self.state.error_log:
                logging.error(f"  - {message}")
        logging.info(f"Runtime: {minutes} minutes and {seconds} seconds")
        return outcome.exit_code
