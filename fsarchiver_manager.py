#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Provides tools for running fsarchiver and judging its results.

This module contains:
- FsArchiverManager: builds and launches `fsarchiver savefs` through the
  'sh' library, streaming its output into the durable backup log.
- ArchiverProcess: a handle on one running archiver, used by the
  orchestrator to wait for it and by the interruption path to stop it.
- ArchiveChecker: the post-job verdict (log tail scan, output file checks).
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import re
import signal
import sys
from pathlib import Path
from typing import IO, List, Optional, Sequence

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_log import BackupLog

DEFAULT_TERMINATE_GRACE = 2.0

ERROR_KEYWORDS = re.compile(r"\b(cannot|warning|error|errno|errors detected)\b", re.IGNORECASE)
ERROR_SUMMARY_LINE = re.compile(r"files with errors", re.IGNORECASE)
ERROR_COUNTS = re.compile(
    r"regfiles=(\d+), directories=(\d+), symlinks=(\d+), hardlinks=(\d+), specials=(\d+)"
)


class ArchiverProcess:
    """Handle on one background fsarchiver invocation."""

    def __init__(self, running):
        self._running = running

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._running, "pid", None)

    def wait(self) -> int:
        """Blocks until the archiver exits and returns its exit code."""
        try:
            self._running.wait()
        except sh.ErrorReturnCode as e:
            return e.exit_code
        return 0

    def stop(self, grace: float = DEFAULT_TERMINATE_GRACE) -> None:
        """Asks the archiver to terminate, then kills it if it is still alive after `grace`."""
        logging.warning(f"Terminating fsarchiver process (PID: {self.pid})...")
        try:
            self._running.signal(signal.SIGTERM)
        except OSError:
            # Already gone.
            return
        try:
            self._running.wait(timeout=grace)
        except sh.TimeoutException:
            logging.warning("Force terminating fsarchiver process...")
            try:
                self._running.signal(signal.SIGKILL)
            except OSError:
                return
            try:
                self._running.wait()
            except sh.ErrorReturnCode:
                pass
        except sh.ErrorReturnCode:
            # It exited from SIGTERM; a non-zero status is expected.
            pass


class FsArchiverManager:
    """Launches `fsarchiver savefs` for one device into one archive file."""

    def __init__(self, fsarchiver=None, threads: Optional[int] = None, echo: bool = True):
        """
        Args:
            fsarchiver: Optional pre-built command object; looked up on PATH
                at first use.
            threads: Compression threads; defaults to the CPU count.
            echo: Also copy the archiver output to stdout.
        """
        self._fsarchiver = fsarchiver
        self.threads = threads or os.cpu_count() or 1
        self.echo = echo

    @property
    def fsarchiver(self):
        if self._fsarchiver is None:
            self._fsarchiver = sh.Command("fsarchiver")
        return self._fsarchiver

    def build_arguments(
        self,
        device: str,
        output_file: Path,
        exclude_globs: Sequence[str],
        compression_level: int,
        passphrase: Optional[str] = None,
    ) -> List[str]:
        args = [f"--exclude={pattern}" for pattern in exclude_globs]
        args += ["-o", "-v", "-A", f"-j{self.threads}", f"-Z{compression_level}"]
        if passphrase:
            args += ["-c", passphrase]
        args += ["savefs", str(output_file), str(device)]
        return args

    def start(
        self,
        device: str,
        output_file: Path,
        exclude_globs: Sequence[str],
        compression_level: int,
        passphrase: Optional[str],
        sink: IO[str],
    ) -> ArchiverProcess:
        """Starts the archiver in the background and returns its handle."""
        args = self.build_arguments(
            device, output_file, exclude_globs, compression_level, passphrase
        )
        shown = ["***" if passphrase and arg == passphrase else arg for arg in args]
        logging.info(
            f"Running command: fsarchiver {' '.join(a for a in shown if not a.startswith('--exclude='))}"
            f" ({len(exclude_globs)} exclusions)"
        )

        def _on_output(line: str) -> None:
            if sink.closed:
                return
            sink.write(line if line.endswith("\n") else line + "\n")
            if self.echo:
                sys.stdout.write(line if line.endswith("\n") else line + "\n")

        running = self.fsarchiver(
            *args,
            _bg=True,
            _bg_exc=False,
            _out=_on_output,
            _err_to_out=True,
        )
        return ArchiverProcess(running)


class ArchiveChecker:
    """Decides whether one archiver run produced a usable archive."""

    def __init__(self, min_size: int = 1024 * 1024, tail_lines: int = 5):
        self.min_size = min_size
        self.tail_lines = tail_lines

    def scan_log(self, backup_log: BackupLog, device: str) -> List[str]:
        """Looks for error keywords and non-zero error counts in the log tail."""
        relevant = [
            line
            for line in backup_log.tail(self.tail_lines)
            if ERROR_SUMMARY_LINE.search(line) or ERROR_KEYWORDS.search(line)
        ]
        if not relevant:
            return []

        report = "\n".join(relevant)
        if any(ERROR_KEYWORDS.search(line) for line in relevant):
            return [f"Errors detected in backup of [ {device} ]:\n{report}"]

        for line in relevant:
            counts = ERROR_COUNTS.search(line)
            if counts and any(int(value) != 0 for value in counts.groups()):
                return [f"Errors detected in backup of [ {device} ]:\n{report}"]
        return []

    def check_output(self, output_file: Path) -> List[str]:
        """Verifies that the archive exists and is not suspiciously small."""
        output_file = Path(output_file)
        if not output_file.is_file():
            logging.error(f"✗ Backup file not found: {output_file}")
            return [f"Backup file was not created: {output_file}"]
        try:
            size = output_file.stat().st_size
        except OSError:
            return [f"Could not determine backup file size: {output_file}"]
        if size < self.min_size:
            logging.error(f"✗ Backup file too small: {output_file} ({size // 1024} KB)")
            return [f"Backup file is too small ({size // 1024} KB): {output_file}"]

        logging.info(f"✓ Backup file created: {output_file.name} ({size // 1024 // 1024} MB)")
        return []

    def check(self, backup_log: BackupLog, device: str, output_file: Path) -> List[str]:
        errors = self.scan_log(backup_log, device) + self.check_output(output_file)
        if errors:
            logging.error(f"✗ Backup of {device} failed")
        else:
            logging.info(f"✓ Backup of {device} successful")
        return errors
