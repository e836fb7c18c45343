#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Process-wide state of a single backup pass.

One RunState exists per invocation. The orchestrator mutates it while it
works; the interruption path reads the two in-flight slots
(current output file, current archiver process) to know what to tear down.

Python runs signal handlers on the main thread between bytecodes, so a
plain attribute store is already atomic with respect to the handler. The
slots are still only ever written through publish/clear/take so that the
handler sees either nothing in flight or exactly the one thing in flight.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from drive_manager import ReachableDestination
    from fsarchiver_manager import ArchiverProcess

INTERRUPTED_EXIT_CODE = 130


class Phase(Enum):
    """Steps of the backup state machine."""

    INIT = "init"
    DESTINATION_SELECTION = "destination-selection"
    VALIDATION = "validation"
    PREPARING = "preparing"
    RUNNING = "running"
    POST_CHECK = "post-check"
    PRUNING = "pruning"
    FINALIZING = "finalizing"


class Outcome(Enum):
    """Terminal states of a pass. They decide the notification and exit code."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "error"
    INTERRUPTED = "interrupted"

    @property
    def exit_code(self) -> int:
        return {
            Outcome.SUCCESS: 0,
            Outcome.PARTIAL_FAILURE: 1,
            Outcome.INTERRUPTED: INTERRUPTED_EXIT_CODE,
        }[self]


def format_backup_date(moment: datetime) -> str:
    return moment.strftime("%d.%B.%Y,%H:%M:%S")


@dataclass
class RunState:
    """Everything one pass accumulates, shared with the interruption path."""

    start_time: datetime = field(default_factory=datetime.now)
    started_at: float = field(default_factory=time.monotonic)
    phase: Phase = Phase.INIT
    interrupted: bool = False
    interrupt_signal: Optional[int] = None
    defer_interrupts: bool = False
    finalizing: bool = False
    error_flag: bool = False
    error_log: List[str] = field(default_factory=list)
    selected_destination: Optional["ReachableDestination"] = None
    current_output_file: Optional[Path] = None
    current_archiver: Optional["ArchiverProcess"] = None

    # --- Errors ---

    def record_error(self, message: str) -> None:
        """Flags the run and appends `message` to the error report."""
        self.error_flag = True
        self.error_log.append(message)
        logging.error(message)

    @property
    def error_details(self) -> str:
        return "\n".join(self.error_log)

    # --- In-flight slots ---

    def publish_output(self, path: Path) -> None:
        self.current_output_file = Path(path)

    def clear_output(self) -> None:
        self.current_output_file = None

    def take_output(self) -> Optional[Path]:
        """Removes and returns the in-flight output file, if any."""
        path, self.current_output_file = self.current_output_file, None
        return path

    def publish_archiver(self, process: "ArchiverProcess") -> None:
        self.current_archiver = process

    def clear_archiver(self) -> None:
        self.current_archiver = None

    def take_archiver(self) -> Optional["ArchiverProcess"]:
        """Removes and returns the in-flight archiver process, if any."""
        process, self.current_archiver = self.current_archiver, None
        return process

    # --- Timing and outcome ---

    def elapsed(self) -> Tuple[int, int]:
        """Runtime so far as (minutes, seconds)."""
        seconds = int(time.monotonic() - self.started_at)
        return seconds // 60, seconds % 60

    @property
    def backup_date(self) -> str:
        return format_backup_date(self.start_time)

    def outcome(self) -> Outcome:
        if self.interrupted:
            return Outcome.INTERRUPTED
        if self.error_flag:
            return Outcome.PARTIAL_FAILURE
        return Outcome.SUCCESS
