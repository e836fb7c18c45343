#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
The durable backup log: a plain text file that receives the start marker,
the raw output of every archiver run and, if it happens, the interruption
marker. The post-job check reads its last lines back.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import IO, List

# --- LOCAL APPLICATION IMPORTS ---
from run_state import format_backup_date


class BackupLog:
    """Append-only text sink for archiver output and run markers."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def reset(self) -> None:
        """Starts a fresh log for this pass."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")

    def write(self, text: str) -> None:
        try:
            with open(self.path, "a") as f:
                f.write(text if text.endswith("\n") else text + "\n")
        except OSError as e:
            logging.error(f"Could not write to backup log {self.path}: {e}")

    def write_start_marker(self, moment: datetime) -> None:
        self.write(f"Backup started: {format_backup_date(moment)}")

    def write_interruption_marker(self, moment: datetime) -> None:
        self.write(f"Backup interrupted: {format_backup_date(moment)}")

    def open_sink(self) -> IO[str]:
        """Opens the log for streaming, line-buffered, in append mode."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return open(self.path, "a", buffering=1)

    def tail(self, lines: int = 5) -> List[str]:
        """Returns the last `lines` lines of the log."""
        if not self.path.exists():
            return []
        with open(self.path, "r", errors="replace") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
