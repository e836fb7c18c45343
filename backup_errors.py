#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Exception hierarchy for the backup engine.

Fatal errors abort a pass before any job runs. Per-job problems are never
raised; they are recorded on the RunState instead. BackupInterrupted is
raised from the signal handler to unwind the main path.
"""

from typing import List, Sequence


class BackupError(Exception):
    """Base class for all backup engine errors."""


class FatalBackupError(BackupError):
    """An error that aborts the whole pass before any job executes."""


class ConfigError(FatalBackupError, ValueError):
    """The configuration (.env or YAML plan) is missing or invalid."""


class NotMountedError(BackupError):
    """A path expected to be a mount point is not mounted."""


class SourceResolutionError(FatalBackupError):
    """A job source could not be resolved to a device."""


class NoDestinationAvailableError(FatalBackupError):
    """None of the configured destinations is currently reachable."""


class UnsafeDestinationError(FatalBackupError):
    """The destination lives on the same volume as one of the sources."""


class UnreachableDestinationError(FatalBackupError):
    """The destination is missing, not listable or not writable."""


class PasswordFileError(FatalBackupError):
    """Encryption is configured but the passphrase cannot be loaded."""


class PartialCleanupError(BackupError):
    """Some temporary archiver mounts survived every unmount attempt."""

    def __init__(self, residual: List[str], unremovable: Sequence[str] = ()):
        self.residual = list(residual)
        self.unremovable = list(unremovable)
        super().__init__(
            f"{len(self.residual)} temporary mount(s) could not be removed: "
            + ", ".join(self.residual)
        )


class BackupInterrupted(BackupError):
    """A termination signal was received while the pass was running."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Backup interrupted by signal {signum}")
