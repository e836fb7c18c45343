#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pre-flight safety checks on the selected destination.

Runs once per pass, before any job, and blocks the whole pass on failure:
- the destination must be an existing directory;
- network shares (nfs, nfs4, cifs) must answer a directory listing and
  accept a probe file within a bounded time;
- local drives must not be the same volume as any mounted source.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import uuid
from pathlib import Path
from typing import Sequence

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_config import BackupJob
from backup_errors import UnreachableDestinationError, UnsafeDestinationError
from drive_manager import ReachableDestination
from mount_inspector import MountInspector

DEFAULT_PROBE_TIMEOUT = 10.0


class DestinationValidator:
    """Verifies that a destination is reachable, writable and not a source volume."""

    def __init__(
        self,
        inspector: MountInspector,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        ls=None,
        touch=None,
    ):
        self.inspector = inspector
        self.timeout = timeout
        self.ls = ls if ls is not None else sh.Command("ls")
        self.touch = touch if touch is not None else sh.Command("touch")

    def validate(self, destination: ReachableDestination, jobs: Sequence[BackupJob]) -> None:
        """
        Raises:
            UnreachableDestinationError: Missing, unlistable or read-only destination.
            UnsafeDestinationError: A source shares the destination's volume.
        """
        logging.info("Validating backup drive...")
        path = Path(destination.path)
        if not path.is_dir():
            raise UnreachableDestinationError(f"Backup drive path does not exist: {path}")

        fs_type = self.inspector.resolve_filesystem_type(str(path))
        if fs_type.is_network:
            logging.info(f"✓ {fs_type.value.upper()} network drive detected")
            self._probe_network_share(path, fs_type.value.upper())
            logging.info(f"✓ {fs_type.value.upper()} backup drive validation successful")
            return

        logging.info("✓ Local backup drive detected")
        self._check_not_a_source(path, jobs)
        logging.info("✓ Local backup drive validation successful")

    def _probe_network_share(self, path: Path, label: str) -> None:
        try:
            self.ls(str(path), _timeout=self.timeout)
        except sh.TimeoutException:
            raise UnreachableDestinationError(
                f"{label} drive not accessible: listing {path} timed out after {self.timeout}s"
            ) from None
        except sh.ErrorReturnCode as e:
            raise UnreachableDestinationError(
                f"{label} drive not accessible: listing {path} failed (exit code {e.exit_code})"
            ) from None

        probe = path / f".backup-test-{os.getpid()}-{uuid.uuid4().hex[:8]}"
        try:
            self.touch(str(probe), _timeout=self.timeout)
        except (sh.TimeoutException, sh.ErrorReturnCode):
            raise UnreachableDestinationError(
                f"No write permission on {label} drive: {path}"
            ) from None
        finally:
            try:
                probe.unlink()
            except OSError:
                pass
        logging.info(f"✓ {label} drive is writable")

    def _resolve_destination_uuid(self, path: Path) -> str:
        destination_uuid = self.inspector.resolve_uuid(str(path))
        if destination_uuid:
            return destination_uuid

        logging.warning(
            f"Could not determine UUID of backup drive {path} from the mount table. "
            "Trying the backing device..."
        )
        device = self.inspector.resolve_source_for_path(str(path))
        if device:
            destination_uuid = self.inspector.resolve_uuid_for_device(device)
        if not destination_uuid:
            raise UnreachableDestinationError(
                f"UUID of backup drive {path} could not be determined "
                f"(device: {device or 'not found'})"
            )
        return destination_uuid

    def _check_not_a_source(self, path: Path, jobs: Sequence[BackupJob]) -> None:
        destination_uuid = self._resolve_destination_uuid(path)
        logging.info(f"✓ Backup drive UUID: {destination_uuid}")

        for job in jobs:
            if job.is_raw_device:
                continue
            source_uuid = self.inspector.resolve_uuid(job.source)
            if source_uuid and source_uuid == destination_uuid:
                logging.error("Backup drive is the same as source drive!")
                raise UnsafeDestinationError(
                    f"Source '{job.source}' (UUID: {source_uuid}) is on the same drive "
                    f"as backup target '{path}'"
                )
