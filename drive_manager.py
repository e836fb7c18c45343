#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Discovery and selection of the backup destination.

Destinations are configured as an ordered list of identifiers:
- a filesystem UUID for a local drive, or
- a network path (`//server/share` for SMB/CIFS, `server:/path` for NFS),
  recognised by the presence of a slash.

CandidateDriveResolver turns that list into the destinations that are
mounted right now. DriveSelector then picks the one that most urgently needs
a fresh backup: the destination whose newest archive (over all configured
jobs) is the oldest. A destination without any archive wins outright; ties
go to the destination listed first.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

# --- LOCAL APPLICATION IMPORTS ---
from backup_config import BackupJob
from backup_errors import NoDestinationAvailableError
from mount_cleanup import DEFAULT_TEMP_MOUNT_ROOT
from mount_inspector import FsType, MountInspector
from version_store import VersionStore

PREFERRED_MOUNT_ROOTS = ("/media/", "/mnt/", "/run/media/")


@dataclass(frozen=True)
class ReachableDestination:
    """A configured destination that is mounted and usable for this run."""

    identifier: str
    path: Path
    fs_type: FsType

    @property
    def is_network(self) -> bool:
        return is_network_identifier(self.identifier)


def is_network_identifier(identifier: str) -> bool:
    return "/" in identifier


def active_identifiers(identifiers: Iterable[str]) -> List[str]:
    """Destination identifiers without blank or commented-out (#) entries."""
    return [
        identifier.strip()
        for identifier in identifiers
        if identifier and identifier.strip() and not identifier.strip().startswith("#")
    ]


def _format_time(epoch: float) -> str:
    return datetime.fromtimestamp(epoch).strftime("%d.%m.%Y %H:%M:%S")


class CandidateDriveResolver:
    """Resolves configured destination identifiers to mounted directories."""

    def __init__(self, inspector: MountInspector, temp_root: str = DEFAULT_TEMP_MOUNT_ROOT):
        self.inspector = inspector
        self.temp_prefix = temp_root.rstrip("/") + "/"

    def _resolve_network(self, identifier: str) -> Optional[Path]:
        mount_point = self.inspector.find_mount_point_for_network_source(identifier)
        if mount_point and Path(mount_point).is_dir():
            return Path(mount_point)
        return None

    def _resolve_local(self, uuid: str) -> Optional[Path]:
        device = self.inspector.resolve_device_by_uuid(uuid)
        if not device:
            return None

        mount_points = [
            mount_point
            for mount_point in self.inspector.resolve_mount_points_for_device(device)
            if not mount_point.startswith(self.temp_prefix)
        ]
        if not mount_points:
            return None

        for mount_point in mount_points:
            if mount_point.startswith(PREFERRED_MOUNT_ROOTS):
                return Path(mount_point)
        return Path(mount_points[0])

    def resolve(self, identifiers: Iterable[str]) -> List[ReachableDestination]:
        """
        Returns the reachable destinations, in configuration order.

        Raises:
            NoDestinationAvailableError: If nothing is configured or nothing
                configured is currently mounted.
        """
        logging.info("Searching for configured backup drives (local and network)...")
        active = active_identifiers(identifiers)
        if not active:
            log_available_drives(self.inspector)
            raise NoDestinationAvailableError(
                "No backup drive UUIDs/network paths configured!"
            )

        reachable: List[ReachableDestination] = []
        for identifier in active:
            if is_network_identifier(identifier):
                path = self._resolve_network(identifier)
                kind = "Network path"
            else:
                path = self._resolve_local(identifier)
                kind = "UUID"
            if path is None:
                logging.info(f"  - Not available: {identifier} ({kind})")
                continue

            fs_type = self.inspector.resolve_filesystem_type(str(path))
            reachable.append(ReachableDestination(identifier, path, fs_type))
            logging.info(f"✓ Backup drive found: {path} ({kind}: {identifier})")

        if not reachable:
            logging.error("None of the configured backup drives are available!")
            for identifier in active:
                kind = "Network path" if is_network_identifier(identifier) else "UUID"
                logging.error(f"  - {identifier} ({kind})")
            log_available_drives(self.inspector)
            raise NoDestinationAvailableError(
                "No suitable backup drive (local or network) found."
            )
        return reachable


class DriveSelector:
    """Picks the destination whose newest backup is the oldest."""

    def __init__(self, version_store: VersionStore):
        self.version_store = version_store

    def newest_version_time(self, destination: ReachableDestination, jobs: Sequence[BackupJob]) -> float:
        """Returns the mtime of the newest archive of any job on `destination`, 0 if none."""
        newest = 0.0
        for job in jobs:
            latest = self.version_store.latest_version(destination.path, job.base_name)
            if latest is None:
                logging.info(f"  - {job.name}: No backups found")
                continue
            try:
                mtime = latest.mtime
            except OSError:
                continue
            logging.info(f"  ✓ {job.name}: {latest.path.name} ({_format_time(mtime)})")
            newest = max(newest, mtime)
        return newest

    def select(
        self, candidates: Sequence[ReachableDestination], jobs: Sequence[BackupJob]
    ) -> ReachableDestination:
        if not candidates:
            raise NoDestinationAvailableError("No backup drive available to select from.")
        if len(candidates) == 1:
            return candidates[0]

        logging.info("Multiple backup drives available. Analyzing backup versions...")
        best: Optional[ReachableDestination] = None
        best_time = 0.0
        for candidate in candidates:
            logging.info(f"Analyzing drive: {candidate.path}")
            newest = self.newest_version_time(candidate, jobs)
            if newest == 0:
                logging.info("  → Drive has no backups (will be preferred)")
            else:
                logging.info(f"  → Newest backup from: {_format_time(newest)}")
            # Strict comparison keeps the first-listed drive on ties.
            if best is None or newest < best_time:
                best, best_time = candidate, newest

        if best_time == 0:
            logging.info(f"Using backup drive: {best.path} (no previous backups)")
        else:
            logging.info(
                f"Using backup drive: {best.path} "
                f"(oldest newest backup from {_format_time(best_time)})"
            )
        return best


def log_available_drives(inspector: MountInspector) -> None:
    """Logs the local block devices and network shares an operator could configure."""
    logging.info("Available drives for backup configuration:")
    logging.info(f"{'UUID':<36} | {'LABEL':<12} | {'NAME':<8} | {'SIZE GB':<8} | "
                 f"{'VENDOR':<12} | {'MODEL':<20} | MOUNTPOINT")
    logging.info("=" * 120)
    for device in inspector.list_block_devices():
        size = "" if device.size_gb is None else f"{device.size_gb}"
        logging.info(
            f"{device.uuid:<36} | {device.label or '':<12} | {device.name:<8} | "
            f"{size:<8} | {device.vendor or '':<12} | {device.model or '':<20} | "
            f"{device.mountpoint or ''}"
        )

    logging.info("Available network drives:")
    shares = inspector.list_network_mounts()
    if not shares:
        logging.info("No network drives mounted")
    for share in shares:
        logging.info(f"  {share.target}  {share.source}  {share.fstype}  {share.options or ''}")
