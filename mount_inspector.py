#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Read-only queries against the live mount table and block-device list.

The MountInspector wraps `findmnt`, `blkid` and `lsblk` through the 'sh'
library. Every query asks the OS again; nothing is cached, because mounts
change underneath us (the archiver creates and drops loop mounts while it
works).

All mount-table reads use the JSON list mode of findmnt (`-J -l`) and are
parsed against an explicit schema instead of matching columns with regexes.
An exit code of 1 from findmnt means "nothing matched" and is treated as an
empty answer, not as a failure.
"""

# --- STANDARD LIBRARY IMPORTS ---
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_errors import NotMountedError

MOUNT_COLUMNS = "TARGET,SOURCE,FSTYPE,UUID"
NETWORK_FSTYPES = "nfs,nfs4,cifs"
LSBLK_COLUMNS = "NAME,UUID,LABEL,SIZE,VENDOR,MODEL,MOUNTPOINT"

# Bind mounts report their source as "/dev/sda2[/subdir]".
_BIND_SUFFIX = re.compile(r"\[.*\]$")


class FsType(Enum):
    """Filesystem classes the engine distinguishes between."""

    LOCAL = "local"
    NFS = "nfs"
    NFS4 = "nfs4"
    CIFS = "cifs"
    UNKNOWN = "unknown"

    @classmethod
    def from_fstype(cls, fstype: Optional[str]) -> "FsType":
        if not fstype:
            return cls.UNKNOWN
        fstype = fstype.lower()
        for member in (cls.NFS, cls.NFS4, cls.CIFS):
            if fstype == member.value:
                return member
        return cls.LOCAL

    @property
    def is_network(self) -> bool:
        return self in (FsType.NFS, FsType.NFS4, FsType.CIFS)


@dataclass
class MountEntry:
    """One row of the mount table."""

    target: str
    source: str
    fstype: str
    uuid: Optional[str] = None
    options: Optional[str] = None


@dataclass
class BlockDevice:
    """One local block device as reported by lsblk."""

    name: str
    uuid: Optional[str]
    label: Optional[str]
    size_gb: Optional[float]
    vendor: Optional[str]
    model: Optional[str]
    mountpoint: Optional[str]


class MountInspector:
    """Resolves UUIDs, devices and network shares to mount points and back."""

    def __init__(self, findmnt=None, blkid=None, lsblk=None):
        """
        Args:
            findmnt, blkid, lsblk: Optional pre-built command objects. When
                omitted, the real utilities are looked up on PATH.
        """
        self.findmnt = findmnt if findmnt is not None else sh.Command("findmnt")
        self.blkid = blkid if blkid is not None else sh.Command("blkid")
        self._lsblk = lsblk

    @property
    def lsblk(self):
        # Only the drive report needs lsblk, so it is looked up on first use.
        if self._lsblk is None:
            self._lsblk = sh.Command("lsblk")
        return self._lsblk

    # --- Low-level helpers ---

    def _query(self, *args, columns: str = MOUNT_COLUMNS) -> List[MountEntry]:
        """Runs `findmnt -J -l` with the given filter and parses the rows."""
        try:
            output = self.findmnt("-J", "-l", "-o", columns, *args)
        except sh.ErrorReturnCode as e:
            # findmnt exits 1 when nothing matches the filter.
            if e.exit_code == 1:
                return []
            logging.error(
                f"findmnt failed with exit code {e.exit_code}: {e.full_cmd}"
            )
            if e.stderr:
                logging.error(f"Stderr: {e.stderr.decode().strip()}")
            raise
        return self._parse_filesystems(str(output))

    @staticmethod
    def _parse_filesystems(output: str) -> List[MountEntry]:
        if not output.strip():
            return []
        try:
            document = json.loads(output)
        except ValueError:
            logging.warning("Could not parse findmnt JSON output. Ignoring it.")
            return []

        entries = []
        for row in document.get("filesystems", []):
            target = row.get("target")
            if not target:
                continue
            entries.append(
                MountEntry(
                    target=target,
                    source=row.get("source") or "",
                    fstype=row.get("fstype") or "",
                    uuid=row.get("uuid") or None,
                    options=row.get("options") or None,
                )
            )
        return entries

    @staticmethod
    def _strip_bind_suffix(source: str) -> str:
        return _BIND_SUFFIX.sub("", source)

    # --- Public queries ---

    def resolve_device_for_mount_point(self, path: str) -> str:
        """Returns the device backing the mount point `path`."""
        entries = self._query("--mountpoint", str(path))
        if not entries or not entries[0].source:
            raise NotMountedError(f"{path} is not a mount point")
        return self._strip_bind_suffix(entries[0].source)

    def resolve_mount_points_for_device(self, device: str) -> List[str]:
        """Returns every mount point of `device`, in mount-table order."""
        mount_points: List[str] = []
        for entry in self._query("--source", str(device)):
            if entry.target not in mount_points:
                mount_points.append(entry.target)
        return mount_points

    def resolve_filesystem_type(self, path: str) -> FsType:
        """Classifies the filesystem that contains `path`."""
        try:
            entries = self._query("--target", str(path))
        except sh.ErrorReturnCode:
            return FsType.UNKNOWN
        if not entries:
            return FsType.UNKNOWN
        return FsType.from_fstype(entries[0].fstype)

    def resolve_uuid(self, path: str) -> Optional[str]:
        """Returns the filesystem UUID for `path` as exposed by the mount table."""
        entries = self._query("--target", str(path))
        if not entries:
            return None
        return entries[0].uuid

    def resolve_source_for_path(self, path: str) -> Optional[str]:
        """Returns the device of the filesystem containing `path`."""
        entries = self._query("--target", str(path))
        if not entries or not entries[0].source:
            return None
        return self._strip_bind_suffix(entries[0].source)

    def resolve_uuid_for_device(self, device: str) -> Optional[str]:
        """Asks blkid for the UUID of a device node."""
        try:
            output = self.blkid("-s", "UUID", "-o", "value", str(device))
        except sh.ErrorReturnCode as e:
            # blkid exits 2 when the requested tag is not present.
            if e.exit_code == 2:
                return None
            raise
        return str(output).strip() or None

    def resolve_device_by_uuid(self, uuid: str) -> Optional[str]:
        """Finds the device node carrying filesystem `uuid`, if attached."""
        try:
            output = self.blkid("-U", uuid)
        except sh.ErrorReturnCode as e:
            if e.exit_code == 2:
                logging.debug(f"No device with UUID {uuid} is attached.")
                return None
            raise
        return str(output).strip() or None

    def find_mount_point_for_network_source(self, network_path: str) -> Optional[str]:
        """Looks up where an SMB (`//host/share`) or NFS (`host:/path`) share is mounted."""
        entries = self._query("--source", network_path)
        if not entries:
            return None
        return entries[0].target

    def list_temporary_mounts_under(self, prefix_path: str) -> List[str]:
        """Returns the mounts below `prefix_path`, deepest first."""
        prefix = str(prefix_path).rstrip("/") + "/"
        targets = {entry.target for entry in self._query() if entry.target.startswith(prefix)}
        return sorted(targets, reverse=True)

    # --- Drive report ---

    def list_network_mounts(self) -> List[MountEntry]:
        """Returns all mounted nfs/nfs4/cifs shares."""
        return self._query(
            "-t", NETWORK_FSTYPES, columns="TARGET,SOURCE,FSTYPE,OPTIONS"
        )

    def list_block_devices(self) -> List[BlockDevice]:
        """Returns every local block device (partitions included) that carries a UUID."""
        try:
            output = self.lsblk("-J", "-b", "-o", LSBLK_COLUMNS)
        except sh.CommandNotFound:
            logging.error("lsblk is not installed; cannot list local drives.")
            return []
        except sh.ErrorReturnCode as e:
            logging.error(f"lsblk failed with exit code {e.exit_code}.")
            return []
        try:
            document = json.loads(str(output))
        except ValueError:
            logging.warning("Could not parse lsblk JSON output.")
            return []

        devices: List[BlockDevice] = []
        self._flatten_block_devices(document.get("blockdevices", []), devices)
        return [device for device in devices if device.uuid]

    def _flatten_block_devices(self, rows: List[Dict], out: List[BlockDevice]) -> None:
        for row in rows:
            out.append(
                BlockDevice(
                    name=row.get("name") or "",
                    uuid=row.get("uuid") or None,
                    label=row.get("label") or None,
                    size_gb=_bytes_to_gb(row.get("size")),
                    vendor=(row.get("vendor") or "").strip() or None,
                    model=(row.get("model") or "").strip() or None,
                    mountpoint=row.get("mountpoint") or None,
                )
            )
            self._flatten_block_devices(row.get("children", []), out)

    def describe_device(self, device: str) -> str:
        """Returns lsblk's JSON view of a single device, for the durable log."""
        try:
            return str(self.lsblk("-J", "-o", LSBLK_COLUMNS, str(device))).strip()
        except sh.CommandNotFound:
            return "lsblk is not installed"
        except sh.ErrorReturnCode as e:
            return f"lsblk {device} failed with exit code {e.exit_code}"


def _bytes_to_gb(size) -> Optional[float]:
    if size in (None, ""):
        return None
    try:
        return round(float(size) / 1024 ** 3, 1)
    except (TypeError, ValueError):
        return None
