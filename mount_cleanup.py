#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Removal of stale temporary mounts left behind by fsarchiver.

While imaging, fsarchiver loop-mounts filesystems below a fixed directory
(/tmp/fsa by default). When it is killed or crashes those mounts survive
and skew later "same volume" checks and free-space views, so they are
swept before a run, after every job and during interruption cleanup.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import time
from typing import List

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_errors import PartialCleanupError
from mount_inspector import MountInspector

DEFAULT_TEMP_MOUNT_ROOT = "/tmp/fsa"


class TemporaryMountSweeper:
    """Finds and unmounts everything below the archiver's temporary namespace."""

    def __init__(
        self,
        inspector: MountInspector,
        temp_root: str = DEFAULT_TEMP_MOUNT_ROOT,
        umount=None,
        settle_delay: float = 1.0,
    ):
        self.inspector = inspector
        self.temp_root = temp_root.rstrip("/") or DEFAULT_TEMP_MOUNT_ROOT
        self.umount = umount if umount is not None else sh.Command("umount")
        self.settle_delay = settle_delay

    def find_mounts(self) -> List[str]:
        """Returns the temporary mounts, deepest first."""
        return self.inspector.list_temporary_mounts_under(self.temp_root)

    def _unmount(self, mount: str) -> bool:
        """Tries plain, lazy and forced unmount in turn; True on the first success."""
        attempts = [
            ("normal", ()),
            ("lazy", ("-l",)),
            ("force", ("-f",)),
        ]
        for label, flags in attempts:
            try:
                self.umount(*flags, mount)
                logging.info(f"  ✓ {label.capitalize()} umount of {mount} successful")
                return True
            except sh.ErrorReturnCode as e:
                logging.warning(
                    f"  - {label.capitalize()} umount of {mount} failed "
                    f"(exit code {e.exit_code})"
                )
        logging.error(f"  ✗ All umount attempts failed for: {mount}")
        return False

    def _remove_empty_directories(self) -> None:
        """Best-effort removal of the now empty temporary directory tree."""
        if not os.path.isdir(self.temp_root):
            return
        for dirpath, _dirnames, _filenames in os.walk(self.temp_root, topdown=False):
            try:
                os.rmdir(dirpath)
            except OSError:
                # Not empty or already gone.
                continue
        if not os.path.exists(self.temp_root):
            logging.info(f"✓ {self.temp_root} directory cleaned up")

    def sweep(self, force_unmount: bool = True) -> None:
        """
        Runs the temporary-mount cleanup protocol.

        Raises:
            PartialCleanupError: If mounts were found and not forced away, or
                if some of them survived every unmount attempt.
        """
        logging.info(f"Searching for fsarchiver mount points below {self.temp_root}...")
        mounts = self.find_mounts()
        if not mounts:
            logging.info("✓ No fsarchiver mount points found")
            return

        logging.warning("Found fsarchiver mount points:")
        for mount in mounts:
            logging.warning(f"  - {mount}")

        if not force_unmount:
            logging.warning("Automatic cleanup not activated. For manual cleanup, run:")
            logging.warning(f"  sudo umount -R {self.temp_root}")
            raise PartialCleanupError(mounts)

        logging.info("Automatic cleanup of mount points...")
        unremovable = []
        for mount in mounts:
            logging.info(f"Unmounting: {mount}")
            if not self._unmount(mount):
                unremovable.append(mount)

        if unremovable:
            logging.error("✗ Mount points that could not be removed by any method:")
            for mount in unremovable:
                logging.error(f"  - {mount}")

        if self.settle_delay:
            time.sleep(self.settle_delay)

        remaining = self.find_mounts()
        if remaining:
            logging.error("✗ Some mount points could not be removed:")
            for mount in remaining:
                logging.error(f"  - {mount}")
            raise PartialCleanupError(remaining, unremovable)

        logging.info("✓ All fsarchiver mount points successfully removed")
        self._remove_empty_directories()
