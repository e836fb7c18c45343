#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Timestamped version sets of backup archives on a destination.

Every archive is named `<base_name>-YYYYMMDD-HHMMSS<extension>`. The
timestamp is fixed width, so sorting the file names as plain strings sorts
them chronologically. Both the drive selector (newest version per job) and
the retention pruner (keep the N newest) rely on that.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
DEFAULT_EXTENSION = ".fsa"


def make_timestamped_name(
    base_name: str, instant: datetime, extension: str = DEFAULT_EXTENSION
) -> str:
    """Builds the archive file name for `base_name` taken at `instant`."""
    return f"{base_name}-{instant.strftime(TIMESTAMP_FORMAT)}{extension}"


@dataclass(frozen=True)
class VersionedArtifact:
    """One archive file of a job on a destination."""

    base_name: str
    timestamp: str
    path: Path

    @property
    def instant(self) -> datetime:
        return datetime.strptime(self.timestamp, TIMESTAMP_FORMAT)

    @property
    def mtime(self) -> float:
        return self.path.stat().st_mtime


class VersionStore:
    """Enumerates, ranks and prunes the versions of each job."""

    def __init__(self, extension: str = DEFAULT_EXTENSION):
        self.extension = extension

    def _pattern(self, base_name: str) -> "re.Pattern":
        # Exact stem only: "backup" must not pick up "backup-root-...".
        return re.compile(
            rf"^{re.escape(base_name)}-(\d{{8}}-\d{{6}}){re.escape(self.extension)}$"
        )

    def make_name(self, base_name: str, instant: datetime) -> str:
        return make_timestamped_name(base_name, instant, self.extension)

    def list_versions(self, destination_dir, base_name: str) -> List[VersionedArtifact]:
        """Returns the versions of `base_name`, newest first."""
        destination = Path(destination_dir)
        pattern = self._pattern(base_name)
        versions = []
        try:
            names = os.listdir(destination)
        except OSError as e:
            logging.warning(f"Cannot list {destination}: {e}")
            return []

        for name in names:
            match = pattern.match(name)
            if not match:
                continue
            path = destination / name
            if not path.is_file():
                continue
            versions.append(
                VersionedArtifact(base_name=base_name, timestamp=match.group(1), path=path)
            )

        versions.sort(key=lambda artifact: artifact.path.name, reverse=True)
        return versions

    def latest_version(self, destination_dir, base_name: str) -> Optional[VersionedArtifact]:
        versions = self.list_versions(destination_dir, base_name)
        return versions[0] if versions else None

    def prune_to_retain(
        self, destination_dir, base_name: str, keep: int
    ) -> Tuple[List[Path], List[str]]:
        """
        Deletes every version of `base_name` beyond the `keep` most recent.

        Deletion failures do not stop the pruning; they are returned so the
        caller can flag them.

        Returns:
            (deleted paths, error messages)
        """
        if keep < 0:
            raise ValueError("keep must be a non-negative integer")

        logging.info(
            f"Cleaning up old backup versions for {base_name} (keeping {keep} versions)..."
        )
        versions = self.list_versions(destination_dir, base_name)
        if not versions:
            logging.info(f"No existing backup versions found for {base_name}")
            return [], []
        if len(versions) <= keep:
            logging.info(f"✓ All {len(versions)} versions will be kept")
            return [], []

        to_delete = versions[keep:]
        logging.info(f"Deleting {len(to_delete)} old versions:")
        deleted: List[Path] = []
        errors: List[str] = []
        for artifact in to_delete:
            logging.info(f"  - Deleting: {artifact.path.name}")
            try:
                artifact.path.unlink()
                deleted.append(artifact.path)
                logging.info("    ✓ Successfully deleted")
            except OSError as e:
                logging.error(f"    ✗ Error deleting {artifact.path}: {e}")
                errors.append(f"Error deleting old backup version: {artifact.path}")
        return deleted, errors
