#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Master entry point for the fsarchiver backup tool.

It wires the manager classes (mount inspection, drive selection, fsarchiver,
mail) behind a small argparse CLI.

Usage: fsarchiver-backup [--env-file PATH] <command> [options]
Example: sudo fsarchiver-backup --env-file /etc/fsarchiver-backup/.env run
"""

# --- STANDARD LIBRARY IMPORTS ---
import argparse
import os
import sys
from pathlib import Path
from typing import Optional

import log_setup  # Ensure logging is configured before any other imports
import logging

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_config import Config
from backup_errors import BackupError, ConfigError, NoDestinationAvailableError, PartialCleanupError
from backup_manager import BackupOrchestrator
from drive_manager import CandidateDriveResolver, log_available_drives
from mail_notifier import MailNotifier
from mount_cleanup import TemporaryMountSweeper
from mount_inspector import MountInspector
from version_store import VersionStore

DEFAULT_ENV_FILE = ".env"


class MasterOrchestrator:
    """
    Maps CLI commands onto the manager classes.
    """

    def __init__(self, env_path: Path, inspector: Optional[MountInspector] = None):
        self.env_path = env_path
        self.inspector = inspector or MountInspector()
        self._config: Optional[Config] = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = Config.from_env(self.env_path)
        return self._config

    def run_backup(self, skip_mail_check: bool = False) -> int:
        """Runs one full backup pass over all configured jobs."""
        config = self.config
        notifier = MailNotifier(config.mail)
        if not skip_mail_check:
            notifier.check_configuration()
        orchestrator = BackupOrchestrator(config, inspector=self.inspector, notifier=notifier)
        return orchestrator.run()

    def list_drives(self) -> int:
        """Lists the block devices and network shares available as destinations."""
        log_available_drives(self.inspector)
        return 0

    def sweep_mounts(self, dry_run: bool = False) -> int:
        """Removes leftover fsarchiver temporary mounts."""
        sweeper = TemporaryMountSweeper(self.inspector, self.config.temp_mount_root)
        try:
            sweeper.sweep(force_unmount=not dry_run)
        except PartialCleanupError as e:
            if dry_run:
                return 0
            logging.error(f"✗ {e}")
            return 1
        logging.info("✓ No fsarchiver mount points left")
        return 0

    def list_versions(self) -> int:
        """Lists the archive versions of every job on every reachable destination."""
        config = self.config
        store = VersionStore()
        resolver = CandidateDriveResolver(self.inspector, config.temp_mount_root)
        try:
            destinations = resolver.resolve(config.destinations)
        except NoDestinationAvailableError as e:
            logging.error(str(e))
            return 1

        for destination in destinations:
            print(f"--- Versions on [{destination.path}] ({destination.identifier}) ---")
            for job in sorted(config.jobs, key=lambda j: j.name):
                versions = store.list_versions(destination.path, job.base_name)
                print(f"{job.name} ({job.base_name}): {len(versions)} version(s)")
                for artifact in versions:
                    print(f"- {artifact.path.name} | Created: {artifact.instant:%Y-%m-%d %H:%M:%S}")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="fsarchiver backup orchestrator.")
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help=f"Path of the .env configuration file (default: {DEFAULT_ENV_FILE})",
    )
    subparsers = parser.add_subparsers(
        dest="command", required=True, help="Available commands"
    )

    p_run = subparsers.add_parser("run", help=MasterOrchestrator.run_backup.__doc__)
    p_run.add_argument(
        "--skip-mail-check",
        action="store_true",
        help="Do not verify the ssmtp installation before the run",
    )

    subparsers.add_parser("list-drives", help=MasterOrchestrator.list_drives.__doc__)

    p_sweep = subparsers.add_parser("sweep-mounts", help=MasterOrchestrator.sweep_mounts.__doc__)
    p_sweep.add_argument(
        "--dry-run", action="store_true", help="Only report the mounts that would be removed"
    )

    subparsers.add_parser("list-versions", help=MasterOrchestrator.list_versions.__doc__)
    return parser


ROOT_COMMANDS = {"run", "sweep-mounts"}


def main(argv=None):
    """Main function to parse arguments and execute commands."""
    args = build_parser().parse_args(argv)

    if args.command in ROOT_COMMANDS and os.geteuid() != 0:
        logging.error("This script must be run as root. Please use: sudo fsarchiver-backup ...")
        sys.exit(1)

    orchestrator = MasterOrchestrator(Path(args.env_file))
    command_map = {
        "run": lambda: orchestrator.run_backup(args.skip_mail_check),
        "list-drives": orchestrator.list_drives,
        "sweep-mounts": lambda: orchestrator.sweep_mounts(args.dry_run),
        "list-versions": orchestrator.list_versions,
    }

    try:
        code = command_map[args.command]()
    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)
    except (BackupError, sh.ErrorReturnCode, sh.CommandNotFound) as e:
        logging.critical(
            f"An error occurred during '{args.command}': {e}", exc_info=True
        )
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
