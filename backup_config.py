#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Configuration for the fsarchiver backup engine.

Configuration comes from two places:
1. A .env file (python-dotenv) with scalar settings: log file, password
   file, retention, compression level, mail addresses and the path of the
   backup plan.
2. The backup plan, a YAML file with the structured parts: the job table,
   the ordered destination list, the exclusion globs and mail templates.

Values from the .env file take precedence over the process environment.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import socket
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

# --- THIRD-PARTY LIBRARY IMPORTS ---
import yaml
from dotenv import dotenv_values

# --- LOCAL APPLICATION IMPORTS ---
from backup_errors import ConfigError, PasswordFileError
from mount_cleanup import DEFAULT_TEMP_MOUNT_ROOT

DEFAULT_BACKUP_LOG = "/var/log/fsarchiver-bkp.log"
DEFAULT_VERSIONS_TO_KEEP = 1
DEFAULT_COMPRESSION_LEVEL = 5
DEFAULT_MIN_BACKUP_SIZE = 1024 * 1024
DEFAULT_PROBE_TIMEOUT = 10.0

# Patterns are matched by fsarchiver against the full path from the root of
# the saved filesystem, case-sensitively.
DEFAULT_EXCLUDE_PATHS = [
    # Cache directories
    "*/cache/*",
    "*/Cache/*",
    "*/.cache/*",
    "*/.Cache/*",
    "*/caches/*",
    "*/Caches/*",
    "*/cache2/*",
    "/root/.cache/*",
    "/home/*/.cache/*",
    "*/mesa_shader_cache/*",
    "*/.thumbnails/*",
    "*/thumbnails/*",
    "*/GrShaderCache/*",
    "*/GPUCache/*",
    "*/ShaderCache/*",
    "*/Code Cache/*",
    # Temporary directories and files
    "/tmp/*",
    "/var/tmp/*",
    "*/tmp/*",
    "*/Tmp/*",
    "*/temp/*",
    "*/Temp/*",
    "*/TEMP/*",
    "*/.temp/*",
    "*/.Temp/*",
    "*/Greaselion/Temp/*",
    "*/BraveSoftware/*/Cache/*",
    "*/BraveSoftware/*/cache/*",
    "*.tmp",
    "*.temp",
    "*.TMP",
    "*.TEMP",
    # Logs
    "/var/log/*",
    "/var/log/journal/*",
    "*/logs/*",
    "*/Logs/*",
    "*.log",
    "*.log.*",
    "*.LOG",
    "*/.xsession-errors*",
    "*/.wayland-errors*",
    "/var/spool/*",
    # Mount points and virtual filesystems
    "/media/*",
    "/mnt/*",
    "/run/media/*",
    "/proc/*",
    "/sys/*",
    "/dev/*",
    "/run/*",
    "/var/run/*",
    "/var/lock/*",
    # Development and build directories
    "*/node_modules/*",
    "*/.npm/*",
    "*/.yarn/*",
    "*/target/debug/*",
    "*/target/release/*",
    "*/.cargo/registry/*",
    "*/.go/pkg/*",
    "*/target/*",
    "*/build/*",
    "*/Build/*",
    "*/.gradle/*",
    "*/.m2/repository/*",
    "*/__pycache__/*",
    "*/.pytest_cache/*",
    "*.pyc",
    # Containers
    "/var/lib/docker/*",
    "/var/lib/containers/*",
    # Flatpak and Snap caches
    "/var/lib/flatpak/repo/*",
    "/var/lib/flatpak/.refs/*",
    "/var/lib/flatpak/system-cache/*",
    "/var/lib/flatpak/user-cache/*",
    "/home/*/.var/app/*/cache/*",
    "/home/*/.var/app/*/Cache/*",
    "/home/*/.var/app/*/.cache/*",
    "*/.var/app/*/cache/*",
    "*/.var/app/*/Cache/*",
    "/var/lib/snapd/cache/*",
    "/home/*/snap/*/common/.cache/*",
    # Editor backups
    "*~",
    # Swap
    "/swapfile",
    "/swap.img",
    "*.swap",
    "*.SWAP",
    # Sockets, lost+found and virtual mounts
    "*/.X11-unix/*",
    "*/lost+found/*",
    "*/.gvfs/*",
    # Multimedia caches
    "*/.dvdcss/*",
    "*/.mplayer/*",
    "*/.adobe/Flash_Player/*",
    "*/.ecryptfs/*",
    # Steam
    "*/.steam/steam/logs/*",
    "*/.steam/steam/dumps/*",
    "*/.local/share/Steam/logs/*",
]

DEFAULT_MAIL_BODIES = {
    "success": (
        "Backup completed successfully on: {BACKUP_DATE}\n"
        "Runtime: {RUNTIME_MIN} minutes and {RUNTIME_SEC} seconds."
    ),
    "error": (
        "Backup failed!\n\n"
        "Backup start: {BACKUP_DATE}\n"
        "Runtime: {RUNTIME_MIN} minutes and {RUNTIME_SEC} seconds.\n\n"
        "ERROR REPORT:\n{ERROR_DETAILS}"
    ),
    "interrupted": (
        "Backup was interrupted!\n\n"
        "Backup start: {BACKUP_DATE}\n"
        "Interrupted after: {RUNTIME_MIN} minutes and {RUNTIME_SEC} seconds.\n\n"
        "The backup was terminated by user intervention (CTRL+C) or system signal.\n"
        "Incomplete backup files have been removed."
    ),
}


def default_mail_subjects(hostname: Optional[str] = None) -> Dict[str, str]:
    hostname = hostname or socket.gethostname()
    return {
        "success": f"[SUCCESS] Backup on {hostname} completed successfully",
        "error": f"[ERROR] Backup Error on {hostname}",
        "interrupted": f"[INTERRUPTED] Backup on {hostname} was interrupted",
    }


@dataclass(frozen=True)
class BackupJob:
    """A named unit of work: one source saved into one archive per run."""

    name: str
    base_name: str
    source: str
    resolved_device: Optional[str] = None

    @property
    def is_raw_device(self) -> bool:
        return self.source.startswith("/dev/")

    def with_device(self, device: str) -> "BackupJob":
        """Returns a copy with the backing device filled in."""
        return replace(self, resolved_device=device)


@dataclass
class MailSettings:
    """Sender, recipient and per-outcome templates for notifications."""

    mail_from: str
    mail_to: str
    subjects: Dict[str, str] = field(default_factory=default_mail_subjects)
    bodies: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MAIL_BODIES))


@dataclass
class Config:
    """Manages and validates all configuration for the backup process."""

    jobs: List[BackupJob]
    destinations: List[str]
    mail: MailSettings
    exclude_paths: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATHS))
    versions_to_keep: int = DEFAULT_VERSIONS_TO_KEEP
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    backup_log: Path = Path(DEFAULT_BACKUP_LOG)
    password_file: Optional[Path] = None
    min_backup_size: int = DEFAULT_MIN_BACKUP_SIZE
    temp_mount_root: str = DEFAULT_TEMP_MOUNT_ROOT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT

    def __post_init__(self):
        problems = []
        if self.versions_to_keep < 0:
            problems.append("VERSIONS_TO_KEEP must be a non-negative integer")
        if not 0 <= self.compression_level <= 22:
            problems.append("ZSTD_COMPRESSION_VALUE must be between 0 and 22")
        if self.min_backup_size < 0:
            problems.append("MIN_BACKUP_SIZE must not be negative")
        if not self.jobs:
            problems.append("the backup plan defines no jobs")

        seen_bases: Dict[str, str] = {}
        for job in self.jobs:
            if job.base_name in seen_bases:
                problems.append(
                    f"jobs '{seen_bases[job.base_name]}' and '{job.name}' share the "
                    f"base name '{job.base_name}'"
                )
            seen_bases[job.base_name] = job.name
        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))

    def load_passphrase(self) -> Optional[str]:
        """
        Reads the archive passphrase, if encryption is configured.

        Raises:
            PasswordFileError: If the file is missing, unreadable or empty.
        """
        if self.password_file is None:
            logging.info("ℹ Encryption disabled (PASSWORD_FILE not configured)")
            return None

        logging.info("Checking encryption configuration...")
        path = Path(self.password_file)
        if not path.is_file():
            raise PasswordFileError(f"Password file {path} not found.")
        try:
            passphrase = path.read_text().replace("\n", "")
        except OSError as e:
            raise PasswordFileError(f"Password file {path} is not readable: {e}") from e
        if not passphrase:
            raise PasswordFileError(f"Password file {path} is empty.")

        logging.info("✓ Encryption enabled")
        return passphrase

    @classmethod
    def from_env(cls, env_path: Path, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Loads and validates all configuration from a .env file and its backup plan."""
        env_path = Path(env_path)
        logging.info(f"Loading configuration from environment file: {env_path}")
        if not env_path.exists():
            raise ConfigError(f"Configuration file not found at: {env_path}")

        values: Dict[str, str] = dict(os.environ if environ is None else environ)
        values.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        logging.info("Successfully loaded .env file.")

        plan_value = values.get("FSA_BACKUP_PLAN")
        if not plan_value:
            raise ConfigError(f"Missing required variable FSA_BACKUP_PLAN in {env_path}")
        plan_path = Path(plan_value)
        if not plan_path.is_absolute():
            plan_path = env_path.resolve().parent / plan_path
        plan = load_plan(plan_path)

        missing = [var for var in ("MAIL_FROM", "MAIL_TO") if not values.get(var)]
        if missing:
            raise ConfigError(
                f"Missing one or more required variables in {env_path}. "
                f"Check: {', '.join(missing)}"
            )

        mail_section = plan.get("mail") or {}
        subjects = default_mail_subjects()
        subjects.update(mail_section.get("subjects") or {})
        bodies = dict(DEFAULT_MAIL_BODIES)
        bodies.update(mail_section.get("bodies") or {})

        password_file = values.get("PASSWORD_FILE")
        exclude_paths = plan.get("exclude_paths")

        config = cls(
            jobs=_parse_jobs(plan.get("jobs")),
            destinations=[str(item) for item in plan.get("destinations") or []],
            mail=MailSettings(
                mail_from=values["MAIL_FROM"],
                mail_to=values["MAIL_TO"],
                subjects=subjects,
                bodies=bodies,
            ),
            exclude_paths=(
                list(DEFAULT_EXCLUDE_PATHS)
                if exclude_paths is None
                else [str(item) for item in exclude_paths]
            ),
            versions_to_keep=_int_value(values, "VERSIONS_TO_KEEP", DEFAULT_VERSIONS_TO_KEEP),
            compression_level=_int_value(
                values, "ZSTD_COMPRESSION_VALUE", DEFAULT_COMPRESSION_LEVEL
            ),
            backup_log=Path(values.get("BACKUP_LOG") or DEFAULT_BACKUP_LOG),
            password_file=Path(password_file) if password_file else None,
            min_backup_size=_int_value(values, "MIN_BACKUP_SIZE", DEFAULT_MIN_BACKUP_SIZE),
            temp_mount_root=values.get("FSA_TEMP_MOUNT_ROOT") or DEFAULT_TEMP_MOUNT_ROOT,
            probe_timeout=_float_value(values, "NETWORK_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT),
        )
        logging.info("Configuration loaded and validated.")
        return config


def load_plan(plan_path: Path) -> dict:
    """Reads the YAML backup plan."""
    logging.info(f"Loading backup plan from: {plan_path}")
    if not plan_path.exists():
        raise ConfigError(f"Backup plan not found at: {plan_path}")
    try:
        with open(plan_path, "r") as f:
            plan = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Backup plan {plan_path} is not valid YAML: {e}") from e
    if not isinstance(plan, dict):
        raise ConfigError(f"Backup plan {plan_path} must be a mapping at the top level.")
    return plan


def _parse_jobs(raw_jobs) -> List[BackupJob]:
    if not isinstance(raw_jobs, dict) or not raw_jobs:
        raise ConfigError("The backup plan must define a non-empty 'jobs' mapping.")

    jobs = []
    for name, spec in raw_jobs.items():
        if not isinstance(spec, dict):
            raise ConfigError(f"Job '{name}' must be a mapping with base_name and source.")
        base_name = spec.get("base_name")
        source = spec.get("source")
        if not base_name or not source:
            raise ConfigError(f"Job '{name}' needs both 'base_name' and 'source'.")
        jobs.append(BackupJob(name=str(name), base_name=str(base_name), source=str(source)))
    return jobs


def _int_value(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from None


def _float_value(values: Mapping[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from None
