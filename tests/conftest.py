"""
Shared pytest fixtures for the fsarchiver backup tests.

This module provides:
- Fake 'sh' commands and helpers to build sh exceptions
- A fake MountInspector backed by plain dictionaries
- A fake archiver that writes archives of a chosen size
- A recording notifier
- A ready-made Config and destination directory
"""

import os
import tempfile
from pathlib import Path

# Keep the tool's own log files out of the working tree.
os.environ.setdefault("FSA_BACKUP_LOG_DIR", tempfile.mkdtemp(prefix="fsa-backup-logs-"))

import pytest
import sh

from backup_config import BackupJob, Config, MailSettings
from drive_manager import ReachableDestination
from mount_inspector import FsType


def error_return_code(exit_code, cmd="fake", stderr=b""):
    """Builds the sh exception a command exiting with `exit_code` would raise."""
    exc_class = getattr(sh, f"ErrorReturnCode_{exit_code}")
    return exc_class(cmd, b"", stderr)


class FakeCommand:
    """Stands in for an sh.Command; records calls and replays a handler."""

    def __init__(self, handler=None, result=""):
        self.handler = handler
        self.result = result
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.handler is not None:
            return self.handler(*args, **kwargs)
        return self.result


class FakeInspector:
    """Dictionary-backed replacement for MountInspector."""

    def __init__(self, mount_points=None, uuids=None, fs_types=None, temp_mounts=None):
        self.mount_points = dict(mount_points or {})
        self.uuids = dict(uuids or {})
        self.fs_types = dict(fs_types or {})
        self.temp_mounts = list(temp_mounts or [])
        self.devices_by_uuid = {}
        self.device_mounts = {}
        self.network_mounts = {}

    def resolve_device_for_mount_point(self, path):
        from backup_errors import NotMountedError

        if path not in self.mount_points:
            raise NotMountedError(f"{path} is not a mount point")
        return self.mount_points[path]

    def resolve_mount_points_for_device(self, device):
        return list(self.device_mounts.get(device, []))

    def resolve_filesystem_type(self, path):
        return self.fs_types.get(str(path), FsType.LOCAL)

    def resolve_uuid(self, path):
        return self.uuids.get(str(path))

    def resolve_source_for_path(self, path):
        return None

    def resolve_uuid_for_device(self, device):
        return None

    def resolve_device_by_uuid(self, uuid):
        return self.devices_by_uuid.get(uuid)

    def find_mount_point_for_network_source(self, network_path):
        return self.network_mounts.get(network_path)

    def list_temporary_mounts_under(self, prefix_path):
        return sorted(self.temp_mounts, reverse=True)

    def list_network_mounts(self):
        return []

    def list_block_devices(self):
        return []

    def describe_device(self, device):
        return f'{{"blockdevices": [{{"name": "{device}"}}]}}'


class FakeProcess:
    """Finished-on-demand archiver handle."""

    def __init__(self, exit_code=0, on_wait=None):
        self.exit_code = exit_code
        self.on_wait = on_wait
        self.stopped = False
        self.pid = 4242

    def wait(self):
        if self.on_wait is not None:
            self.on_wait()
        return self.exit_code

    def stop(self, grace=None):
        self.stopped = True


class FakeArchiver:
    """Writes an archive of `size` bytes and reports a per-device exit code."""

    def __init__(self, size=2 * 1024 * 1024, exit_codes=None, log_lines=None, on_wait=None):
        self.size = size
        self.exit_codes = dict(exit_codes or {})
        self.log_lines = list(log_lines or ["Statistics for filesystem 0", "done"])
        self.on_wait = on_wait
        self.started = []
        self.processes = []

    def start(self, device, output_file, exclude_globs, compression_level, passphrase, sink):
        self.started.append((device, Path(output_file), compression_level, passphrase))
        Path(output_file).write_bytes(b"\0" * self.size)
        for line in self.log_lines:
            sink.write(line + "\n")
        process = FakeProcess(self.exit_codes.get(device, 0), on_wait=self.on_wait)
        self.processes.append(process)
        return process


class RecordingNotifier:
    """Collects payloads instead of sending mail."""

    def __init__(self):
        self.payloads = []

    def notify(self, payload):
        self.payloads.append(payload)
        return True

    def check_configuration(self):
        return None


class FakeResolver:
    """Returns a fixed list of reachable destinations."""

    def __init__(self, destinations):
        self.destinations = list(destinations)

    def resolve(self, identifiers):
        return list(self.destinations)


@pytest.fixture
def destination_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture
def local_destination(destination_dir):
    return ReachableDestination("1111-DEST", destination_dir, FsType.LOCAL)


@pytest.fixture
def two_jobs():
    return [
        BackupJob(name="EFI", base_name="backup-efi", source="/boot/efi"),
        BackupJob(name="System", base_name="backup-root", source="/"),
    ]


@pytest.fixture
def mail_settings():
    return MailSettings(
        mail_from="backup@example.com",
        mail_to="admin@example.com",
        subjects={
            "success": "[SUCCESS] Backup on testhost",
            "error": "[ERROR] Backup Error on testhost",
            "interrupted": "[INTERRUPTED] Backup on testhost",
        },
    )


@pytest.fixture
def config(tmp_path, two_jobs, mail_settings):
    return Config(
        jobs=two_jobs,
        destinations=["1111-DEST"],
        mail=mail_settings,
        exclude_paths=["/tmp/*", "*/.cache/*"],
        versions_to_keep=1,
        backup_log=tmp_path / "logs" / "fsarchiver-bkp.log",
        temp_mount_root=str(tmp_path / "fsa"),
    )


@pytest.fixture
def inspector():
    return FakeInspector(
        mount_points={"/boot/efi": "/dev/sda1", "/": "/dev/sda2"},
        uuids={"/boot/efi": "AAAA-EFI", "/": "BBBB-ROOT"},
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()
