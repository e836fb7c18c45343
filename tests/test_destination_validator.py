"""
Unit tests for destination_validator.py.
"""

import pytest
import sh

from backup_config import BackupJob
from backup_errors import UnreachableDestinationError, UnsafeDestinationError
from conftest import FakeCommand, FakeInspector, error_return_code
from destination_validator import DestinationValidator
from drive_manager import ReachableDestination
from mount_inspector import FsType


def touch_denied(*args, **kwargs):
    raise error_return_code(1, "touch", stderr=b"Permission denied")


class TestLocalDestination:
    """Test the same-volume safety check."""

    def test_same_uuid_as_a_source_is_unsafe(self, tmp_path, two_jobs):
        inspector = FakeInspector(uuids={str(tmp_path): "BBBB-ROOT", "/": "BBBB-ROOT"})
        validator = DestinationValidator(inspector, ls=FakeCommand(), touch=FakeCommand())
        destination = ReachableDestination("BBBB-ROOT", tmp_path, FsType.LOCAL)

        with pytest.raises(UnsafeDestinationError):
            validator.validate(destination, two_jobs)

    def test_different_uuid_passes(self, tmp_path, two_jobs):
        inspector = FakeInspector(
            uuids={str(tmp_path): "CCCC-DEST", "/": "BBBB-ROOT", "/boot/efi": "AAAA-EFI"}
        )
        validator = DestinationValidator(inspector, ls=FakeCommand(), touch=FakeCommand())
        destination = ReachableDestination("CCCC-DEST", tmp_path, FsType.LOCAL)

        validator.validate(destination, two_jobs)

    def test_raw_device_sources_are_not_compared(self, tmp_path):
        jobs = [BackupJob(name="Disk", base_name="disk", source="/dev/sdb1")]
        inspector = FakeInspector(uuids={str(tmp_path): "CCCC-DEST", "/dev/sdb1": "CCCC-DEST"})
        validator = DestinationValidator(inspector, ls=FakeCommand(), touch=FakeCommand())

        validator.validate(ReachableDestination("CCCC-DEST", tmp_path, FsType.LOCAL), jobs)

    def test_unknown_destination_uuid_is_unreachable(self, tmp_path, two_jobs):
        validator = DestinationValidator(FakeInspector(), ls=FakeCommand(), touch=FakeCommand())

        with pytest.raises(UnreachableDestinationError):
            validator.validate(ReachableDestination("X", tmp_path, FsType.LOCAL), two_jobs)

    def test_missing_directory_is_unreachable(self, tmp_path, two_jobs):
        validator = DestinationValidator(FakeInspector(), ls=FakeCommand(), touch=FakeCommand())
        destination = ReachableDestination("X", tmp_path / "gone", FsType.LOCAL)

        with pytest.raises(UnreachableDestinationError):
            validator.validate(destination, two_jobs)


class TestNetworkDestination:
    """Test the reachability and write probes for network shares."""

    def test_writable_share_passes(self, tmp_path, two_jobs):
        inspector = FakeInspector(fs_types={str(tmp_path): FsType.NFS})
        ls = FakeCommand()
        touch = FakeCommand()
        validator = DestinationValidator(inspector, timeout=3, ls=ls, touch=touch)

        validator.validate(ReachableDestination("nas:/export", tmp_path, FsType.NFS), two_jobs)

        assert ls.calls[0][1]["_timeout"] == 3
        probe = touch.calls[0][0][0]
        assert probe.startswith(str(tmp_path / ".backup-test-"))

    def test_denied_write_is_unreachable(self, tmp_path, two_jobs):
        inspector = FakeInspector(fs_types={str(tmp_path): FsType.NFS})
        validator = DestinationValidator(
            inspector, ls=FakeCommand(), touch=FakeCommand(handler=touch_denied)
        )

        with pytest.raises(UnreachableDestinationError, match="No write permission"):
            validator.validate(ReachableDestination("nas:/export", tmp_path, FsType.NFS), two_jobs)

    def test_listing_timeout_is_unreachable(self, tmp_path, two_jobs):
        def hang(*args, **kwargs):
            raise sh.TimeoutException(-9, "ls")

        inspector = FakeInspector(fs_types={str(tmp_path): FsType.CIFS})
        validator = DestinationValidator(
            inspector, ls=FakeCommand(handler=hang), touch=FakeCommand()
        )

        with pytest.raises(UnreachableDestinationError, match="timed out"):
            validator.validate(ReachableDestination("//nas/b", tmp_path, FsType.CIFS), two_jobs)

    def test_network_shares_skip_the_uuid_check(self, tmp_path, two_jobs):
        inspector = FakeInspector(
            uuids={str(tmp_path): "BBBB-ROOT", "/": "BBBB-ROOT"},
            fs_types={str(tmp_path): FsType.CIFS},
        )
        validator = DestinationValidator(inspector, ls=FakeCommand(), touch=FakeCommand())

        validator.validate(ReachableDestination("//nas/b", tmp_path, FsType.CIFS), two_jobs)
