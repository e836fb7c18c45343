"""
Tests for the command-line entry point (orchestrator.py).
"""

from datetime import datetime
from unittest.mock import patch

import pytest
import sh

import orchestrator
from conftest import FakeCommand, FakeInspector
from version_store import make_timestamped_name


@pytest.fixture
def env_file(tmp_path):
    share = tmp_path / "share"
    share.mkdir()
    (tmp_path / "plan.yaml").write_text(
        "jobs:\n"
        "  System:\n"
        "    base_name: backup-root\n"
        "    source: /\n"
        "destinations:\n"
        "  - //nas/backups\n"
    )
    env = tmp_path / ".env"
    env.write_text(
        "FSA_BACKUP_PLAN=plan.yaml\n"
        "MAIL_FROM=backup@example.com\n"
        "MAIL_TO=admin@example.com\n"
        f"FSA_TEMP_MOUNT_ROOT={tmp_path / 'fsa'}\n"
    )
    return env


@pytest.fixture
def inspector(env_file):
    fake = FakeInspector()
    fake.network_mounts["//nas/backups"] = str(env_file.parent / "share")
    with patch("orchestrator.MountInspector", return_value=fake):
        yield fake


def run_main(*argv):
    with pytest.raises(SystemExit) as excinfo:
        orchestrator.main(list(argv))
    return excinfo.value.code


class TestParser:
    """Test the argparse surface."""

    def test_run_options(self):
        args = orchestrator.build_parser().parse_args(["--env-file", "x.env", "run", "--skip-mail-check"])

        assert args.command == "run"
        assert args.skip_mail_check
        assert args.env_file == "x.env"

    def test_env_file_default(self):
        args = orchestrator.build_parser().parse_args(["list-drives"])

        assert args.env_file == ".env"

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            orchestrator.build_parser().parse_args([])


class TestCommands:
    """Test command dispatch and exit codes."""

    def test_run_requires_root(self, env_file):
        with patch("orchestrator.os.geteuid", return_value=1000):
            assert run_main("--env-file", str(env_file), "run") == 1

    def test_list_versions(self, env_file, inspector, capsys):
        share = env_file.parent / "share"
        for day in (1, 2):
            (share / make_timestamped_name("backup-root", datetime(2025, 1, day))).write_bytes(b"x")

        assert run_main("--env-file", str(env_file), "list-versions") == 0

        out = capsys.readouterr().out
        assert "System (backup-root): 2 version(s)" in out
        assert out.index("20250102") < out.index("20250101")

    def test_list_drives_needs_no_configuration(self, tmp_path, inspector):
        assert run_main("--env-file", str(tmp_path / "missing.env"), "list-drives") == 0

    def test_configuration_error_exits_1(self, tmp_path, inspector):
        assert run_main("--env-file", str(tmp_path / "missing.env"), "list-versions") == 1

    def test_sweep_dry_run_only_reports(self, env_file, inspector):
        inspector.temp_mounts = [str(env_file.parent / "fsa" / "x")]
        umount = FakeCommand()

        with patch("orchestrator.os.geteuid", return_value=0), \
                patch("mount_cleanup.sh.Command", return_value=umount):
            assert run_main("--env-file", str(env_file), "sweep-mounts", "--dry-run") == 0

        assert umount.calls == []

    def test_run_uses_the_backup_orchestrator(self, env_file, inspector):
        with patch("orchestrator.os.geteuid", return_value=0), \
                patch("orchestrator.BackupOrchestrator") as backup:
            backup.return_value.run.return_value = 130
            code = run_main("--env-file", str(env_file), "run", "--skip-mail-check")

        assert code == 130
        assert backup.call_args.kwargs["inspector"] is inspector

    def test_missing_command_exits_1(self, env_file, inspector):
        with patch("orchestrator.os.geteuid", return_value=0), \
                patch("orchestrator.BackupOrchestrator") as backup:
            backup.return_value.run.side_effect = sh.CommandNotFound("fsarchiver")
            code = run_main("--env-file", str(env_file), "run", "--skip-mail-check")

        assert code == 1
