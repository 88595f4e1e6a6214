"""Backup archives, restore and the repair flow."""

import shutil
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from radmgr.backup import (
    BackupInfo,
    backup_config,
    list_backups,
    resolve_backup,
    restore_config,
    restore_database,
)
from radmgr.conffile import brace_balance
from radmgr.db import Psql
from radmgr.repair import fix_installation, repair_openvpn_policy
from radmgr.transports.base import CommandError, CommandResult

DPKG_INSTALLED = "install ok installed\tfreeradius\t3.0.26\n"


@pytest.fixture
def installed(host):
    host.on(["dpkg-query"], stdout=DPKG_INSTALLED)
    return host


@pytest.fixture
def backup_dir(settings) -> Path:
    path = Path(settings.backup_dir)
    path.mkdir(parents=True)
    return path


def _fake_tar_create(argv, _input):
    Path(argv[2]).write_bytes(b"\0" * 2048)
    return CommandResult(argv)


@pytest.mark.unit
class TestBackupInfo:
    @pytest.mark.parametrize("size,expected", [
        (512, "512B"),
        (2048, "2.0K"),
        (5 * 1024 * 1024, "5.0M"),
        (3 * 1024 ** 3, "3.0G"),
    ])
    def test_human_size(self, size, expected):
        assert BackupInfo("/b/x.tar.gz", size).human_size == expected


@pytest.mark.unit
class TestListAndResolve:
    def test_newest_first(self, host, settings, backup_dir):
        for name in ("radius-backup-20240101120000.tar.gz", "radius-backup-20240301080000.tar.gz",
                     "radius-db-20240101120000.sql", "notes.txt"):
            (backup_dir / name).write_text("x")

        backups = list_backups(host, settings)
        assert [b.name for b in backups] == [
            "radius-backup-20240301080000.tar.gz",
            "radius-backup-20240101120000.tar.gz",
        ]
        assert backups[0].created == datetime(2024, 3, 1, 8, 0, 0)

    def test_empty(self, host, settings):
        assert list_backups(host, settings) == []

    def test_resolve(self, host, settings, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")
        expected = str(backup_dir / "radius-backup-20240101120000.tar.gz")
        assert resolve_backup(host, settings, "radius-backup-20240101120000.tar.gz") == expected
        assert resolve_backup(host, settings, expected) == expected
        with pytest.raises(FileNotFoundError):
            resolve_backup(host, settings, "radius-backup-19990101000000.tar.gz")


@pytest.mark.unit
class TestBackupConfig:
    def test_config_only(self, installed, settings, config_dir):
        installed.on(["tar"], handler=_fake_tar_create)
        info = backup_config(installed, settings)

        assert info.with_database is False
        assert info.size == 2048
        (argv,) = installed.commands("tar")
        assert argv[1:2] == ["-czf"]
        assert argv[3:] == ["-C", str(config_dir.parent), "3.0"]

    def test_with_database(self, installed, settings, backup_dir):
        installed.active_units.add("postgresql")
        installed.on(["tar"], handler=_fake_tar_create)
        psql = MagicMock(spec=Psql)

        info = backup_config(installed, settings, psql=psql)

        assert info.with_database is True
        dump_path = psql.dump.call_args.args[0]
        (argv,) = installed.commands("tar")
        assert argv[-3:] == ["-C", str(backup_dir), Path(dump_path).name]

    def test_dump_failure_falls_back(self, installed, settings, backup_dir):
        installed.active_units.add("postgresql")
        installed.on(["tar"], handler=_fake_tar_create)
        psql = MagicMock(spec=Psql)
        psql.dump.side_effect = CommandError(CommandResult(["pg_dump"], stderr="denied", rc=1))

        assert backup_config(installed, settings, psql=psql).with_database is False

    def test_tar_failure(self, installed, settings, backup_dir):
        installed.on(["tar"], stderr="No space left on device", rc=2)
        with pytest.raises(RuntimeError, match="No space left"):
            backup_config(installed, settings)

    def test_requires_freeradius(self, host, settings):
        with pytest.raises(RuntimeError, match="not installed"):
            backup_config(host, settings)


@pytest.mark.unit
class TestRestore:
    @pytest.fixture
    def restoring(self, installed, tmp_path):
        """mktemp/tar/mv/cp do their real work on tmp_path."""
        extract_dir = tmp_path / "extract"

        def mktemp(argv, _input):
            extract_dir.mkdir()
            return CommandResult(argv, stdout=f"{extract_dir}\n")

        def untar(argv, _input):
            saved = Path(argv[argv.index("-C") + 1]) / "3.0"
            saved.mkdir()
            (saved / "clients.conf").write_text("client restored {\n}\n")
            (saved.parent / "radius-db-20240101120000.sql").write_text("-- dump\n")
            return CommandResult(argv)

        def mv(argv, _input):
            shutil.move(argv[1], argv[2])
            return CommandResult(argv)

        def cp(argv, _input):
            shutil.copytree(argv[2][:-len("/.")], argv[3], dirs_exist_ok=True)
            return CommandResult(argv)

        installed.on(["mktemp"], handler=mktemp)
        installed.on(["tar"], handler=untar)
        installed.on(["mv"], handler=mv)
        installed.on(["cp"], handler=cp)
        installed.active_units.add("freeradius")
        installed.extract_dir = extract_dir
        return installed

    def test_config_restored_and_old_kept(self, restoring, settings, config_dir, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")

        assert restore_config(restoring, settings, "radius-backup-20240101120000.tar.gz", delay=0) is True

        assert (config_dir / "clients.conf").read_text() == "client restored {\n}\n"
        (old,) = config_dir.parent.glob("3.0.old.*")
        assert "client localhost" in (old / "clients.conf").read_text()
        assert not restoring.extract_dir.exists()
        systemctl = restoring.commands("systemctl")
        assert systemctl.index(["systemctl", "stop", "freeradius"]) < systemctl.index(
            ["systemctl", "start", "freeradius"])

    def test_database_restored_when_postgres_runs(self, restoring, settings, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")
        restoring.active_units.add("postgresql")
        psql = MagicMock(spec=Psql)
        psql.database_exists.return_value = True
        psql.restore.return_value = CommandResult(["psql"])

        restore_config(restoring, settings, "radius-backup-20240101120000.tar.gz", psql=psql, delay=0)

        psql.drop_database.assert_called_once_with()
        psql.create_database.assert_called_once_with()
        assert psql.restore.call_args.args[0].endswith("radius-db-20240101120000.sql")

    def test_extract_failure_starts_service_again(self, restoring, settings, config_dir, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")
        restoring.on(["tar"], stderr="gzip: stdin: not in gzip format", rc=2)

        with pytest.raises(CommandError):
            restore_config(restoring, settings, "radius-backup-20240101120000.tar.gz", delay=0)

        assert restoring.commands("systemctl")[-1] == ["systemctl", "start", "freeradius"]
        assert "client localhost" in (config_dir / "clients.conf").read_text()
        assert not restoring.extract_dir.exists()

    def test_copy_failure_puts_previous_config_back(self, restoring, settings, config_dir, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")
        restoring.on(["cp"], stderr="No space left on device", rc=1)

        with pytest.raises(CommandError):
            restore_config(restoring, settings, "radius-backup-20240101120000.tar.gz", delay=0)

        assert "client localhost" in (config_dir / "clients.conf").read_text()
        assert list(config_dir.parent.glob("3.0.old.*")) == []
        assert restoring.commands("systemctl")[-1] == ["systemctl", "start", "freeradius"]

    def test_database_failure_starts_service_again(self, restoring, settings, backup_dir):
        (backup_dir / "radius-backup-20240101120000.tar.gz").write_text("x")
        restoring.active_units.add("postgresql")
        psql = MagicMock(spec=Psql)
        psql.database_exists.return_value = True
        psql.restore.return_value = CommandResult(["psql"], stderr="syntax error", rc=3)

        with pytest.raises(CommandError):
            restore_config(restoring, settings, "radius-backup-20240101120000.tar.gz", psql=psql, delay=0)

        assert restoring.commands("systemctl")[-1] == ["systemctl", "start", "freeradius"]

    def test_missing_backup(self, installed, settings):
        with pytest.raises(FileNotFoundError):
            restore_config(installed, settings, "nope.tar.gz", delay=0)


@pytest.mark.unit
class TestRestoreDatabase:
    def test_creates_role_when_missing(self, host, settings):
        psql = MagicMock(spec=Psql)
        psql.database_exists.return_value = False
        psql.role_exists.return_value = False
        psql.restore.return_value = CommandResult(["psql"])

        restore_database(host, settings, "/tmp/x.sql", psql=psql)

        safety = psql.dump.call_args.args[0]
        assert safety.startswith(settings.backup_dir)
        psql.create_role.assert_called_once_with()
        psql.drop_database.assert_not_called()

    def test_import_failure_raises(self, host, settings):
        psql = MagicMock(spec=Psql)
        psql.restore.return_value = CommandResult(["psql"], stderr="syntax error", rc=3)
        with pytest.raises(CommandError):
            restore_database(host, settings, "/tmp/x.sql", psql=psql)


@pytest.mark.unit
class TestRepair:
    def test_broken_policy_rewritten(self, host, config_dir):
        path = config_dir / "policy.d" / "openvpn"
        path.write_text("openvpn {\n    if (x) {\n        ok\n}\n")

        assert repair_openvpn_policy(host, str(config_dir), "freerad") is True
        assert brace_balance(path.read_text()) == 0
        assert host.commands("cp")[0][2] == str(path)

    def test_balanced_policy_left_alone(self, host, config_dir):
        path = config_dir / "policy.d" / "openvpn"
        path.write_text("openvpn {\n    ok\n}\n")
        assert repair_openvpn_policy(host, str(config_dir), "freerad") is False
        assert path.read_text() == "openvpn {\n    ok\n}\n"

    def test_missing_policy(self, host, config_dir):
        assert repair_openvpn_policy(host, str(config_dir), "freerad") is False

    def test_fix_installation(self, installed, settings):
        installed.active_units.add("freeradius")
        assert fix_installation(installed, settings, delay=0) is True
        assert Path(settings.log_file).exists()
        assert ["systemctl", "start", "freeradius"] in installed.commands("systemctl")

    def test_fix_installation_reports_failure(self, installed, settings):
        assert fix_installation(installed, settings, delay=0) is False
