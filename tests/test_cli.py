"""Command-line interface, driven through click's CliRunner against a fake host."""

import os
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from radmgr import __version__
from radmgr.cli import cli

DPKG_INSTALLED = "install ok installed\tfreeradius\t3.0.26\n"


@pytest.fixture
def fake(monkeypatch, host, settings, tmp_path):
    for name in list(os.environ):
        if name.startswith("RADMGR_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RADMGR_CONFIG_DIR", settings.config_dir)
    monkeypatch.setenv("RADMGR_LOG_FILE", settings.log_file)
    monkeypatch.setenv("RADMGR_BACKUP_DIR", settings.backup_dir)
    monkeypatch.setenv("RADMGR_OPENVPN_DIR", settings.openvpn_dir)
    monkeypatch.setattr("radmgr.cli.app.make_host", lambda s: host)
    return host


def invoke(*args, input=None):
    return CliRunner().invoke(cli, ["--no-progress", *args], input=input)


@pytest.mark.unit
def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.unit
class TestSettingsErrors:
    def test_bad_env_value(self, fake, monkeypatch):
        monkeypatch.setenv("RADMGR_DB_PORT", "abc")
        result = invoke("logs")
        assert result.exit_code == 1
        assert "RADMGR_DB_PORT must be an integer" in result.output

    def test_missing_env_file(self, fake, tmp_path):
        result = invoke("--env-file", str(tmp_path / "missing.env"), "logs")
        assert result.exit_code == 1
        assert "Env file not found" in result.output

    def test_requires_root(self, fake):
        fake.privileged = False
        result = invoke("user", "list")
        assert result.exit_code == 1
        assert "must be run as root" in result.output


@pytest.mark.unit
class TestUsers:
    def test_add_list_delete(self, fake):
        result = invoke("--backend", "files", "user", "add", "alice", "--password", "pw", "--group", "staff")
        assert result.exit_code == 0, result.output
        assert "User alice has been added (files)." in result.output

        result = invoke("--backend", "files", "user", "list")
        assert result.exit_code == 0
        assert "RADIUS users (files): 1" in result.output
        assert "alice" in result.output and "staff" in result.output
        assert "********" in result.output

        result = invoke("--backend", "files", "group", "list")
        assert result.output.strip().endswith("staff")

        result = invoke("--backend", "files", "user", "delete", "alice")
        assert "User alice has been deleted." in result.output
        result = invoke("--backend", "files", "user", "delete", "alice")
        assert "User alice was not found." in result.output

    def test_show(self, fake):
        invoke("--backend", "files", "user", "add", "alice", "--password", "pw", "--group", "staff")
        result = invoke("--backend", "files", "user", "show", "alice")
        assert result.exit_code == 0, result.output
        assert "User details: alice (files)" in result.output
        assert "Cleartext-Password" in result.output
        assert "staff" in result.output
        assert "********" in result.output

        result = invoke("--backend", "files", "user", "show", "ghost")
        assert result.exit_code == 1
        assert "User ghost was not found." in result.output

    def test_password_prompt(self, fake):
        result = invoke("user", "add", "bob", input="pw\npw\n")
        assert result.exit_code == 0, result.output
        assert "User bob has been added" in result.output

    def test_invalid_username(self, fake):
        result = invoke("user", "add", "bad name", "--password", "pw")
        assert result.exit_code == 1
        assert "Invalid username" in result.output

    def test_radtest(self, fake):
        fake.binaries.add("radtest")
        fake.on(["radtest"], stdout="Received Access-Accept Id 7\n")
        result = invoke("user", "test", "alice", "--password", "pw")
        assert result.exit_code == 0
        assert "Authentication successful for alice." in result.output
        assert fake.commands("radtest")[0][-1] == "testing123"

    def test_radtest_reject(self, fake):
        fake.binaries.add("radtest")
        fake.on(["radtest"], stdout="Received Access-Reject Id 7\n", rc=1)
        result = invoke("user", "test", "alice", "--password", "bad")
        assert result.exit_code == 1
        assert "Authentication failed for alice." in result.output

    def test_batch_with_failures(self, fake, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("username,password\nalice,pw\nbob,\n")
        result = invoke("user", "batch", str(path))
        assert result.exit_code == 1
        assert "Processed 2 rows: 1 succeeded, 1 failed." in result.output


@pytest.mark.unit
class TestClients:
    def test_add_and_list(self, fake):
        result = invoke("client", "add", "nas1", "10.0.0.0/24", "--secret", "s3cret")
        assert result.exit_code == 0, result.output
        assert "Client nas1 has been added." in result.output

        result = invoke("client", "list")
        assert "nas1" in result.output
        assert "s3cret" not in result.output
        assert "s3cret" in invoke("client", "list", "--show-secrets").output

    def test_show(self, fake):
        result = invoke("client", "show", "localhost")
        assert result.exit_code == 0, result.output
        assert "Client details: localhost" in result.output
        assert "127.0.0.1" in result.output
        assert "testing123" not in result.output
        assert "testing123" in invoke("client", "show", "localhost", "--show-secrets").output

        result = invoke("client", "show", "ghost")
        assert result.exit_code == 1
        assert "Client ghost was not found." in result.output

    def test_invalid_address(self, fake):
        result = invoke("client", "add", "nas1", "example.com", "--secret", "s")
        assert result.exit_code == 1
        assert "Invalid client address" in result.output


@pytest.mark.unit
class TestOperations:
    def test_install_when_present(self, fake):
        fake.on(["dpkg-query"], stdout=DPKG_INSTALLED)
        result = invoke("install")
        assert result.exit_code == 0
        assert "already installed" in result.output

    def test_diagnostics_fail_exit_code(self, fake):
        result = invoke("diagnostics")
        assert result.exit_code == 1
        assert "[FAIL] FreeRADIUS installation" in result.output

    def test_backup_list_empty(self, fake):
        result = invoke("backup", "--list")
        assert result.exit_code == 0
        assert "No backups in" in result.output

    def test_restore_without_backups(self, fake):
        fake.on(["dpkg-query"], stdout=DPKG_INSTALLED)
        result = invoke("restore")
        assert result.exit_code == 1
        assert "No backup file specified." in result.output

    def test_uninstall_needs_confirmation(self, fake):
        fake.remove = MagicMock()
        result = invoke("uninstall", input="n\n")
        assert result.exit_code == 1
        fake.remove.assert_not_called()
        assert fake.commands("env") == []

    def test_logs(self, fake):
        fake.on(["journalctl"], stdout="line one\nline two\n")
        result = invoke("logs", "5")
        assert result.exit_code == 0
        assert "Showing last 5 lines of journalctl -u freeradius" in result.output
        assert "line two" in result.output
