"""User stores, radtest and batch import."""

import json
from unittest.mock import MagicMock

import pytest

from radmgr.db import Psql
from radmgr.transports.base import CommandError, CommandResult
from radmgr.users import (
    FileUserStore,
    RadiusUser,
    SqlUserStore,
    batch_users,
    open_user_store,
    test_user as radtest_user,
    validate_username,
)


@pytest.fixture
def psql():
    mock = MagicMock(spec=Psql)
    mock.scalar.return_value = "0"
    return mock


@pytest.fixture
def file_store(host, config_dir):
    return FileUserStore(host, str(config_dir), owner="freerad")


@pytest.mark.unit
class TestValidateUsername:
    def test_accepts_common_forms(self):
        assert validate_username(" alice ") == "alice"
        assert validate_username("bob.smith@example.com") == "bob.smith@example.com"

    @pytest.mark.parametrize("name", ["", "   ", "bad name", "x;drop", "quote'd"])
    def test_rejects(self, name):
        with pytest.raises(ValueError):
            validate_username(name)


@pytest.mark.unit
class TestSqlUserStore:
    def test_add_binds_values(self, psql):
        store = SqlUserStore(psql)
        created = store.add_user(RadiusUser("alice", "s3cr3t'--", group="staff", simultaneous_use=2))

        assert created is True
        sql = psql.execute.call_args.args[0]
        kwargs = psql.execute.call_args.kwargs
        assert kwargs["best_effort"] is False
        assert kwargs["username"] == "alice"
        assert kwargs["password"] == "s3cr3t'--"
        assert kwargs["groupname"] == "staff"
        assert kwargs["simuse"] == "2"
        assert "s3cr3t" not in sql
        assert "alice" not in sql
        assert sql.startswith("BEGIN;") and sql.endswith("COMMIT;")

    def test_existing_user_is_updated(self, psql):
        psql.scalar.return_value = "1"
        assert SqlUserStore(psql).add_user(RadiusUser("alice", "pw")) is False
        sql = psql.execute.call_args.args[0]
        assert "radusergroup" not in sql
        assert "Simultaneous-Use" not in sql

    def test_add_requires_password(self, psql):
        with pytest.raises(ValueError):
            SqlUserStore(psql).add_user(RadiusUser("alice", ""))
        psql.execute.assert_not_called()

    def test_add_failure_propagates(self, psql):
        psql.execute.side_effect = CommandError(CommandResult(["psql"], stderr="boom", rc=1))
        with pytest.raises(RuntimeError):
            SqlUserStore(psql).add_user(RadiusUser("alice", "pw"))

    def test_delete(self, psql):
        psql.scalar.return_value = "1"
        assert SqlUserStore(psql).delete_user("alice") is True
        sql = psql.execute.call_args.args[0]
        for table in ("radcheck", "radreply", "radusergroup"):
            assert f"DELETE FROM {table}" in sql

    def test_list(self, psql):
        psql.query.return_value = [["alice", "pw", "staff", "2"], ["bob", "pw2"]]
        users = SqlUserStore(psql).list_users()
        assert users == [
            RadiusUser("alice", "pw", "staff", 2),
            RadiusUser("bob", "pw2", None, None),
        ]

    def test_list_groups(self, psql):
        psql.query.return_value = [["admins"], ["staff"]]
        assert SqlUserStore(psql).list_groups() == ["admins", "staff"]

    def test_user_attributes(self, psql):
        psql.query.return_value = [["check", "Cleartext-Password", ":=", "pw"],
                                   ["reply", "Reply-Message", ":=", "hi"]]
        items = SqlUserStore(psql).user_attributes("alice")
        assert items == [("check", "Cleartext-Password", ":=", "pw"), ("reply", "Reply-Message", ":=", "hi")]
        assert psql.query.call_args.kwargs == {"username": "alice"}
        sql = psql.query.call_args.args[0]
        assert "FROM radreply" in sql
        assert "alice" not in sql


@pytest.mark.unit
class TestFileUserStore:
    def test_add_then_delete_restores_file(self, file_store, config_dir):
        path = config_dir / "mods-config" / "files" / "authorize"
        original = path.read_text()

        assert file_store.add_user(RadiusUser("alice", "secret", group="staff")) is True
        text = path.read_text()
        assert text.index("alice Cleartext-Password") < text.index("DEFAULT")
        assert file_store.user_exists("alice")

        assert file_store.delete_user("alice") is True
        assert path.read_text() == original

    def test_update_replaces_entry(self, file_store, config_dir):
        file_store.add_user(RadiusUser("alice", "one"))
        assert file_store.add_user(RadiusUser("alice", "two", simultaneous_use=1)) is False

        text = (config_dir / "mods-config" / "files" / "authorize").read_text()
        assert text.count("# User: alice") == 1
        assert file_store.list_users() == [RadiusUser("alice", "two", None, 1)]

    def test_write_sets_owner_and_mode(self, file_store, host):
        file_store.add_user(RadiusUser("alice", "pw"))
        path = file_store.users_file
        assert ["chown", "freerad:freerad", path] in host.commands("chown")
        assert ["chmod", "640", path] in host.commands("chmod")

    def test_falls_back_to_users_file(self, file_store, config_dir):
        (config_dir / "mods-config" / "files" / "authorize").unlink()
        file_store.add_user(RadiusUser("bob", "pw", group="ops"))
        assert (config_dir / "users").read_text().startswith("# User: bob\n")
        assert file_store.list_groups() == ["ops"]

    def test_delete_missing(self, file_store):
        assert file_store.delete_user("nobody") is False

    def test_backslash_and_quote_round_trip(self, file_store):
        file_store.add_user(RadiusUser("alice", 'a\\b"c', group="x\\y"))
        assert file_store.list_users() == [RadiusUser("alice", 'a\\b"c', "x\\y", None)]

    def test_user_attributes(self, file_store):
        file_store.add_user(RadiusUser("alice", "pw", group="staff"), reply_message="Welcome")
        assert file_store.user_attributes("alice") == [
            ("check", "Cleartext-Password", ":=", "pw"),
            ("check", "Group", ":=", "staff"),
            ("reply", "Reply-Message", ":=", "Welcome"),
        ]
        assert file_store.user_attributes("bob") == []


@pytest.mark.unit
class TestOpenUserStore:
    def test_auto_prefers_sql_when_postgres_runs(self, host, settings):
        host.active_units.add("postgresql")
        assert open_user_store(host, settings).kind == "sql"

    def test_auto_falls_back_to_files(self, host, settings):
        assert open_user_store(host, settings).kind == "files"

    def test_explicit_backend(self, host, settings):
        host.active_units.add("postgresql")
        assert open_user_store(host, settings.with_overrides(backend="files")).kind == "files"


@pytest.mark.unit
class TestRadtest:
    def test_accept(self, host):
        host.binaries.add("radtest")
        host.on(["radtest"], stdout="Received Access-Accept Id 12 from 127.0.0.1:1812\n")
        accepted, text = radtest_user(host, "alice", "pw", "testing123")
        assert accepted is True
        assert "Access-Accept" in text
        assert host.commands("radtest")[0] == ["radtest", "alice", "pw", "localhost", "0", "testing123"]

    def test_reject(self, host):
        host.binaries.add("radtest")
        host.on(["radtest"], stdout="Received Access-Reject Id 3\n", rc=1)
        accepted, _ = radtest_user(host, "alice", "bad", "testing123")
        assert accepted is False

    def test_missing_radtest(self, host):
        with pytest.raises(RuntimeError):
            radtest_user(host, "alice", "pw", "testing123")


@pytest.mark.unit
class TestBatch:
    def test_csv(self, file_store, tmp_path):
        path = tmp_path / "users.csv"
        path.write_text(
            "Username,Password,Group,Operation\n"
            "alice,pw1,staff,add\n"
            "bob,,,add\n"
            "carol,pw3,,update\n"
            "alice,,,delete\n"
            "bad name,pw,,add\n"
            "dave,pw4,,rename\n"
        )
        outcomes = batch_users(file_store, path)

        assert [(o.username, o.operation, o.ok) for o in outcomes] == [
            ("alice", "add", True),
            ("bob", "add", False),
            ("carol", "update", True),
            ("alice", "delete", True),
            ("bad name", "add", False),
            ("dave", "rename", False),
        ]
        assert outcomes[0].detail == "created"
        assert outcomes[3].detail == "deleted"
        assert [u.username for u in file_store.list_users()] == ["carol"]

    def test_json(self, file_store, tmp_path):
        path = tmp_path / "users.json"
        path.write_text(json.dumps([
            {"username": "erin", "password": "pw", "simultaneous_use": 2},
            {"username": "frank", "password": "pw", "group": "ops"},
        ]))
        outcomes = batch_users(file_store, path)
        assert all(o.ok for o in outcomes)
        users = {u.username: u for u in file_store.list_users()}
        assert users["erin"].simultaneous_use == 2
        assert users["frank"].group == "ops"

    def test_missing_username_column(self, file_store, tmp_path):
        path = tmp_path / "users.csv"
        path.write_text("name,password\nalice,pw\n")
        with pytest.raises(ValueError):
            batch_users(file_store, path)

    def test_missing_file(self, file_store, tmp_path):
        with pytest.raises(FileNotFoundError):
            batch_users(file_store, tmp_path / "nope.csv")
