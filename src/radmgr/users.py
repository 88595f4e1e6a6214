# src/radmgr/users.py
from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

import pandas as pd

from .config import Settings
from .conffile import parse_users, remove_user_entry, user_entry_items
from .db import POSTGRES_UNIT, Psql
from .logging import get_logger
from .system import detect_radius_user, find_config_dir, service_is_active
from .templates import render
from .transports.base import ShellHost

__all__ = [
    "RadiusUser",
    "BatchOutcome",
    "validate_username",
    "UserStore",
    "SqlUserStore",
    "FileUserStore",
    "open_user_store",
    "test_user",
    "batch_users",
]

USERNAME_RX = re.compile(r"^[A-Za-z0-9._@-]+$")
BATCH_OPERATIONS = ("add", "update", "delete")

# (kind, attribute, op, value); kind is check, reply or group
Attribute = Tuple[str, str, str, str]


@dataclass
class RadiusUser:
    username: str
    password: Optional[str] = None
    group: Optional[str] = None
    simultaneous_use: Optional[int] = None


@dataclass
class BatchOutcome:
    username: str
    operation: str
    ok: bool
    detail: str = ""


def validate_username(username: str) -> str:
    name = (username or "").strip()
    if not name:
        raise ValueError("Username must not be empty.")
    if not USERNAME_RX.match(name):
        raise ValueError(f"Invalid username {name!r}: use letters, digits, '.', '_', '@' or '-'.")
    return name


class UserStore(Protocol):
    kind: str
    def list_users(self) -> List[RadiusUser]: ...
    def user_exists(self, username: str) -> bool: ...
    def add_user(self, user: RadiusUser) -> bool: ...
    def delete_user(self, username: str) -> bool: ...
    def list_groups(self) -> List[str]: ...
    def user_attributes(self, username: str) -> List[Attribute]: ...


# -----------------------------
# PostgreSQL (radcheck / radusergroup)
# -----------------------------

class SqlUserStore:
    kind = "sql"

    def __init__(self, psql: Psql):
        self.psql = psql

    def list_users(self) -> List[RadiusUser]:
        rows = self.psql.query(
            "SELECT c.username, c.value,\n"
            "  COALESCE((SELECT g.groupname FROM radusergroup g WHERE g.username = c.username\n"
            "            ORDER BY g.priority LIMIT 1), ''),\n"
            "  COALESCE((SELECT s.value FROM radcheck s WHERE s.username = c.username\n"
            "            AND s.attribute = 'Simultaneous-Use' LIMIT 1), '')\n"
            "FROM radcheck c WHERE c.attribute = 'Cleartext-Password' ORDER BY c.username;"
        )
        out: List[RadiusUser] = []
        for row in rows:
            row = row + [""] * (4 - len(row))
            out.append(RadiusUser(
                username=row[0],
                password=row[1],
                group=row[2] or None,
                simultaneous_use=int(row[3]) if row[3].isdigit() else None,
            ))
        return out

    def user_exists(self, username: str) -> bool:
        val = self.psql.scalar(
            "SELECT COUNT(*) FROM radcheck WHERE username = :'username' "
            "AND attribute = 'Cleartext-Password';",
            username=username,
        )
        return int(val or 0) > 0

    def add_user(self, user: RadiusUser) -> bool:
        log = get_logger()
        username = validate_username(user.username)
        if not user.password:
            raise ValueError(f"Password required for user {username}.")

        created = not self.user_exists(username)
        log.info(f"{'Creating new' if created else 'Updating existing'} user {username} in database...")

        sql = [
            "BEGIN;",
            "UPDATE radcheck SET op = ':=', value = :'password'",
            "  WHERE username = :'username' AND attribute = 'Cleartext-Password';",
            "INSERT INTO radcheck (username, attribute, op, value)",
            "  SELECT :'username', 'Cleartext-Password', ':=', :'password'",
            "  WHERE NOT EXISTS (SELECT 1 FROM radcheck WHERE username = :'username'",
            "                    AND attribute = 'Cleartext-Password');",
        ]
        params = {"username": username, "password": user.password}
        if user.group:
            log.info(f"Assigning {username} to group {user.group}")
            sql += [
                "DELETE FROM radusergroup WHERE username = :'username';",
                "INSERT INTO radusergroup (username, groupname, priority)",
                "  VALUES (:'username', :'groupname', 1);",
            ]
            params["groupname"] = user.group
        if user.simultaneous_use:
            sql += [
                "DELETE FROM radcheck WHERE username = :'username' AND attribute = 'Simultaneous-Use';",
                "INSERT INTO radcheck (username, attribute, op, value)",
                "  VALUES (:'username', 'Simultaneous-Use', ':=', :'simuse');",
            ]
            params["simuse"] = str(int(user.simultaneous_use))
        sql.append("COMMIT;")

        self.psql.execute("\n".join(sql), best_effort=False, **params)
        return created

    def delete_user(self, username: str) -> bool:
        username = validate_username(username)
        existed = self.user_exists(username)
        self.psql.execute(
            "BEGIN;\n"
            "DELETE FROM radcheck WHERE username = :'username';\n"
            "DELETE FROM radreply WHERE username = :'username';\n"
            "DELETE FROM radusergroup WHERE username = :'username';\n"
            "COMMIT;",
            best_effort=False, username=username,
        )
        return existed

    def list_groups(self) -> List[str]:
        rows = self.psql.query(
            "SELECT groupname FROM radgroupcheck\n"
            "UNION SELECT groupname FROM radgroupreply\n"
            "UNION SELECT groupname FROM radusergroup\n"
            "ORDER BY 1;"
        )
        return [r[0] for r in rows if r and r[0]]

    def user_attributes(self, username: str) -> List[Attribute]:
        """radcheck, radreply and radusergroup rows for one user."""
        rows = self.psql.query(
            "SELECT 'check', attribute, op, value FROM radcheck WHERE username = :'username'\n"
            "UNION ALL SELECT 'reply', attribute, op, value FROM radreply WHERE username = :'username'\n"
            "UNION ALL SELECT 'group', 'Group', ':=', groupname FROM radusergroup\n"
            "  WHERE username = :'username'\n"
            "ORDER BY 1, 2;",
            username=validate_username(username),
        )
        return [tuple((r + [""] * 4)[:4]) for r in rows]


# -----------------------------
# users file (mods-config/files/authorize)
# -----------------------------

class FileUserStore:
    """
    Entries live in the `files` module's users file. New entries go in front
    of the first DEFAULT entry so catch-all rules keep matching last.
    """
    kind = "files"

    def __init__(self, host: ShellHost, config_dir: str, owner: Optional[str] = None):
        self.host = host
        self.config_dir = config_dir
        self._owner = owner

    @property
    def users_file(self) -> str:
        authorize = posixpath.join(self.config_dir, "mods-config", "files", "authorize")
        if self.host.exists(authorize):
            return authorize
        return posixpath.join(self.config_dir, "users")

    @property
    def owner(self) -> str:
        if self._owner is None:
            self._owner = detect_radius_user(self.host)
        return self._owner

    def _read(self) -> str:
        return self.host.read_text(self.users_file) or ""

    def _write(self, text: str) -> None:
        path = self.users_file
        self.host.write_text(path, text)
        self.host.chown(path, self.owner)
        self.host.chmod(path, 0o640)

    def list_users(self) -> List[RadiusUser]:
        return [
            RadiusUser(e.username, e.password, e.group, e.simultaneous_use)
            for e in parse_users(self._read())
        ]

    def user_exists(self, username: str) -> bool:
        return any(e.username == username for e in parse_users(self._read()))

    def add_user(self, user: RadiusUser, *, reply_message: Optional[str] = None) -> bool:
        username = validate_username(user.username)
        if not user.password:
            raise ValueError(f"Password required for user {username}.")

        text, existed = remove_user_entry(self._read(), username)
        if existed:
            text = _drop_orphan_header(text, username)
        entry = render(
            "user_entry.j2",
            username=username,
            password=user.password,
            group=user.group,
            simultaneous_use=user.simultaneous_use,
            reply_message=reply_message,
        )
        self._write(_insert_before_default(text, entry))
        get_logger().info(f"{'Updated' if existed else 'Added'} {username} in {self.users_file}")
        return not existed

    def delete_user(self, username: str) -> bool:
        username = validate_username(username)
        text, removed = remove_user_entry(self._read(), username)
        if removed:
            text = _drop_orphan_header(text, username)
            self._write(text)
            get_logger().info(f"Removed {username} from {self.users_file}")
        else:
            get_logger().warning(f"User {username} not found in {self.users_file}")
        return removed

    def list_groups(self) -> List[str]:
        return sorted({u.group for u in self.list_users() if u.group})

    def user_attributes(self, username: str) -> List[Attribute]:
        return user_entry_items(self._read(), validate_username(username))


def _insert_before_default(text: str, entry: str) -> str:
    m = re.search(r"^DEFAULT\b", text, re.MULTILINE)
    if m is None:
        sep = "" if not text or text.endswith("\n") else "\n"
        lead = "\n" if text.strip() else ""
        return f"{text}{sep}{lead}{entry}"
    return text[:m.start()] + entry + "\n" + text[m.start():]


def _drop_orphan_header(text: str, username: str) -> str:
    return re.sub(rf"^# User: {re.escape(username)}\n", "", text, flags=re.MULTILINE)


# -----------------------------
# selection / radtest / batch
# -----------------------------

def open_user_store(host: ShellHost, settings: Settings) -> UserStore:
    """backend=sql|files is honoured; auto picks SQL when PostgreSQL is running."""
    backend = settings.backend
    if backend == "auto":
        backend = "sql" if service_is_active(host, POSTGRES_UNIT) else "files"
    if backend == "sql":
        get_logger().debug("Using PostgreSQL user store")
        return SqlUserStore(Psql(host, settings))
    return FileUserStore(host, find_config_dir(host, settings))


def test_user(host: ShellHost, username: str, password: str, secret: str, *,
              server: str = "localhost", nas_port: int = 0) -> Tuple[bool, str]:
    """radtest against the local server; (accepted, radtest output)."""
    if not host.which("radtest"):
        raise RuntimeError("radtest command not found. Install freeradius-utils first.")
    res = host.run(["radtest", username, password, server, str(nas_port), secret], timeout=60)
    accepted = res.ok and "Access-Accept" in res.stdout
    return accepted, res.text


def _cell(row: dict, key: str) -> str:
    val = row.get(key)
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return ""
    return str(val).strip()


def _opt_int(s: str) -> Optional[int]:
    if not s:
        return None
    return int(float(s))


def _read_batch(path: Path) -> pd.DataFrame:
    if not path.is_file():
        raise FileNotFoundError(f"Batch file not found: {path}")
    if path.suffix.lower() == ".json":
        df = pd.read_json(path, orient="records", dtype=False)
    else:
        df = pd.read_csv(path, dtype=str).fillna("")
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "username" not in df.columns:
        raise ValueError(f"Batch file {path} has no 'username' column. Columns seen: {list(df.columns)}")
    return df


def batch_users(store: UserStore, path: str | Path) -> List[BatchOutcome]:
    """
    Apply add/update/delete rows from a CSV or JSON file.
    add of an existing user updates it; update of a missing user creates it.
    A failing row is reported and the batch carries on.
    """
    log = get_logger()
    df = _read_batch(Path(path))
    log.info(f"Found {len(df)} users in batch file.")

    outcomes: List[BatchOutcome] = []
    for row in df.to_dict(orient="records"):
        username = _cell(row, "username")
        op = (_cell(row, "operation") or "add").lower()
        try:
            if op not in BATCH_OPERATIONS:
                raise ValueError(f"Unknown operation: {op}")
            if op == "delete":
                existed = store.delete_user(username)
                outcomes.append(BatchOutcome(username, op, True, "deleted" if existed else "not found"))
                continue

            created = store.add_user(RadiusUser(
                username=username,
                password=_cell(row, "password"),
                group=_cell(row, "group") or None,
                simultaneous_use=_opt_int(_cell(row, "simultaneous_use")),
            ))
            outcomes.append(BatchOutcome(username, op, True, "created" if created else "updated"))
        except (ValueError, RuntimeError) as e:
            log.error(f"{username or '<blank>'}: {e}")
            outcomes.append(BatchOutcome(username, op, False, str(e)))
    return outcomes
