# src/radmgr/db.py
"""
PostgreSQL access through the psql client.

SQL is sent on stdin and every value is bound with a psql variable
(`:'name'` for literals, `:"name"` for identifiers) passed as `-v name=value`,
so nothing supplied on the command line is spliced into SQL text.
"""
from __future__ import annotations

import re
import shlex
from typing import List, Optional

from .config import Settings
from .logging import get_logger
from .system import backup_file, service_action, service_is_active
from .templates import read_static
from .transports.base import CommandError, CommandResult, ShellHost

__all__ = ["Psql", "ensure_hba_entry", "setup_database", "POSTGRES_UNIT"]

POSTGRES_UNIT = "postgresql"
_ADMIN_DB = "postgres"


class Psql:
    def __init__(self, host: ShellHost, settings: Settings):
        self.host = host
        self.settings = settings

    # ---- plumbing ----

    def _as_superuser(self) -> List[str]:
        return ["runuser", "-u", self.settings.pg_superuser, "--"]

    def argv(self, db: Optional[str] = None, **params) -> List[str]:
        argv = self._as_superuser() + [
            "psql", "-X", "-q", "-A", "-t", "-F", "\t",
            "-v", "ON_ERROR_STOP=1",
            "-d", db or self.settings.db_name,
        ]
        for name, value in params.items():
            argv += ["-v", f"{name}={'' if value is None else value}"]
        return argv

    def run(self, sql: str, *, db: Optional[str] = None, check: bool = False, **params) -> CommandResult:
        return self.host.run(self.argv(db, **params), input=sql, check=check)

    def query(self, sql: str, *, db: Optional[str] = None, **params) -> List[List[str]]:
        res = self.run(sql, db=db, check=True, **params)
        return [line.split("\t") for line in res.stdout.splitlines() if line.strip()]

    def scalar(self, sql: str, *, db: Optional[str] = None, **params) -> Optional[str]:
        rows = self.query(sql, db=db, **params)
        return rows[0][0].strip() if rows and rows[0] else None

    def execute(self, sql: str, *, db: Optional[str] = None, best_effort: bool = True, **params) -> bool:
        """Run a statement. Best-effort failures are logged and reported as False."""
        res = self.run(sql, db=db, **params)
        if res.ok:
            return True
        if not best_effort:
            raise CommandError(res)
        get_logger().warning(f"psql failed: {(res.stderr or res.stdout).strip()}")
        return False

    # ---- catalog probes ----

    def role_exists(self, role: Optional[str] = None) -> bool:
        return self.scalar(
            "SELECT 1 FROM pg_roles WHERE rolname = :'role';",
            db=_ADMIN_DB, role=role or self.settings.db_user,
        ) == "1"

    def database_exists(self, name: Optional[str] = None) -> bool:
        return self.scalar(
            "SELECT 1 FROM pg_database WHERE datname = :'dbname';",
            db=_ADMIN_DB, dbname=name or self.settings.db_name,
        ) == "1"

    def table_count(self) -> int:
        val = self.scalar(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public';"
        )
        return int(val or 0)

    def table_exists(self, table: str) -> bool:
        try:
            return self.scalar("SELECT to_regclass(:'tbl') IS NOT NULL;", tbl=table) == "t"
        except CommandError as e:
            get_logger().debug(f"to_regclass({table}) failed: {e}")
            return False

    def hba_file(self) -> Optional[str]:
        return self.scalar("SHOW hba_file;", db=_ADMIN_DB)

    # ---- DDL ----

    def create_role(self, role: Optional[str] = None, password: Optional[str] = None) -> None:
        self.execute(
            "CREATE ROLE :\"role\" WITH LOGIN PASSWORD :'password';",
            db=_ADMIN_DB, best_effort=False,
            role=role or self.settings.db_user,
            password=password if password is not None else self.settings.db_password,
        )

    def create_database(self, name: Optional[str] = None, owner: Optional[str] = None) -> None:
        self.execute(
            "CREATE DATABASE :\"dbname\" WITH OWNER :\"owner\";",
            db=_ADMIN_DB, best_effort=False,
            dbname=name or self.settings.db_name, owner=owner or self.settings.db_user,
        )

    def drop_database(self, name: Optional[str] = None) -> bool:
        return self.execute(
            "DROP DATABASE IF EXISTS :\"dbname\";",
            db=_ADMIN_DB, dbname=name or self.settings.db_name,
        )

    def drop_role(self, role: Optional[str] = None) -> bool:
        return self.execute(
            "DROP ROLE IF EXISTS :\"role\";",
            db=_ADMIN_DB, role=role or self.settings.db_user,
        )

    def load_schema(self) -> None:
        self.execute(read_static("schema.sql"), best_effort=False)

    def grant_privileges(self) -> bool:
        ok = self.execute(
            "GRANT ALL PRIVILEGES ON DATABASE :\"dbname\" TO :\"role\";",
            db=_ADMIN_DB, dbname=self.settings.db_name, role=self.settings.db_user,
        )
        ok &= self.execute(
            "GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA public TO :\"role\";\n"
            "GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA public TO :\"role\";",
            role=self.settings.db_user,
        )
        return ok

    # ---- dump / restore ----

    def dump(self, path: str) -> None:
        """pg_dump runs as the superuser; the redirect is done by the privileged shell."""
        cmd = " ".join(shlex.quote(a) for a in self._as_superuser() + ["pg_dump", self.settings.db_name])
        self.host.sh(f"{cmd} > {shlex.quote(path)}", check=True)

    def restore(self, path: str) -> CommandResult:
        cmd = " ".join(
            shlex.quote(a)
            for a in self._as_superuser() + ["psql", "-X", "-q", "-d", self.settings.db_name]
        )
        return self.host.sh(f"{cmd} < {shlex.quote(path)}")


# -----------------------------
# pg_hba.conf
# -----------------------------

def ensure_hba_entry(text: str, db: str, user: str, *, address: str = "127.0.0.1/32",
                     method: str = "md5") -> tuple[str, bool]:
    """
    Insert `host db user address method` before the first `host` rule unless a
    password rule for that db/user already exists. Returns (new_text, changed).
    """
    rx = re.compile(
        rf"^\s*host\s+{re.escape(db)}\s+{re.escape(user)}\s+\S+\s+(md5|scram-sha-256|password)\b",
        re.MULTILINE,
    )
    if rx.search(text):
        return text, False

    entry = f"host    {db:<15} {user:<15} {address:<23} {method}\n"
    m = re.search(r"^host\s", text, re.MULTILINE)
    if m:
        return text[:m.start()] + entry + text[m.start():], True
    sep = "" if not text or text.endswith("\n") else "\n"
    return f"{text}{sep}{entry}", True


# -----------------------------
# install-time flow
# -----------------------------

def setup_database(host: ShellHost, settings: Settings, psql: Optional[Psql] = None) -> Psql:
    """Role, database, schema, pg_hba rule and grants for FreeRADIUS. Safe to re-run."""
    log = get_logger()
    psql = psql or Psql(host, settings)

    log.info("Starting PostgreSQL service...")
    service_action(host, POSTGRES_UNIT, "start")
    service_action(host, POSTGRES_UNIT, "enable")
    if not service_is_active(host, POSTGRES_UNIT):
        raise RuntimeError("PostgreSQL service is not running. Cannot continue with database setup.")

    if psql.role_exists():
        log.info(f"PostgreSQL role '{settings.db_user}' already exists.")
    else:
        log.info(f"Creating PostgreSQL role '{settings.db_user}'...")
        psql.create_role()

    if psql.database_exists():
        log.info(f"Database '{settings.db_name}' already exists.")
    else:
        log.info(f"Creating '{settings.db_name}' database...")
        psql.create_database()

    if psql.table_count() == 0:
        log.info("Importing database schema...")
        psql.load_schema()
    else:
        log.info("Database schema already exists. Skipping import.")

    hba_path = psql.hba_file()
    hba_text = host.read_text(hba_path) if hba_path else None
    if hba_text is None:
        log.warning("Could not read pg_hba.conf; password login for the radius role may fail.")
    else:
        new_text, changed = ensure_hba_entry(hba_text, settings.db_name, settings.db_user)
        if changed:
            log.info(f"Adding {settings.db_user} entry to {hba_path}...")
            backup_file(host, hba_path)
            host.write_text(hba_path, new_text)
            service_action(host, POSTGRES_UNIT, "reload")

    log.info(f"Granting privileges to {settings.db_user}...")
    if not psql.grant_privileges():
        log.warning("Some GRANT statements failed; see messages above.")
    return psql
