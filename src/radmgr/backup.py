# src/radmgr/backup.py
from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .config import Settings
from .db import POSTGRES_UNIT, Psql
from .logging import get_logger
from .system import (
    find_config_dir,
    fix_permissions,
    journal_tail,
    require_freeradius,
    service_action,
    service_is_active,
    timestamp,
    wait_for_service,
)
from .transports.base import CommandError, ShellHost

__all__ = [
    "BackupInfo",
    "backup_config",
    "list_backups",
    "resolve_backup",
    "restore_database",
    "restore_config",
]

ARCHIVE_RX = re.compile(r"^radius-backup-(\d{14})\.tar\.gz$")
DUMP_RX = re.compile(r"^radius-db-\d{14}\.sql$")


@dataclass
class BackupInfo:
    path: str
    size: int
    with_database: Optional[bool] = None
    created: Optional[datetime] = None

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def human_size(self) -> str:
        size = float(self.size)
        for unit in ("B", "K", "M"):
            if size < 1024:
                return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
            size /= 1024
        return f"{size:.1f}G"


def _parse_ts(ts: str) -> Optional[datetime]:
    try:
        return datetime.strptime(ts, "%Y%m%d%H%M%S")
    except ValueError:
        return None


def backup_config(host: ShellHost, settings: Settings, *, psql: Optional[Psql] = None) -> BackupInfo:
    """One tar.gz with the config directory and, when PostgreSQL runs, a pg_dump."""
    log = get_logger()
    require_freeradius(host)
    config_dir = find_config_dir(host, settings)
    backup_dir = settings.backup_dir
    host.mkdir(backup_dir)

    ts = timestamp()
    archive = posixpath.join(backup_dir, f"radius-backup-{ts}.tar.gz")
    dump_name = f"radius-db-{ts}.sql"
    dump_path = posixpath.join(backup_dir, dump_name)

    with_db = False
    if service_is_active(host, POSTGRES_UNIT):
        log.info("Backing up PostgreSQL database...")
        try:
            (psql or Psql(host, settings)).dump(dump_path)
            with_db = True
        except CommandError as e:
            log.warning(f"Database dump failed, archiving configuration only: {e}")
            host.remove(dump_path)

    log.info("Backing up configuration files...")
    argv = ["tar", "-czf", archive,
            "-C", posixpath.dirname(config_dir), posixpath.basename(config_dir)]
    if with_db:
        argv += ["-C", backup_dir, dump_name]
    res = host.run(argv, timeout=1800)
    if with_db:
        host.remove(dump_path)

    if not host.is_file(archive):
        raise RuntimeError(f"Backup failed: {res.stderr.strip() or 'archive not created'}")
    if not res.ok:
        log.warning(f"tar reported problems: {res.stderr.strip()}")

    host.chmod(archive, 0o640)
    info = BackupInfo(archive, host.file_size(archive), with_db, _parse_ts(ts))
    log.info(f"Backup completed: {archive} ({info.human_size})")
    return info


def list_backups(host: ShellHost, settings: Settings) -> List[BackupInfo]:
    """Archives in the backup directory, newest first."""
    out: List[BackupInfo] = []
    for name in host.listdir(settings.backup_dir):
        m = ARCHIVE_RX.match(name)
        if not m:
            continue
        path = posixpath.join(settings.backup_dir, name)
        out.append(BackupInfo(path, host.file_size(path), created=_parse_ts(m.group(1))))
    out.sort(key=lambda b: b.name, reverse=True)
    return out


def resolve_backup(host: ShellHost, settings: Settings, name: str) -> str:
    path = name if posixpath.isabs(name) else posixpath.join(settings.backup_dir, name)
    if not host.is_file(path):
        raise FileNotFoundError(f"Backup file not found: {path}")
    return path


def restore_database(host: ShellHost, settings: Settings, dump_path: str, *,
                     psql: Optional[Psql] = None) -> None:
    """Safety dump of the current database, then drop/recreate and import."""
    log = get_logger()
    psql = psql or Psql(host, settings)

    safety = posixpath.join(settings.backup_dir, f"radius-db-before-restore-{timestamp()}.sql")
    try:
        psql.dump(safety)
        log.info(f"Current database saved to {safety}")
    except CommandError as e:
        log.warning(f"Could not dump the current database before restore: {e}")

    if psql.database_exists():
        log.info(f"Dropping existing {settings.db_name} database...")
        psql.drop_database()
    elif not psql.role_exists():
        log.info(f"Creating role {settings.db_user}...")
        psql.create_role()
    log.info(f"Creating {settings.db_name} database...")
    psql.create_database()

    log.info("Importing database from backup...")
    res = psql.restore(dump_path)
    if not res.ok:
        raise CommandError(res)
    log.info("Database restored.")


def _swap_config(host: ShellHost, saved: str, config_dir: str) -> None:
    """Replace config_dir with the extracted copy; on failure put the old one back."""
    log = get_logger()
    log.info("Restoring configuration files...")
    old = f"{config_dir}.old.{timestamp()}"
    host.move(config_dir, old).check()
    try:
        host.mkdir(config_dir)
        host.run(["cp", "-a", f"{saved}/.", f"{config_dir}/"], check=True)
    except (RuntimeError, OSError):
        log.error(f"Copying the backup failed, putting back {old}")
        host.remove(config_dir, recursive=True)
        host.move(old, config_dir).check()
        raise
    log.info(f"Previous configuration kept at {old}")
    log.info("Configuration files restored.")


def _unpack(host: ShellHost, settings: Settings, path: str, config_dir: Optional[str],
            psql: Optional[Psql]) -> None:
    log = get_logger()
    tmp = host.run(["mktemp", "-d"], check=True).stdout.strip()
    try:
        log.info("Extracting backup...")
        host.run(["tar", "-xzf", path, "-C", tmp], check=True, timeout=1800)
        entries = host.listdir(tmp)

        saved = next((posixpath.join(tmp, e) for e in entries
                      if host.is_dir(posixpath.join(tmp, e))), None)
        if saved and config_dir:
            _swap_config(host, saved, config_dir)
        else:
            log.warning("No configuration files found in backup or current system.")

        dump = next((posixpath.join(tmp, e) for e in entries if DUMP_RX.match(e)), None)
        if dump and service_is_active(host, POSTGRES_UNIT):
            log.info("Restoring database...")
            restore_database(host, settings, dump, psql=psql)
        elif dump:
            log.warning("Database backup found but PostgreSQL is not active.")
        else:
            log.warning("No database backup found.")
    finally:
        log.info("Cleaning up temporary files...")
        host.remove(tmp, recursive=True)


def restore_config(host: ShellHost, settings: Settings, backup: str, *,
                   psql: Optional[Psql] = None, delay: float = 2.0) -> bool:
    """
    Restore configuration (and database, when the archive has a dump).
    The current config directory is kept as <dir>.old.<ts>. Returns whether
    FreeRADIUS is running afterwards. When the restore fails FreeRADIUS is
    started again on whatever configuration is in place and the error is
    re-raised.
    """
    log = get_logger()
    require_freeradius(host)
    path = resolve_backup(host, settings, backup)
    log.info(f"Restoring from backup: {path}")

    log.info("Stopping FreeRADIUS service...")
    service_action(host, settings.service, "stop")

    config_dir = find_config_dir(host, settings, required=False)
    try:
        _unpack(host, settings, path, config_dir, psql)
    except (RuntimeError, OSError):
        log.error("Restore failed, starting FreeRADIUS again...")
        service_action(host, settings.service, "start")
        raise

    if config_dir:
        log.info("Setting proper permissions...")
        fix_permissions(host, config_dir)

    log.info("Starting FreeRADIUS service...")
    service_action(host, settings.service, "start")
    if wait_for_service(host, settings.service, active=True, delay=delay):
        log.info("FreeRADIUS service is now running. Restoration completed successfully.")
        return True

    log.error("FreeRADIUS service failed to start after restore.")
    for line in journal_tail(host, settings.service).splitlines():
        log.error(line)
    return False
