# src/radmgr/cleanup.py
from __future__ import annotations

from typing import List

from .config import Settings
from .db import POSTGRES_UNIT, Psql
from .logging import get_logger
from .system import installed_packages, service_action, service_is_active
from .transports.base import ShellHost

__all__ = ["uninstall"]

_APT_PURGE = ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "purge", "--auto-remove", "-y"]
FREERADIUS_PATHS = ("/etc/freeradius", "/etc/raddb", "/var/lib/freeradius", "/var/log/freeradius")
POSTGRES_PATHS = ("/var/lib/postgresql",)


def _purge(host: ShellHost, pattern: str) -> List[str]:
    pkgs = [p for p, _ in installed_packages(host, pattern)]
    if not pkgs:
        get_logger().info(f"No installed packages match {pattern}")
        return []
    res = host.run(_APT_PURGE + pkgs, timeout=1800)
    if not res.ok:
        get_logger().warning(f"apt-get purge failed: {res.stderr.strip()}")
    return pkgs


def uninstall(host: ShellHost, settings: Settings, *, remove_postgresql: bool = False) -> List[str]:
    """
    Remove FreeRADIUS, its configuration and logs. The radius database and
    role are dropped, or PostgreSQL is purged entirely with remove_postgresql.
    Backups under settings.backup_dir are left alone. Returns purged packages.
    """
    log = get_logger()
    purged: List[str] = []

    log.info("Stopping FreeRADIUS service...")
    service_action(host, settings.service, "stop")

    if not remove_postgresql and service_is_active(host, POSTGRES_UNIT):
        log.info("Removing only the RADIUS database...")
        psql = Psql(host, settings)
        psql.drop_database()
        psql.drop_role()

    log.info("Removing FreeRADIUS packages...")
    purged += _purge(host, "freeradius*")

    if remove_postgresql:
        log.info("Stopping PostgreSQL service...")
        service_action(host, POSTGRES_UNIT, "stop")
        log.info("Removing PostgreSQL packages...")
        purged += _purge(host, "postgresql*")
        for path in POSTGRES_PATHS:
            log.info(f"Removing {path}...")
            host.remove(path, recursive=True)

    log.info("Removing FreeRADIUS configuration and log files...")
    extra = [p for p in (settings.config_dir, settings.log_dir) if p and "radius" in p.lower()]
    for path in list(FREERADIUS_PATHS) + extra:
        host.remove(path, recursive=True)

    log.info("FreeRADIUS has been removed from this system.")
    return purged
