# src/radmgr/system.py
"""
Host facts and the handful of system-level actions every command shares:
root check, config directory discovery, package/service management and
ownership fixes.
"""
from __future__ import annotations

import posixpath
import time
from datetime import datetime
from typing import Iterable, List, Optional

from .config import Settings
from .logging import get_logger
from .transports.base import CommandResult, ShellHost

__all__ = [
    "timestamp",
    "require_root",
    "find_config_dir",
    "freeradius_installed",
    "require_freeradius",
    "installed_packages",
    "detect_radius_user",
    "service_is_active",
    "service_action",
    "wait_for_service",
    "journal_tail",
    "apt_update",
    "apt_install",
    "apt_purge",
    "fix_permissions",
    "backup_file",
]

RADIUS_USERS = ("freerad", "radiusd")
SERVICE_ACTIONS = ("start", "stop", "restart", "reload", "enable")


def timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def require_root(host: ShellHost) -> None:
    if not host.is_privileged():
        raise RuntimeError(
            f"{host.name}: radmgr must be run as root "
            "(use sudo locally, or SSH as root / with passwordless sudo)."
        )


def find_config_dir(host: ShellHost, settings: Settings, *, required: bool = True) -> Optional[str]:
    """First existing candidate wins; an explicit settings.config_dir short-circuits."""
    if settings.config_dir:
        if host.is_dir(settings.config_dir):
            return settings.config_dir
        if required:
            raise FileNotFoundError(f"FreeRADIUS configuration directory not found: {settings.config_dir}")
        return None

    for cand in settings.config_dir_candidates:
        if host.is_dir(cand):
            return cand

    if required:
        raise FileNotFoundError(
            "Cannot find FreeRADIUS configuration directory "
            f"(looked in {', '.join(settings.config_dir_candidates)})."
        )
    return None


def installed_packages(host: ShellHost, pattern: str = "freeradius*") -> List[tuple[str, str]]:
    """(package, version) pairs of installed packages matching the dpkg glob."""
    res = host.run(["dpkg-query", "-W", "-f", "${Status}\t${Package}\t${Version}\n", pattern])
    out: List[tuple[str, str]] = []
    for line in res.stdout.splitlines():
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        status, pkg, version = parts
        if status.strip().endswith(" installed"):
            out.append((pkg.strip(), version.strip()))
    return out


def freeradius_installed(host: ShellHost) -> bool:
    return any(pkg == "freeradius" for pkg, _ in installed_packages(host))


def require_freeradius(host: ShellHost) -> None:
    if not freeradius_installed(host):
        raise RuntimeError("FreeRADIUS is not installed. Please run `radmgr install` first.")


def detect_radius_user(host: ShellHost) -> str:
    res = host.run(["getent", "group"])
    names = {line.split(":", 1)[0] for line in res.stdout.splitlines() if ":" in line}
    for candidate in RADIUS_USERS:
        if candidate in names:
            return candidate
    return RADIUS_USERS[0]


# -----------------------------
# systemd
# -----------------------------

def service_is_active(host: ShellHost, unit: str) -> bool:
    return host.run(["systemctl", "is-active", "--quiet", unit]).ok


def service_action(host: ShellHost, unit: str, action: str) -> CommandResult:
    if action not in SERVICE_ACTIONS:
        raise ValueError(f"Unknown service action: {action} (use {', '.join(SERVICE_ACTIONS)})")
    verb = "reload-or-restart" if action == "reload" else action
    res = host.run(["systemctl", verb, unit])
    if not res.ok:
        get_logger().warning(f"systemctl {verb} {unit} failed: {res.stderr.strip()}")
    return res


def wait_for_service(host: ShellHost, unit: str, *, active: bool = True, delay: float = 2.0) -> bool:
    """Give systemd a moment, then report whether the unit reached the wanted state."""
    if delay:
        time.sleep(delay)
    return service_is_active(host, unit) == active


def journal_tail(host: ShellHost, unit: str, lines: int = 20) -> str:
    res = host.run(["journalctl", "-u", unit, "-n", str(lines), "--no-pager"])
    return res.stdout


# -----------------------------
# apt
# -----------------------------

_APT = ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get"]


def apt_update(host: ShellHost) -> CommandResult:
    return host.run(_APT + ["update", "-qq"])


def apt_install(host: ShellHost, packages: Iterable[str], *, check: bool = True) -> CommandResult:
    pkgs = list(packages)
    get_logger().info(f"Installing packages: {' '.join(pkgs)}")
    return host.run(_APT + ["install", "-y"] + pkgs, check=check, timeout=1800)


def apt_purge(host: ShellHost, packages: Iterable[str]) -> CommandResult:
    pkgs = list(packages)
    res = host.run(_APT + ["remove", "--purge", "-y"] + pkgs, timeout=1800)
    if not res.ok:
        get_logger().warning(f"apt-get purge {' '.join(pkgs)} failed: {res.stderr.strip()}")
    return res


# -----------------------------
# files
# -----------------------------

def fix_permissions(host: ShellHost, config_dir: str, owner: Optional[str] = None) -> str:
    """dirs 755, files 644, clients.conf 640, everything owned by the radius user."""
    owner = owner or detect_radius_user(host)
    steps = [
        ["find", config_dir, "-type", "d", "-exec", "chmod", "755", "{}", "+"],
        ["find", config_dir, "-type", "f", "-exec", "chmod", "644", "{}", "+"],
        ["chown", "-R", f"{owner}:{owner}", config_dir],
    ]
    for argv in steps:
        res = host.run(argv)
        if not res.ok:
            get_logger().warning(f"{' '.join(argv[:2])} on {config_dir} failed: {res.stderr.strip()}")

    clients_conf = posixpath.join(config_dir, "clients.conf")
    if host.is_file(clients_conf):
        host.chmod(clients_conf, 0o640)
        host.chown(clients_conf, owner)
    return owner


def backup_file(host: ShellHost, path: str, suffix: str = "orig") -> Optional[str]:
    """cp -a path path.<suffix>.<ts>; returns the copy's path or None."""
    if not host.exists(path):
        return None
    dst = f"{path}.{suffix}.{timestamp()}"
    res = host.copy(path, dst)
    if not res.ok:
        get_logger().warning(f"Could not back up {path}: {res.stderr.strip()}")
        return None
    get_logger().info(f"Backed up {path} -> {dst}")
    return dst
