# src/radmgr/repair.py
from __future__ import annotations

import posixpath

from .config import Settings
from .conffile import brace_balance
from .logging import get_logger
from .system import (
    backup_file,
    find_config_dir,
    fix_permissions,
    journal_tail,
    require_freeradius,
    service_action,
    wait_for_service,
)
from .templates import render
from .transports.base import ShellHost

__all__ = ["fix_log_dir", "repair_openvpn_policy", "fix_installation"]


def fix_log_dir(host: ShellHost, settings: Settings, owner: str) -> None:
    host.mkdir(settings.log_dir)
    if not host.exists(settings.log_file):
        host.write_text(settings.log_file, "")
    host.chmod(settings.log_dir, 0o755)
    host.chmod(settings.log_file, 0o644)
    res = host.chown(settings.log_dir, owner, recursive=True)
    if not res.ok:
        get_logger().warning(f"chown {settings.log_dir} failed: {res.stderr.strip()}")


def repair_openvpn_policy(host: ShellHost, config_dir: str, owner: str) -> bool:
    """Rewrite policy.d/openvpn from the template when its braces do not balance."""
    log = get_logger()
    path = posixpath.join(config_dir, "policy.d", "openvpn")
    text = host.read_text(path)
    if text is None:
        return False

    log.info("Checking OpenVPN policy syntax...")
    if brace_balance(text) == 0:
        return False

    log.info("Found mismatched braces in OpenVPN policy. Fixing...")
    backup_file(host, path, suffix="broken")
    host.write_text(path, render("openvpn_policy.j2"))
    host.chown(path, owner)
    host.chmod(path, 0o644)
    return True


def fix_installation(host: ShellHost, settings: Settings, *, delay: float = 2.0) -> bool:
    """
    Permissions, log directory and the OpenVPN policy, then a stop/start.
    Returns whether the service came back up.
    """
    log = get_logger()
    require_freeradius(host)
    log.info("Checking for common issues...")

    config_dir = find_config_dir(host, settings)
    log.info("Fixing directory permissions...")
    owner = fix_permissions(host, config_dir)
    fix_log_dir(host, settings, owner)
    repair_openvpn_policy(host, config_dir, owner)

    log.info("Restarting FreeRADIUS service...")
    service_action(host, settings.service, "stop")
    wait_for_service(host, settings.service, active=False, delay=delay)
    service_action(host, settings.service, "start")

    if wait_for_service(host, settings.service, active=True, delay=0):
        log.info("FreeRADIUS service is now running.")
        return True

    log.error("FreeRADIUS service failed to start.")
    for line in journal_tail(host, settings.service).splitlines():
        log.error(line)
    return False
