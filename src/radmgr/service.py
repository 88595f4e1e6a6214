# src/radmgr/service.py
from __future__ import annotations

import re
from typing import List, Tuple

from .config import Settings
from .logging import get_logger
from .system import journal_tail, require_freeradius, service_action, wait_for_service
from .transports.base import ShellHost

__all__ = [
    "MANAGE_ACTIONS",
    "manage_service",
    "service_status",
    "listening_ports",
    "view_logs",
    "recent_auth",
]

MANAGE_ACTIONS = ("start", "stop", "restart", "reload")
AUTH_LINE_RX = re.compile(r"Auth:|Login|logout")


def manage_service(host: ShellHost, settings: Settings, action: str, *, delay: float = 2.0) -> None:
    """Run the action, pause, then check the unit reached the expected state."""
    log = get_logger()
    if action not in MANAGE_ACTIONS:
        raise ValueError(f"Unknown service action: {action} (use {', '.join(MANAGE_ACTIONS)})")
    require_freeradius(host)

    log.info(f"{action.capitalize()}ing FreeRADIUS service..." if action != "stop"
             else "Stopping FreeRADIUS service...")
    service_action(host, settings.service, action)

    if action == "stop":
        if not wait_for_service(host, settings.service, active=False, delay=delay):
            raise RuntimeError("Failed to stop FreeRADIUS service.")
        log.info("FreeRADIUS service has been stopped.")
        return

    if not wait_for_service(host, settings.service, active=True, delay=delay):
        log.error("FreeRADIUS service is not running. Recent journal:")
        for line in journal_tail(host, settings.service).splitlines():
            log.error(line)
        raise RuntimeError("FreeRADIUS service is not running.")
    log.info("FreeRADIUS service is now running.")


def service_status(host: ShellHost, settings: Settings) -> str:
    require_freeradius(host)
    return host.run(["systemctl", "status", settings.service, "--no-pager"]).text


def listening_ports(host: ShellHost, settings: Settings) -> List[str]:
    """Socket lines for the auth/acct ports, from ss or netstat."""
    for tool in ("ss", "netstat"):
        if host.which(tool):
            res = host.run([tool, "-tuln"])
            break
    else:
        raise RuntimeError("Cannot check listening ports: ss or netstat not available.")

    wanted = (f":{settings.auth_port}", f":{settings.acct_port}")
    return [ln for ln in res.lines() if any(p in ln for p in wanted)]


def view_logs(host: ShellHost, settings: Settings, lines: int = 50) -> Tuple[str, str]:
    """(source, text): the log file tail, or the journal when the file is missing."""
    if host.is_file(settings.log_file):
        res = host.run(["tail", "-n", str(lines), settings.log_file])
        return settings.log_file, res.stdout
    get_logger().info(f"Log file {settings.log_file} not found. Checking system logs...")
    return f"journalctl -u {settings.service}", journal_tail(host, settings.service, lines)


def recent_auth(host: ShellHost, settings: Settings, lines: int = 20) -> List[str]:
    _, text = view_logs(host, settings, lines)
    return [ln for ln in text.splitlines() if AUTH_LINE_RX.search(ln)]
