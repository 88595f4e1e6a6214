# src/radmgr/diagnostics.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from .config import Settings
from .db import POSTGRES_UNIT, Psql
from .logging import get_logger
from .system import find_config_dir, installed_packages, journal_tail, service_is_active
from .transports.base import CommandError, ShellHost

__all__ = ["CheckResult", "check_database", "run_diagnostics"]

ERROR_RX = re.compile(r"error", re.IGNORECASE)


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ""
    severity: str = "error"     # error | warning | info

    @property
    def status(self) -> str:
        if self.ok:
            return "OK"
        return "WARN" if self.severity == "warning" else "FAIL"


def check_database(host: ShellHost, settings: Settings, psql: Optional[Psql] = None) -> List[CheckResult]:
    """Stops at the first failing check; each one needs the previous to pass."""
    log = get_logger()
    log.info("Checking database connection...")
    out: List[CheckResult] = []

    active = service_is_active(host, POSTGRES_UNIT)
    out.append(CheckResult("PostgreSQL service", active, "RUNNING" if active else "NOT RUNNING"))
    if not active:
        return out

    psql = psql or Psql(host, settings)
    try:
        found = psql.database_exists()
        out.append(CheckResult(f"Database {settings.db_name}", found, "FOUND" if found else "NOT FOUND"))
        if not found:
            return out

        role = psql.role_exists()
        out.append(CheckResult(f"Database user {settings.db_user}", role, "FOUND" if role else "NOT FOUND"))
        if not role:
            return out

        tables = psql.table_count()
        out.append(CheckResult("Database tables", tables > 0,
                               f"{tables} tables found" if tables else "NOT FOUND"))
        if tables and psql.table_exists("radcheck"):
            users = psql.scalar(
                "SELECT COUNT(DISTINCT username) FROM radcheck "
                "WHERE attribute = 'Cleartext-Password';"
            )
            out.append(CheckResult("RADIUS users in database", True, f"{users or 0}", "info"))
    except CommandError as e:
        out.append(CheckResult("psql", False, str(e)))
    return out


def _config_syntax(host: ShellHost) -> CheckResult:
    for binary in ("radiusd", "freeradius"):
        if host.which(binary):
            res = host.run([binary, "-XC"], timeout=120)
            errors = [ln for ln in res.text.splitlines() if ERROR_RX.search(ln)]
            if res.ok and not errors:
                return CheckResult("Configuration syntax", True, "No syntax errors found.")
            detail = "\n".join(errors[-10:]) or res.text.strip()[-500:]
            return CheckResult("Configuration syntax", False, detail)
    return CheckResult("Configuration syntax", False, "freeradius/radiusd binary not found", "warning")


def _firewall(host: ShellHost, settings: Settings) -> Optional[CheckResult]:
    ports = (str(settings.auth_port), str(settings.acct_port))
    if host.which("ufw"):
        res = host.run(["ufw", "status"])
        name = "UFW firewall"
    elif host.which("firewall-cmd"):
        res = host.run(["firewall-cmd", "--list-ports"])
        name = "FirewallD"
    else:
        return None
    lines = [ln for ln in res.text.splitlines() if any(p in ln for p in ports)]
    if lines:
        return CheckResult(name, True, "; ".join(ln.strip() for ln in lines), "info")
    return CheckResult(name, False, f"No RADIUS ports found in {name} rules.", "warning")


def _log_errors(host: ShellHost, settings: Settings) -> CheckResult:
    text = host.read_text(settings.log_file) if host.is_file(settings.log_file) else None
    source = settings.log_file
    if text is None:
        source = "journal"
        text = journal_tail(host, settings.service, 500)
    errors = [ln for ln in text.splitlines() if ERROR_RX.search(ln)][-5:]
    if not errors:
        return CheckResult(f"Log file ({source})", True, "No errors found", "info")
    return CheckResult(f"Log file ({source})", False, "\n".join(errors), "warning")


def run_diagnostics(host: ShellHost, settings: Settings, psql: Optional[Psql] = None) -> List[CheckResult]:
    log = get_logger()
    out: List[CheckResult] = []

    log.info("Checking installation...")
    pkgs = installed_packages(host)
    installed = any(p == "freeradius" for p, _ in pkgs)
    out.append(CheckResult(
        "FreeRADIUS installation", installed,
        "\n".join(f"{p} - {v}" for p, v in pkgs) if installed else "NOT INSTALLED",
    ))
    if not installed:
        return out

    log.info("Checking service status...")
    running = service_is_active(host, settings.service)
    out.append(CheckResult("FreeRADIUS service", running, "RUNNING" if running else "NOT RUNNING"))

    log.info("Checking configuration...")
    config_dir = find_config_dir(host, settings, required=False)
    out.append(CheckResult("Configuration directory", config_dir is not None, config_dir or "NOT FOUND"))

    out += check_database(host, settings, psql)

    log.info("Checking log files...")
    out.append(_log_errors(host, settings))

    log.info("Checking for common issues...")
    if host.which("getenforce"):
        mode = host.run(["getenforce"]).stdout.strip()
        out.append(CheckResult(
            "SELinux", mode != "Enforcing",
            mode if mode != "Enforcing" else "Enforcing; this might cause permission issues",
            "warning",
        ))
    fw = _firewall(host, settings)
    if fw is not None:
        out.append(fw)
    out.append(_config_syntax(host))
    return out
