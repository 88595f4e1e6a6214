# src/radmgr/install.py
"""
`radmgr install`: packages, PostgreSQL, FreeRADIUS configuration, test user,
firewall and service start. Each step can be re-run on its own.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .config import Settings
from .conffile import ensure_in_section, set_option
from .db import POSTGRES_UNIT, Psql, setup_database
from .logging import get_logger
from .progress import StepProgress
from .system import (
    apt_install,
    apt_purge,
    apt_update,
    backup_file,
    detect_radius_user,
    find_config_dir,
    fix_permissions,
    freeradius_installed,
    journal_tail,
    service_action,
    service_is_active,
    wait_for_service,
)
from .templates import render
from .transports.base import ShellHost
from .users import FileUserStore, RadiusUser, SqlUserStore

__all__ = [
    "InstallSummary",
    "DB_TYPES",
    "packages_for",
    "install_freeradius",
    "create_directory_structure",
    "configure_sql_module",
    "configure_main_settings",
    "configure_default_clients",
    "create_test_user",
    "configure_firewall",
]

DB_TYPES = ("postgresql", "none")
BASE_PACKAGES = ["freeradius", "freeradius-utils"]
PG_PACKAGES = ["freeradius-postgresql", "postgresql", "postgresql-client"]
REMOVE_PACKAGES = ["freeradius", "freeradius-postgresql", "freeradius-utils"]
DAEMON_BINARIES = ("freeradius", "radiusd")
SQL_SECTIONS = ("authorize", "accounting", "session", "post-auth")
SQL_SITES = ("default", "inner-tunnel")
MAIN_SETTINGS = (("max_requests", 4096), ("max_request_time", 30), ("max_servers", 12))
DEFAULT_CONFIG_DIR = "/etc/freeradius/3.0"
TEST_REPLY_MESSAGE = "Hello, %{User-Name}"


@dataclass
class InstallSummary:
    config_dir: str
    db_type: str
    test_user: str
    test_password: str
    radius_secret: str
    openvpn_secret: str
    database: Optional[Tuple[str, str, str]] = None    # (name, user, password)
    warnings: List[str] = field(default_factory=list)

    def lines(self) -> List[str]:
        out = [
            "FreeRADIUS has been successfully installed and configured!",
            "",
            "Default test user created:",
            f"  Username: {self.test_user}",
            f"  Password: {self.test_password}",
            "",
            f"Default client shared secret for localhost: {self.radius_secret}",
            f"Default client shared secret for OpenVPN: {self.openvpn_secret}",
        ]
        if self.database:
            name, user, password = self.database
            out += ["", "PostgreSQL database details:",
                    f"  Database: {name}", f"  Username: {user}", f"  Password: {password}"]
        out += [
            "",
            "To verify your installation, run:",
            f"  radtest {self.test_user} {self.test_password} localhost 0 {self.radius_secret}",
        ]
        if self.warnings:
            out += ["", "Warnings:"] + [f"  - {w}" for w in self.warnings]
        return out


def packages_for(db_type: str) -> List[str]:
    if db_type not in DB_TYPES:
        raise ValueError(f"Unknown database type: {db_type} (use {', '.join(DB_TYPES)})")
    return BASE_PACKAGES + (PG_PACKAGES if db_type == "postgresql" else [])


# -----------------------------
# Steps
# -----------------------------

def create_directory_structure(host: ShellHost, settings: Settings) -> str:
    """Log dir plus the config skeleton when no config dir exists yet; then ownership."""
    log = get_logger()
    log.info("Creating directory structure...")
    host.mkdir(settings.log_dir)

    config_dir = find_config_dir(host, settings, required=False)
    if config_dir is None:
        config_dir = settings.config_dir or DEFAULT_CONFIG_DIR
        for sub in ("certs", "policy.d", "radiusd.conf.d", "mods-available", "mods-enabled",
                    "sites-available"):
            host.mkdir(posixpath.join(config_dir, sub))

    log.info("Setting file permissions...")
    owner = fix_permissions(host, config_dir)
    res = host.chown(settings.log_dir, owner, recursive=True)
    if not res.ok:
        log.warning(f"chown {settings.log_dir} failed: {res.stderr.strip()}")
    return config_dir


def configure_sql_module(host: ShellHost, settings: Settings, config_dir: str) -> List[str]:
    """Write mods-available/sql, enable it, and call sql from the default and inner-tunnel sites."""
    log = get_logger()
    log.info("Configuring SQL module...")
    mods_available = posixpath.join(config_dir, "mods-available")
    sql_path = posixpath.join(mods_available, "sql")

    backup_file(host, sql_path)
    host.mkdir(mods_available)
    host.write_text(sql_path, render(
        "sql.j2",
        db_host=settings.db_host,
        db_port=settings.db_port,
        db_user=settings.db_user,
        db_password=settings.db_password,
        db_name=settings.db_name,
    ))

    log.info("Enabling SQL module...")
    host.mkdir(posixpath.join(config_dir, "mods-enabled"))
    host.symlink("../mods-available/sql", posixpath.join(config_dir, "mods-enabled", "sql"))

    log.info("Updating site configuration to use SQL...")
    warnings: List[str] = []
    for site in SQL_SITES:
        path = posixpath.join(config_dir, "sites-available", site)
        text = host.read_text(path)
        if text is None:
            log.warning(f"Site file not found: {path}")
            warnings.append(f"site {site} not found")
            continue
        changed = False
        for section in SQL_SECTIONS:
            text, did = ensure_in_section(text, section, "sql")
            changed |= did
        if changed:
            host.write_text(path, text)
            log.info(f"Added sql to {site}")
    return warnings


def configure_main_settings(host: ShellHost, settings: Settings, config_dir: str) -> bool:
    """Performance limits in radiusd.conf and the radiusd.conf.d/logging stanza."""
    log = get_logger()
    radiusd_conf = posixpath.join(config_dir, "radiusd.conf")
    text = host.read_text(radiusd_conf)
    if text is None:
        log.warning(f"radiusd.conf not found at {radiusd_conf}")
        return False

    log.info("Optimizing performance settings...")
    for key, value in MAIN_SETTINGS:
        text, _ = set_option(text, key, value)
    host.write_text(radiusd_conf, text)

    log.info("Updating log settings...")
    conf_d = posixpath.join(config_dir, "radiusd.conf.d")
    host.mkdir(conf_d)
    host.mkdir(settings.log_dir)
    host.write_text(posixpath.join(conf_d, "logging"), render("logging.j2", log_file=settings.log_file))

    if not host.exists(settings.log_file):
        host.write_text(settings.log_file, "")
    host.chown(settings.log_file, detect_radius_user(host))
    host.chmod(settings.log_file, 0o644)
    return True


def configure_default_clients(host: ShellHost, settings: Settings, config_dir: str,
                              openvpn_ip: Optional[str] = None) -> str:
    """Replace clients.conf with localhost + openvpn_server (previous file backed up)."""
    log = get_logger()
    log.info("Configuring default RADIUS clients...")
    path = posixpath.join(config_dir, "clients.conf")
    backup_file(host, path)
    host.write_text(path, render(
        "clients_default.j2",
        radius_secret=settings.radius_secret,
        openvpn_ip=openvpn_ip or settings.openvpn_ip or "10.8.0.1",
        openvpn_secret=settings.openvpn_secret,
    ))
    host.chown(path, detect_radius_user(host))
    host.chmod(path, 0o640)
    return path


def create_test_user(host: ShellHost, settings: Settings, config_dir: str,
                     psql: Optional[Psql] = None) -> None:
    """Test account in SQL (when PostgreSQL runs) and in the users file."""
    log = get_logger()
    log.info("Creating test user...")
    user = RadiusUser(settings.test_user, settings.test_password)

    if service_is_active(host, POSTGRES_UNIT):
        try:
            SqlUserStore(psql or Psql(host, settings)).add_user(user)
        except RuntimeError as e:
            log.warning(f"Could not create {user.username} in the database: {e}")

    FileUserStore(host, config_dir).add_user(user, reply_message=TEST_REPLY_MESSAGE)


def configure_firewall(host: ShellHost, settings: Settings) -> bool:
    """ufw, else firewalld; False when neither is present."""
    log = get_logger()
    log.info("Configuring firewall...")
    ports = ((settings.auth_port, "RADIUS Authentication"), (settings.acct_port, "RADIUS Accounting"))

    if host.which("ufw"):
        for port, comment in ports:
            res = host.run(["ufw", "allow", f"{port}/udp", "comment", comment])
            if not res.ok:
                log.warning(f"ufw allow {port}/udp failed: {res.stderr.strip()}")
        log.info("Added UFW rules for RADIUS ports.")
        return True

    if host.which("firewall-cmd"):
        for port, _ in ports:
            host.run(["firewall-cmd", "--permanent", f"--add-port={port}/udp"])
        host.run(["firewall-cmd", "--reload"])
        log.info("Added FirewallD rules for RADIUS ports.")
        return True

    log.warning("Could not detect UFW or FirewallD. Please manually configure your firewall.")
    for port, _ in ports:
        log.info(f"Example: iptables -A INPUT -p udp --dport {port} -j ACCEPT")
    return False


# -----------------------------
# Flow
# -----------------------------

def install_freeradius(host: ShellHost, settings: Settings, *, db_type: str = "postgresql",
                       reinstall: bool = False, progress: bool = True) -> Optional[InstallSummary]:
    """
    Full install. Returns None when FreeRADIUS is already present and
    reinstall is False; raises RuntimeError when the service does not start.
    """
    log = get_logger()
    packages = packages_for(db_type)

    if freeradius_installed(host):
        if not reinstall:
            log.warning("FreeRADIUS is already installed. Use --reinstall to purge and install again.")
            return None
        log.info("Removing existing installation...")
        apt_purge(host, REMOVE_PACKAGES)

    summary = InstallSummary(
        config_dir="",
        db_type=db_type,
        test_user=settings.test_user,
        test_password=settings.test_password,
        radius_secret=settings.radius_secret,
        openvpn_secret=settings.openvpn_secret,
    )
    state = {}

    def _packages():
        log.info("Updating system packages...")
        apt_update(host)
        log.info("Fixing any broken packages...")
        host.run(["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "-f", "install", "-y"], timeout=1800)
        host.run(["dpkg", "--configure", "-a"], timeout=1800)
        apt_install(host, packages)
        if not any(host.which(b) for b in DAEMON_BINARIES):
            raise RuntimeError("FreeRADIUS installation failed: no freeradius/radiusd binary found.")

    def _dirs():
        state["config_dir"] = create_directory_structure(host, settings)

    def _database():
        if db_type != "postgresql":
            return
        state["psql"] = setup_database(host, settings)
        summary.warnings += configure_sql_module(host, settings, state["config_dir"])
        summary.database = (settings.db_name, settings.db_user, settings.db_password)

    def _main():
        if not configure_main_settings(host, settings, state["config_dir"]):
            summary.warnings.append("radiusd.conf not found; main settings unchanged")

    def _clients():
        configure_default_clients(host, settings, state["config_dir"])

    def _test_user():
        create_test_user(host, settings, state["config_dir"], psql=state.get("psql"))

    def _firewall():
        if not configure_firewall(host, settings):
            summary.warnings.append("no firewall tool found; open UDP auth/acct ports manually")

    steps: List[Tuple[str, Callable[[], None]]] = [
        ("Installing packages", _packages),
        ("Directory structure", _dirs),
        ("PostgreSQL", _database),
        ("Main settings", _main),
        ("Default clients", _clients),
        ("Test user", _test_user),
        ("Firewall", _firewall),
    ]

    with StepProgress([name for name, _ in steps], enabled=progress) as bar:
        for name, step in steps:
            bar.start(name)
            step()
            bar.advance()
        bar.done()

    log.info("Starting FreeRADIUS service...")
    service_action(host, settings.service, "enable")
    service_action(host, settings.service, "restart")
    if not wait_for_service(host, settings.service, active=True, delay=0):
        log.error("FreeRADIUS service failed to start. Recent journal:")
        for line in journal_tail(host, settings.service).splitlines():
            log.error(line)
        raise RuntimeError("FreeRADIUS service failed to start.")

    log.info("FreeRADIUS service started successfully!")
    summary.config_dir = state["config_dir"]
    return summary
