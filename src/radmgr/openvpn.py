# src/radmgr/openvpn.py
"""
OpenVPN <-> FreeRADIUS wiring. The RADIUS side registers the VPN server as a
client and installs the `openvpn` policy; the OpenVPN side points
radiusplugin at the local RADIUS server.
"""
from __future__ import annotations

import ipaddress
import posixpath
import re
from typing import Optional

from .config import Settings
from .conffile import ensure_in_section, upsert_client
from .logging import get_logger
from .system import (
    apt_install,
    apt_update,
    backup_file,
    detect_radius_user,
    find_config_dir,
    require_freeradius,
    service_action,
    service_is_active,
)
from .templates import render
from .transports.base import ShellHost

__all__ = [
    "OPENVPN_UNIT",
    "detect_openvpn_ip",
    "primary_ip",
    "find_server_conf",
    "configure_radius_for_openvpn",
    "configure_openvpn_for_radius",
    "configure_openvpn",
]

OPENVPN_UNIT = "openvpn"
OPENVPN_PACKAGES = ["openvpn", "openvpn-auth-radius"]
OPENVPN_CLIENT = "openvpn_server"
PLUGIN_SO = "/usr/lib/openvpn/radiusplugin.so"
RADIUS_HOST = "127.0.0.1"
INSTRUCTIONS_FILE = "openvpn_radius_config.txt"

_INET_RX = re.compile(r"\binet\s+(\d+\.\d+\.\d+\.\d+)")


def _ipv4_addrs(host: ShellHost, dev: Optional[str] = None):
    argv = ["ip", "-4", "-o", "addr", "show"] + (["dev", dev] if dev else [])
    res = host.run(argv)
    if not res.ok:
        return []
    return _INET_RX.findall(res.stdout)


def primary_ip(host: ShellHost) -> Optional[str]:
    """First IPv4 address that is not loopback."""
    for addr in _ipv4_addrs(host):
        if not ipaddress.ip_address(addr).is_loopback:
            return addr
    return None


def detect_openvpn_ip(host: ShellHost) -> Optional[str]:
    """tun0's address when the tunnel is up, else the primary address."""
    tun = _ipv4_addrs(host, "tun0")
    return tun[0] if tun else primary_ip(host)


def find_server_conf(host: ShellHost, openvpn_dir: str) -> Optional[str]:
    res = host.run(["find", openvpn_dir, "-name", "*.conf"])
    candidates = sorted(p for p in res.lines() if "server" in posixpath.basename(p).lower()
                        or "/server/" in p.lower())
    return candidates[0] if candidates else None


def _plugin_conf_path(settings: Settings) -> str:
    return posixpath.join(settings.openvpn_dir, "radiusplugin", "radiusplugin.cnf")


def _plugin_line(settings: Settings) -> str:
    return f"plugin {PLUGIN_SO} {_plugin_conf_path(settings)}"


def _plugin_text(settings: Settings, server_ip: str, openvpn_config: str, secret: str) -> str:
    return render(
        "radiusplugin.cnf.j2",
        server_ip=server_ip,
        openvpn_config=openvpn_config,
        acct_port=settings.acct_port,
        auth_port=settings.auth_port,
        radius_host=RADIUS_HOST,
        secret=secret,
    )


# -----------------------------
# FreeRADIUS side
# -----------------------------

def configure_radius_for_openvpn(host: ShellHost, settings: Settings, openvpn_ip: str, secret: str,
                                 *, restart: bool = True) -> str:
    """Client entry, policy, authorize hook and instructions file. Returns the config dir."""
    log = get_logger()
    try:
        ipaddress.ip_address(openvpn_ip)
    except ValueError:
        raise ValueError(f"Invalid OpenVPN server address: {openvpn_ip!r}")
    if not secret:
        raise ValueError("OpenVPN shared secret must not be empty.")

    log.info("Configuring FreeRADIUS for OpenVPN...")
    config_dir = find_config_dir(host, settings)
    owner = detect_radius_user(host)

    clients_conf = posixpath.join(config_dir, "clients.conf")
    text = host.read_text(clients_conf)
    if text is None:
        log.warning(f"{clients_conf} not found; OpenVPN client entry not written.")
    else:
        new_text, created = upsert_client(text, OPENVPN_CLIENT, {
            "ipaddr": openvpn_ip,
            "secret": secret,
            "shortname": "openvpn",
            "nastype": "other",
            "require_message_authenticator": False,
        })
        log.info(f"{'Adding' if created else 'Updating'} OpenVPN client in clients.conf...")
        if new_text != text:
            host.write_text(clients_conf, new_text)
            host.chown(clients_conf, owner)
            host.chmod(clients_conf, 0o640)

    log.info("Creating OpenVPN policy...")
    policy_dir = posixpath.join(config_dir, "policy.d")
    host.mkdir(policy_dir)
    policy_path = posixpath.join(policy_dir, "openvpn")
    host.write_text(policy_path, render("openvpn_policy.j2"))
    host.chown(policy_path, owner)
    host.chmod(policy_path, 0o644)

    default_site = posixpath.join(config_dir, "sites-available", "default")
    site_text = host.read_text(default_site)
    if site_text is not None:
        new_site, changed = ensure_in_section(site_text, "authorize", "openvpn")
        if changed:
            log.info("Updating site configuration...")
            host.write_text(default_site, new_site)
    else:
        log.warning(f"Site file not found: {default_site}")

    log.info("Creating OpenVPN configuration instructions...")
    openvpn_config = posixpath.join(settings.openvpn_dir, "server.conf")
    instructions = render(
        "openvpn_instructions.txt.j2",
        plugin_conf=_plugin_conf_path(settings),
        plugin_text=_plugin_text(settings, openvpn_ip, openvpn_config, secret),
        openvpn_config=openvpn_config,
        plugin_line=_plugin_line(settings),
    )
    host.write_text(posixpath.join(config_dir, INSTRUCTIONS_FILE), instructions, mode=0o640)

    if restart:
        log.info("Restarting FreeRADIUS to apply changes...")
        service_action(host, settings.service, "restart")
    log.info("FreeRADIUS has been configured for OpenVPN integration.")
    return config_dir


# -----------------------------
# OpenVPN side
# -----------------------------

def configure_openvpn_for_radius(host: ShellHost, settings: Settings, secret: str) -> bool:
    """radiusplugin.cnf plus the plugin line in the server config. False when skipped."""
    log = get_logger()
    log.info("Configuring OpenVPN for RADIUS authentication...")

    if not service_is_active(host, OPENVPN_UNIT):
        log.warning("OpenVPN service is not active. Skipping OpenVPN configuration.")
        return False

    server_conf = find_server_conf(host, settings.openvpn_dir)
    if server_conf is None:
        log.warning(f"Could not find an OpenVPN server configuration under {settings.openvpn_dir}.")
        return False
    log.info(f"Found OpenVPN server configuration at {server_conf}")

    plugin_conf = _plugin_conf_path(settings)
    host.mkdir(posixpath.dirname(plugin_conf))
    host.write_text(
        plugin_conf,
        _plugin_text(settings, primary_ip(host) or RADIUS_HOST, server_conf, secret),
        mode=0o600,
    )

    text = host.read_text(server_conf) or ""
    if "radiusplugin.so" in text:
        log.info(f"RADIUS plugin is already configured in {server_conf}")
    else:
        log.info(f"Adding RADIUS plugin configuration to {server_conf}")
        backup_file(host, server_conf, suffix="bak")
        sep = "" if not text or text.endswith("\n") else "\n"
        host.append_text(server_conf, f"{sep}\n# RADIUS authentication\n{_plugin_line(settings)}\n")
        host.chmod(server_conf, 0o644)

    log.info("Restarting OpenVPN to apply changes...")
    service_action(host, OPENVPN_UNIT, "restart")
    log.info("OpenVPN has been configured for RADIUS authentication.")
    return True


def configure_openvpn(host: ShellHost, settings: Settings, *, ip: Optional[str] = None,
                      secret: Optional[str] = None) -> bool:
    """Install OpenVPN if needed, then configure both sides. True when both were done."""
    log = get_logger()
    require_freeradius(host)

    if not host.which("openvpn"):
        log.warning("OpenVPN is not installed. Installing...")
        apt_update(host)
        apt_install(host, OPENVPN_PACKAGES, check=False)
        if not host.which("openvpn"):
            raise RuntimeError("Failed to install OpenVPN. Please install it manually.")

    ip = ip or settings.openvpn_ip or detect_openvpn_ip(host)
    if not ip:
        raise RuntimeError("Could not detect the OpenVPN server address; pass --ip.")
    log.info(f"Using OpenVPN IP: {ip}")
    secret = secret or settings.openvpn_secret

    configure_radius_for_openvpn(host, settings, ip, secret)
    return configure_openvpn_for_radius(host, settings, secret)
