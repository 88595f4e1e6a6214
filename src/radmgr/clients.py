# src/radmgr/clients.py
from __future__ import annotations

import ipaddress
import posixpath
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .config import Settings
from .conffile import parse_client_blocks, remove_client, upsert_client
from .db import POSTGRES_UNIT, Psql
from .logging import get_logger
from .system import detect_radius_user, find_config_dir, service_action, service_is_active
from .transports.base import ShellHost

__all__ = [
    "RadiusClient",
    "NasRow",
    "validate_client",
    "clients_conf_path",
    "list_clients",
    "get_client",
    "add_client",
    "delete_client",
]

SHORTNAME_RX = re.compile(r"^[A-Za-z0-9._-]+$")
NAS_DESCRIPTION = "Added by radmgr"


@dataclass
class RadiusClient:
    shortname: str
    ipaddr: str
    secret: str
    nastype: str = "other"
    require_message_authenticator: bool = False

    def attrs(self) -> Dict[str, object]:
        return {
            "ipaddr": self.ipaddr,
            "secret": self.secret,
            "shortname": self.shortname,
            "nastype": self.nastype,
            "require_message_authenticator": self.require_message_authenticator,
        }

    @classmethod
    def from_block(cls, name: str, attrs: Dict[str, str]) -> "RadiusClient":
        return cls(
            shortname=name,
            ipaddr=attrs.get("ipaddr") or attrs.get("ipv4addr") or attrs.get("ipv6addr", ""),
            secret=attrs.get("secret", ""),
            nastype=attrs.get("nastype", "other"),
            require_message_authenticator=attrs.get("require_message_authenticator", "no").lower() == "yes",
        )


@dataclass
class NasRow:
    nasname: str
    shortname: str
    type: str
    secret: str
    description: str = ""


def validate_client(client: RadiusClient) -> None:
    if not SHORTNAME_RX.match(client.shortname or ""):
        raise ValueError(f"Invalid client name {client.shortname!r}: use letters, digits, '.', '_' or '-'.")
    try:
        ipaddress.ip_network(client.ipaddr, strict=False)
    except ValueError:
        raise ValueError(f"Invalid client address {client.ipaddr!r}: expected an IP address or CIDR.")
    if not client.secret:
        raise ValueError(f"Client {client.shortname} needs a shared secret.")


def clients_conf_path(config_dir: str) -> str:
    return posixpath.join(config_dir, "clients.conf")


def _read_clients_conf(host: ShellHost, config_dir: str) -> Tuple[str, str]:
    path = clients_conf_path(config_dir)
    text = host.read_text(path)
    if text is None:
        raise FileNotFoundError(f"Clients configuration file not found: {path}")
    return path, text


def _nas_table_ready(host: ShellHost, psql: Optional[Psql]) -> bool:
    return psql is not None and service_is_active(host, POSTGRES_UNIT) and psql.table_exists("nas")


def list_clients(host: ShellHost, config_dir: str, psql: Optional[Psql] = None
                 ) -> Tuple[List[RadiusClient], List[NasRow]]:
    """clients.conf entries, plus nas rows when the database has that table."""
    _, text = _read_clients_conf(host, config_dir)
    file_clients = [RadiusClient.from_block(name, attrs) for name, attrs in parse_client_blocks(text)]

    nas_rows: List[NasRow] = []
    if _nas_table_ready(host, psql):
        rows = psql.query(
            "SELECT nasname, shortname, type, secret, COALESCE(description, '') "
            "FROM nas ORDER BY shortname;"
        )
        for r in rows:
            r = r + [""] * (5 - len(r))
            nas_rows.append(NasRow(*r[:5]))
    return file_clients, nas_rows


def get_client(host: ShellHost, config_dir: str, shortname: str, psql: Optional[Psql] = None
               ) -> Tuple[Optional[RadiusClient], Optional[NasRow]]:
    """The clients.conf entry and the nas row for one client; either may be None."""
    file_clients, nas_rows = list_clients(host, config_dir, psql)
    client = next((c for c in file_clients if c.shortname == shortname), None)
    nas = next((n for n in nas_rows if n.shortname == shortname), None)
    return client, nas


def _write_clients_conf(host: ShellHost, path: str, text: str) -> None:
    host.write_text(path, text)
    owner = detect_radius_user(host)
    res = host.chown(path, owner)
    if not res.ok:
        get_logger().warning(f"chown {owner} {path} failed: {res.stderr.strip()}")
    host.chmod(path, 0o640)


def add_client(host: ShellHost, settings: Settings, client: RadiusClient, *,
               psql: Optional[Psql] = None, restart: bool = True) -> bool:
    """Upsert the client in clients.conf and the nas table. Returns True when it was new."""
    log = get_logger()
    validate_client(client)
    config_dir = find_config_dir(host, settings)
    path, text = _read_clients_conf(host, config_dir)

    new_text, created = upsert_client(text, client.shortname, client.attrs())
    log.info(f"{'Adding new' if created else 'Updating existing'} client {client.shortname}...")
    if new_text != text:
        _write_clients_conf(host, path, new_text)

    psql = psql or Psql(host, settings)
    if _nas_table_ready(host, psql):
        log.info("Updating client in database...")
        psql.execute(
            "UPDATE nas SET nasname = :'nasname', secret = :'secret', type = :'nastype'\n"
            "  WHERE shortname = :'shortname';\n"
            "INSERT INTO nas (nasname, shortname, type, secret, description)\n"
            "  SELECT :'nasname', :'shortname', :'nastype', :'secret', :'descr'\n"
            "  WHERE NOT EXISTS (SELECT 1 FROM nas WHERE shortname = :'shortname');",
            nasname=client.ipaddr, shortname=client.shortname, nastype=client.nastype,
            secret=client.secret, descr=NAS_DESCRIPTION,
        )

    log.info(f"Client {client.shortname} has been {'added' if created else 'updated'}.")
    if restart:
        service_action(host, settings.service, "restart")
    return created


def delete_client(host: ShellHost, settings: Settings, shortname: str, *,
                  psql: Optional[Psql] = None, restart: bool = True) -> bool:
    log = get_logger()
    config_dir = find_config_dir(host, settings)
    path, text = _read_clients_conf(host, config_dir)

    new_text, removed = remove_client(text, shortname)
    if removed:
        log.info(f"Removing client {shortname} from {path}...")
        _write_clients_conf(host, path, new_text)
    else:
        log.warning(f"Client {shortname} not found in configuration file.")

    psql = psql or Psql(host, settings)
    if _nas_table_ready(host, psql):
        log.info("Removing client from database...")
        psql.execute("DELETE FROM nas WHERE shortname = :'shortname';", shortname=shortname)

    if restart:
        service_action(host, settings.service, "restart")
    return removed
