# src/radmgr/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# Load .env once at import; harmless if no .env present.
load_dotenv()

__all__ = [
    "Settings",
    "CONFIG_DIR_CANDIDATES",
    "load_env",
    "require_env",
]

ENV_PREFIX = "RADMGR_"

CONFIG_DIR_CANDIDATES: Tuple[str, ...] = (
    "/etc/freeradius/3.0",
    "/etc/freeradius",
    "/etc/raddb",
)

BACKENDS = ("auto", "sql", "files")


def _env(name: str, default: str = "") -> str:
    return os.getenv(ENV_PREFIX + name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_opt(name: str) -> Optional[str]:
    return _env(name) or None


# ---------------------------
# Settings
# ---------------------------

@dataclass(frozen=True)
class Settings:
    """
    Everything radmgr needs to know about the target host.
    Defaults match a stock Ubuntu FreeRADIUS 3.x + PostgreSQL install.
    """
    # PostgreSQL
    db_name: str = "radius"
    db_user: str = "radius"
    db_password: str = "radpass"
    db_host: str = "localhost"
    db_port: int = 5432
    pg_superuser: str = "postgres"

    # RADIUS
    radius_secret: str = "testing123"
    auth_port: int = 1812
    acct_port: int = 1813
    service: str = "freeradius"
    backend: str = "auto"                 # auto | sql | files

    # Paths
    config_dir: Optional[str] = None      # explicit override; otherwise discovered
    config_dir_candidates: Tuple[str, ...] = CONFIG_DIR_CANDIDATES
    log_file: str = "/var/log/radius/radius.log"
    backup_dir: str = "/var/backups/freeradius"

    # OpenVPN
    openvpn_secret: str = "vpn_radius_secret"
    openvpn_ip: Optional[str] = None
    openvpn_dir: str = "/etc/openvpn"

    # Test account created by install
    test_user: str = "testuser"
    test_password: str = "password"

    # Remote target (paramiko); empty ssh_host means "this machine"
    ssh_host: Optional[str] = None
    ssh_port: int = 22
    ssh_user: str = "root"
    ssh_password: Optional[str] = field(default=None, repr=False)
    ssh_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_name=_env("DB_NAME", "radius"),
            db_user=_env("DB_USER", "radius"),
            db_password=_env("DB_PASSWORD", "radpass"),
            db_host=_env("DB_HOST", "localhost"),
            db_port=_env_int("DB_PORT", 5432),
            pg_superuser=_env("PG_SUPERUSER", "postgres"),
            radius_secret=_env("RADIUS_SECRET", "testing123"),
            auth_port=_env_int("AUTH_PORT", 1812),
            acct_port=_env_int("ACCT_PORT", 1813),
            service=_env("SERVICE", "freeradius"),
            backend=_env("BACKEND", "auto").lower(),
            config_dir=_env_opt("CONFIG_DIR"),
            log_file=_env("LOG_FILE", "/var/log/radius/radius.log"),
            backup_dir=_env("BACKUP_DIR", "/var/backups/freeradius"),
            openvpn_secret=_env("OPENVPN_SECRET", "vpn_radius_secret"),
            openvpn_ip=_env_opt("OPENVPN_IP"),
            openvpn_dir=_env("OPENVPN_DIR", "/etc/openvpn"),
            test_user=_env("TEST_USER", "testuser"),
            test_password=_env("TEST_PASSWORD", "password"),
            ssh_host=_env_opt("SSH_HOST"),
            ssh_port=_env_int("SSH_PORT", 22),
            ssh_user=_env("SSH_USER", "root"),
            ssh_password=_env_opt("SSH_PASSWORD"),
            ssh_key=_env_opt("SSH_KEY"),
        )

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the non-None keyword values applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def log_dir(self) -> str:
        return str(Path(self.log_file).parent)

    def validate(self) -> None:
        problems = []
        for name in ("db_port", "auth_port", "acct_port", "ssh_port"):
            port = getattr(self, name)
            if not 0 < port < 65536:
                problems.append(f"{name}={port} (expected 1-65535)")
        if self.backend not in BACKENDS:
            problems.append(f"backend={self.backend!r} (expected one of {', '.join(BACKENDS)})")
        if not self.db_name or not self.db_user:
            problems.append("db_name/db_user must not be empty")
        if not self.radius_secret:
            problems.append("radius_secret must not be empty")
        if problems:
            raise RuntimeError(f"Invalid settings: {'; '.join(problems)}")


# ---------------------------
# Env helpers
# ---------------------------

def load_env(env_file: Optional[str | Path] = None) -> None:
    """
    Load environment variables from a .env file.
    - If env_file is provided, load it directly (overriding current values).
    - Otherwise, attempt to load from current working directory.
    """
    if env_file:
        env_path = Path(env_file)
        if not env_path.exists():
            raise FileNotFoundError(f"Env file not found: {env_path}")
        load_dotenv(dotenv_path=env_path, override=True)
        return

    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)


def require_env(name: str, *, friendly: Optional[str] = None) -> str:
    """Raise a clear error if a required env is missing."""
    val = os.getenv(name)
    if not val:
        raise RuntimeError(f"Missing environment variable: {friendly or name} ({name})")
    return val
