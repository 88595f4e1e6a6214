"""Pytest fixtures for radmgr tests.

Hosts are faked: files are real (under tmp_path) and go through LocalHost's
pathlib code, while every command is recorded and answered from a script.
"""

import shlex
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest

from radmgr.config import Settings
from radmgr.transports.base import CommandResult
from radmgr.transports.local import LocalHost

Responder = Union[Tuple[str, str, int], Callable[[List[str], Optional[str]], CommandResult]]


class FakeHost(LocalHost):
    name = "fake"

    def __init__(self):
        self.calls: List[Tuple[List[str], Optional[str]]] = []
        self.responses: List[Tuple[List[str], Responder]] = []
        self.active_units = set()
        self.binaries = set()
        self.privileged = True

    def on(self, prefix: Sequence[str], stdout: str = "", stderr: str = "", rc: int = 0, *,
           handler: Optional[Callable] = None) -> None:
        """Answer commands starting with prefix; later registrations win."""
        self.responses.append((list(prefix), handler or (stdout, stderr, rc)))

    def run(self, argv, *, input=None, check=False, timeout=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append((argv, input))
        res = self._respond(argv, input)
        if check:
            res.check()
        return res

    def _respond(self, argv: List[str], input: Optional[str]) -> CommandResult:
        for prefix, responder in reversed(self.responses):
            if argv[:len(prefix)] == prefix:
                if callable(responder):
                    return responder(argv, input)
                return CommandResult(argv, *responder)
        if argv[:3] == ["systemctl", "is-active", "--quiet"]:
            return CommandResult(argv, rc=0 if argv[3] in self.active_units else 3)
        if argv[:2] == ["sh", "-c"] and argv[2].startswith("command -v "):
            name = shlex.split(argv[2])[2]
            return CommandResult(argv, rc=0 if name in self.binaries else 1)
        return CommandResult(argv)

    def is_privileged(self) -> bool:
        return self.privileged

    def commands(self, program: str) -> List[List[str]]:
        return [argv for argv, _ in self.calls if argv and argv[0] == program]

    def psql_calls(self) -> List[Tuple[List[str], Optional[str]]]:
        return [(argv, sql) for argv, sql in self.calls if "psql" in argv[:6]]


def psql_vars(argv: List[str]) -> dict:
    """-v name=value pairs from a psql argv."""
    out = {}
    for i, a in enumerate(argv[:-1]):
        if a == "-v" and "=" in argv[i + 1]:
            k, v = argv[i + 1].split("=", 1)
            out[k] = v
    return out


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def config_dir(tmp_path) -> Path:
    """A minimal FreeRADIUS 3 tree."""
    root = tmp_path / "freeradius" / "3.0"
    for sub in ("mods-available", "mods-enabled", "sites-available", "policy.d",
                "mods-config/files"):
        (root / sub).mkdir(parents=True)
    (root / "clients.conf").write_text(
        "client localhost {\n"
        "    ipaddr = 127.0.0.1\n"
        "    secret = testing123\n"
        "}\n"
    )
    (root / "mods-config" / "files" / "authorize").write_text(
        "#\n# users file\n#\n"
        "DEFAULT Framed-Protocol == PPP\n"
        "        Framed-Protocol = PPP\n"
    )
    site = (
        "server default {\n"
        "authorize {\n"
        "    preprocess\n"
        "    files\n"
        "    -sql\n"
        "}\n"
        "authenticate {\n"
        "    Auth-Type PAP {\n"
        "        pap\n"
        "    }\n"
        "}\n"
        "accounting {\n"
        "    detail\n"
        "}\n"
        "session {\n"
        "}\n"
        "post-auth {\n"
        "    exec\n"
        "}\n"
        "}\n"
    )
    (root / "sites-available" / "default").write_text(site)
    (root / "sites-available" / "inner-tunnel").write_text(site.replace("server default", "server inner-tunnel"))
    (root / "radiusd.conf").write_text(
        "prefix = /usr\n"
        "max_request_time = 60\n"
        "max_requests = 16384\n"
        "thread pool {\n"
        "    max_servers = 32\n"
        "}\n"
    )
    return root


@pytest.fixture
def settings(tmp_path, config_dir) -> Settings:
    return Settings(
        config_dir=str(config_dir),
        log_file=str(tmp_path / "log" / "radius" / "radius.log"),
        backup_dir=str(tmp_path / "backups"),
        openvpn_dir=str(tmp_path / "openvpn"),
    )
