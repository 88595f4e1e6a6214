from __future__ import annotations

import shlex
from typing import Optional, Sequence, Tuple

import paramiko

from ..logging import get_logger
from .base import CommandResult, ShellHost

__all__ = ["make_ssh_client", "ssh_exec", "SshHost"]

DEFAULT_TIMEOUT = 10


def make_ssh_client(
    host: str,
    port: int,
    username: str,
    password: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
    *,
    key_filename: Optional[str] = None,
    strict_host_key: bool = False,
) -> paramiko.SSHClient:
    """
    Create and return a connected Paramiko SSHClient.

    - strict_host_key=False (default): accept unknown keys (AutoAddPolicy)
    - strict_host_key=True: require known keys (RejectPolicy)

    With neither password nor key_filename the agent and ~/.ssh keys are tried;
    otherwise only the given credential is used.
    """
    use_keys = password is None and key_filename is None
    client = paramiko.SSHClient()
    if strict_host_key:
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    client.connect(
        hostname=host,
        port=port,
        username=username,
        password=password,
        key_filename=key_filename,
        look_for_keys=use_keys,
        allow_agent=use_keys,
        timeout=timeout,
        banner_timeout=timeout,
        auth_timeout=timeout,
    )
    return client


def ssh_exec(client: paramiko.SSHClient, cmd: str, timeout: int = 600,
             input: Optional[str] = None) -> Tuple[str, str, int]:
    """
    Execute a command over SSH and return (stdout, stderr, exit_code).
    """
    stdin, stdout, stderr = client.exec_command(cmd, timeout=timeout)
    if input is not None:
        stdin.write(input)
    stdin.channel.shutdown_write()
    out = stdout.read().decode("utf-8", errors="ignore")
    err = stderr.read().decode("utf-8", errors="ignore")
    rc = stdout.channel.recv_exit_status()
    return out, err, rc


class SshHost(ShellHost):
    """
    A remote machine reached over SSH. Non-root logins run every command
    through `sudo -n`, so the account needs a NOPASSWD sudoers rule.
    """

    def __init__(self, client: paramiko.SSHClient, *, host: str, user: str):
        self.client = client
        self.name = host
        self.user = user
        self.use_sudo = user != "root"

    @classmethod
    def connect(cls, host: str, port: int, user: str, *, password: Optional[str] = None,
                key_filename: Optional[str] = None) -> "SshHost":
        client = make_ssh_client(host, port, user, password, key_filename=key_filename)
        return cls(client, host=host, user=user)

    def run(self, argv: Sequence[str], *, input: Optional[str] = None,
            check: bool = False, timeout: Optional[float] = None) -> CommandResult:
        log = get_logger()
        argv = [str(a) for a in argv]
        cmd = shlex.join(argv)
        if self.use_sudo:
            cmd = "sudo -n " + cmd
        log.debug(f"{self.name}: {cmd}")
        try:
            out, err, rc = ssh_exec(self.client, cmd, timeout=int(timeout or 600), input=input)
            res = CommandResult(argv, out, err, rc)
        except Exception as e:
            res = CommandResult(argv, "", f"ssh exec failed: {e}", 255)
        if check:
            res.check()
        return res

    def write_text(self, path: str, content: str, mode: Optional[int] = None) -> None:
        # tee echoes the content back; keep it off the wire
        self.sh(f"cat > {shlex.quote(path)}", input=content, check=True)
        if mode is not None:
            self.chmod(path, mode)

    def is_privileged(self) -> bool:
        if not self.use_sudo:
            return True
        try:
            _, _, rc = ssh_exec(self.client, "sudo -n true", timeout=DEFAULT_TIMEOUT)
        except Exception as e:
            get_logger().debug(f"{self.name}: sudo -n probe failed: {e}")
            return False
        return rc == 0

    def close(self) -> None:
        try:
            self.client.close()
        except Exception:
            pass
