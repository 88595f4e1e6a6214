from .base import CommandError, CommandResult, ShellHost
from .local import LocalHost
from .ssh import SshHost, make_ssh_client, ssh_exec

__all__ = [
    "CommandError", "CommandResult", "ShellHost",
    "LocalHost",
    "SshHost", "make_ssh_client", "ssh_exec",
    "make_host",
]


def make_host(settings) -> ShellHost:
    """SshHost when settings.ssh_host is set, otherwise the local machine."""
    if settings.ssh_host:
        return SshHost.connect(
            settings.ssh_host,
            settings.ssh_port,
            settings.ssh_user,
            password=settings.ssh_password,
            key_filename=settings.ssh_key,
        )
    return LocalHost()
