# src/radmgr/cli/app.py
from __future__ import annotations

import functools
from typing import Iterable, List, Optional, Sequence

import click
import pandas as pd
import paramiko

from ..config import Settings
from ..logging import get_logger
from ..system import require_root
from ..transports import ShellHost, make_host


class App:
    """Per-invocation state: resolved settings and a lazily opened host."""

    def __init__(self, settings: Settings, *, progress: bool = True):
        self.settings = settings
        self.progress = progress
        self._host: Optional[ShellHost] = None

    @property
    def host(self) -> ShellHost:
        if self._host is None:
            self._host = make_host(self.settings)
        return self._host

    def root_host(self) -> ShellHost:
        host = self.host
        require_root(host)
        return host

    def close(self) -> None:
        if self._host is not None:
            self._host.close()
            self._host = None


pass_app = click.make_pass_decorator(App)


def handle_errors(fn):
    """Library errors become ClickException (exit 1, message on stderr)."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except click.ClickException:
            raise
        except (RuntimeError, OSError, ValueError, paramiko.SSHException) as e:
            get_logger().debug("command failed", exc_info=True)
            raise click.ClickException(str(e))
    return wrapper


def echo_table(rows: Iterable[Sequence[object]], columns: List[str], *, empty: str = "(none)") -> None:
    df = pd.DataFrame(list(rows), columns=columns)
    if df.empty:
        click.echo(empty)
        return
    click.echo(df.fillna("").to_string(index=False))
