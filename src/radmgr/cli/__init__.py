# src/radmgr/cli/__init__.py
from __future__ import annotations

from typing import Optional

import click

from .. import __version__
from ..config import Settings, load_env
from ..logging import setup_logging
from .app import App


@click.group()
@click.version_option(__version__, prog_name="radmgr")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False),
              help="Load RADMGR_* settings from this .env file (default: ./.env).")
@click.option("--config-dir", default=None, help="FreeRADIUS config directory (skip discovery).")
@click.option("--ssh-host", default=None, help="Manage this host over SSH instead of the local machine.")
@click.option("--ssh-user", default=None, help="SSH login (root, or a user with NOPASSWD sudo).")
@click.option("--backend", default=None, type=click.Choice(["auto", "sql", "files"]),
              help="User store: PostgreSQL, users file, or auto-detect.")
@click.option("--progress/--no-progress", default=True, show_default=True)
@click.option("--log-file", default=None)
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]))
@click.option("-q", "--quiet", is_flag=True, help="Only write logs to --log-file.")
@click.pass_context
def cli(ctx: click.Context, env_file: Optional[str], config_dir: Optional[str], ssh_host: Optional[str],
        ssh_user: Optional[str], backend: Optional[str], progress: bool, log_file: Optional[str],
        log_level: str, quiet: bool):
    """radmgr: install and operate FreeRADIUS with PostgreSQL and OpenVPN."""
    try:
        load_env(env_file)
        settings = Settings.from_env().with_overrides(
            config_dir=config_dir, ssh_host=ssh_host, ssh_user=ssh_user, backend=backend,
        )
        settings.validate()
        setup_logging(level=log_level, quiet=quiet, log_file=log_file,
                      use_tqdm_handler=progress and not quiet, target=settings.ssh_host)
    except (RuntimeError, OSError) as e:
        raise click.ClickException(str(e))

    app = App(settings, progress=progress and not quiet)
    ctx.obj = app
    ctx.call_on_close(app.close)


from .clients import client_group  # noqa: E402
from .database import backup_cmd, database_group, restore_cmd  # noqa: E402
from .export import export_cmd  # noqa: E402
from .install import fix_cmd, install_cmd, uninstall_cmd  # noqa: E402
from .openvpn import openvpn_cmd  # noqa: E402
from .service import diagnostics_cmd, logs_cmd, service_cmd, status_cmd  # noqa: E402
from .users import group_group, user_group  # noqa: E402

for _cmd in (
    install_cmd, fix_cmd, status_cmd, service_cmd, user_group, group_group, client_group,
    database_group, openvpn_cmd, backup_cmd, restore_cmd, logs_cmd, diagnostics_cmd,
    export_cmd, uninstall_cmd,
):
    cli.add_command(_cmd)


if __name__ == "__main__":
    cli()
