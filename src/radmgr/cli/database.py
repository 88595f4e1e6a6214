# src/radmgr/cli/database.py
from __future__ import annotations

from typing import Optional

import click

from ..backup import backup_config, list_backups, restore_config
from ..db import setup_database
from ..diagnostics import check_database
from ..install import configure_sql_module
from ..system import find_config_dir, require_freeradius, service_action
from .app import App, echo_table, handle_errors, pass_app


@click.group("database")
def database_group():
    """PostgreSQL setup and checks."""


@database_group.command("setup")
@click.option("--restart/--no-restart", default=True, show_default=True)
@pass_app
@handle_errors
def database_setup(app: App, restart: bool):
    """Create role, database and schema; write and enable the sql module."""
    host = app.root_host()
    require_freeradius(host)
    setup_database(host, app.settings)
    configure_sql_module(host, app.settings, find_config_dir(host, app.settings))
    if restart:
        service_action(host, app.settings.service, "restart")
    click.echo(f"Database {app.settings.db_name} is ready.")


@database_group.command("check")
@pass_app
@handle_errors
def database_check(app: App):
    results = check_database(app.root_host(), app.settings)
    for r in results:
        click.echo(f"[{r.status:<4}] {r.name}: {r.detail}")
    if any(r.status == "FAIL" for r in results):
        raise click.ClickException("Database check failed.")


@click.command("backup")
@click.option("--list", "list_only", is_flag=True, help="List existing backups instead.")
@pass_app
@handle_errors
def backup_cmd(app: App, list_only: bool):
    """Archive the FreeRADIUS configuration and database."""
    host = app.root_host()
    if list_only:
        _echo_backups(app)
        return
    info = backup_config(host, app.settings)
    click.echo(f"Backup completed: {info.path}")
    click.echo(f"Backup size: {info.human_size}" + (" (includes database)" if info.with_database else ""))


def _echo_backups(app: App) -> int:
    backups = list_backups(app.host, app.settings)
    echo_table(
        ((b.name, b.human_size, b.created.strftime("%Y-%m-%d %H:%M:%S") if b.created else "")
         for b in backups),
        ["File", "Size", "Created"],
        empty=f"No backups in {app.settings.backup_dir}.",
    )
    return len(backups)


@click.command("restore")
@click.argument("backup", required=False)
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@pass_app
@handle_errors
def restore_cmd(app: App, backup: Optional[str], yes: bool):
    """Restore configuration (and database) from BACKUP.

    BACKUP may be a path or a file name inside the backup directory; without
    it the available backups are listed and one is asked for.
    """
    host = app.root_host()
    if not backup:
        click.echo("Available backups:")
        if not _echo_backups(app):
            raise click.ClickException("No backup file specified.")
        backup = click.prompt("Enter backup filename to restore")
    if not yes:
        click.confirm(f"Replace the current configuration with {backup}?", abort=True)

    if not restore_config(host, app.settings, backup):
        raise click.ClickException("FreeRADIUS service failed to start after restore.")
    click.echo("Restoration completed successfully.")
