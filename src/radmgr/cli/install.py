# src/radmgr/cli/install.py
from __future__ import annotations

import click

from ..cleanup import uninstall
from ..install import DB_TYPES, install_freeradius
from ..repair import fix_installation
from .app import App, handle_errors, pass_app


@click.command("install")
@click.option("--db-type", default="postgresql", show_default=True, type=click.Choice(DB_TYPES),
              help="postgresql: SQL user store; none: users file only.")
@click.option("--reinstall", is_flag=True, help="Purge an existing FreeRADIUS first.")
@click.option("-y", "--yes", is_flag=True, help="Do not ask before purging on --reinstall.")
@pass_app
@handle_errors
def install_cmd(app: App, db_type: str, reinstall: bool, yes: bool):
    """Install and configure FreeRADIUS (and PostgreSQL)."""
    host = app.root_host()
    if reinstall and not yes:
        click.confirm("Reinstalling may overwrite your configuration. Continue?", abort=True)

    summary = install_freeradius(host, app.settings, db_type=db_type, reinstall=reinstall,
                                 progress=app.progress)
    if summary is None:
        click.echo("FreeRADIUS is already installed; nothing to do (use --reinstall).")
        return
    click.echo("")
    for line in summary.lines():
        click.echo(line)


@click.command("fix")
@pass_app
@handle_errors
def fix_cmd(app: App):
    """Repair permissions, log directory and OpenVPN policy, then restart."""
    if not fix_installation(app.root_host(), app.settings):
        raise click.ClickException("FreeRADIUS service failed to start; see the journal output above.")
    click.echo("FreeRADIUS is running.")


@click.command("uninstall")
@click.option("--remove-postgresql", is_flag=True, help="Also purge PostgreSQL and its data directory.")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@pass_app
@handle_errors
def uninstall_cmd(app: App, remove_postgresql: bool, yes: bool):
    """Remove FreeRADIUS, its configuration, logs and database."""
    host = app.root_host()
    if not yes:
        click.echo("WARNING: This will completely remove FreeRADIUS and all configurations!")
        click.echo("WARNING: All users, clients, and settings will be permanently deleted!")
        click.confirm("Are you sure you want to continue?", abort=True)
    purged = uninstall(host, app.settings, remove_postgresql=remove_postgresql)
    click.echo(f"Removed packages: {', '.join(purged) or '(none)'}")
    click.echo("FreeRADIUS has been completely removed. Reinstall with `radmgr install`.")
