# src/radmgr/cli/export.py
from __future__ import annotations

import click

from ..report import export_workbook
from .app import App, handle_errors, pass_app


@click.command("export")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--with-passwords", is_flag=True, help="Include passwords and client secrets.")
@pass_app
@handle_errors
def export_cmd(app: App, path: str, with_passwords: bool):
    """Write users, groups and clients to PATH (.xlsx, or .csv per table)."""
    written = export_workbook(app.root_host(), app.settings, path, include_passwords=with_passwords)
    for p in written:
        click.echo(f"Wrote {p}")
