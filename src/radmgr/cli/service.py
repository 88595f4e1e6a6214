# src/radmgr/cli/service.py
from __future__ import annotations

import click

from ..diagnostics import run_diagnostics
from ..service import MANAGE_ACTIONS, listening_ports, manage_service, recent_auth, service_status, view_logs
from .app import App, handle_errors, pass_app


@click.command("status")
@pass_app
@handle_errors
def status_cmd(app: App):
    """Service status, listening ports and recent authentications."""
    host = app.root_host()
    click.echo(service_status(host, app.settings))

    click.echo("Listening ports:")
    try:
        ports = listening_ports(host, app.settings)
        click.echo("\n".join(ports) if ports else "RADIUS ports not listening")
    except RuntimeError as e:
        click.echo(str(e))

    click.echo("\nRecent authentication attempts:")
    lines = recent_auth(host, app.settings)
    click.echo("\n".join(lines) if lines else "(none)")


@click.command("service")
@click.argument("action", type=click.Choice(MANAGE_ACTIONS))
@pass_app
@handle_errors
def service_cmd(app: App, action: str):
    """start | stop | restart | reload FreeRADIUS."""
    manage_service(app.root_host(), app.settings, action)


@click.command("logs")
@click.argument("lines", default=50, type=click.IntRange(1, 100000))
@pass_app
@handle_errors
def logs_cmd(app: App, lines: int):
    """Show the last LINES lines of the FreeRADIUS log."""
    source, text = view_logs(app.root_host(), app.settings, lines)
    click.echo(f"Showing last {lines} lines of {source}:\n")
    click.echo(text.rstrip("\n"))


@click.command("diagnostics")
@pass_app
@handle_errors
def diagnostics_cmd(app: App):
    """Check packages, service, config, database, logs and firewall."""
    results = run_diagnostics(app.root_host(), app.settings)
    for r in results:
        click.echo(f"[{r.status:<4}] {r.name}")
        for line in r.detail.splitlines():
            click.echo(f"         {line}")

    failed = [r for r in results if r.status == "FAIL"]
    if failed:
        raise click.ClickException(f"{len(failed)} check(s) failed: {', '.join(r.name for r in failed)}")
