# src/radmgr/cli/clients.py
from __future__ import annotations

import click

from ..clients import RadiusClient, add_client, delete_client, get_client, list_clients
from ..db import Psql
from ..system import find_config_dir
from .app import App, echo_table, handle_errors, pass_app


@click.group("client")
def client_group():
    """RADIUS clients (NAS) in clients.conf and the nas table."""


@client_group.command("list")
@click.option("--show-secrets", is_flag=True)
@pass_app
@handle_errors
def client_list(app: App, show_secrets: bool):
    host = app.root_host()
    config_dir = find_config_dir(host, app.settings)
    clients, nas = list_clients(host, config_dir, Psql(host, app.settings))

    def _secret(s: str) -> str:
        return s if show_secrets else "********"

    click.echo("Clients in clients.conf:")
    echo_table(
        ((c.shortname, c.ipaddr, _secret(c.secret), c.nastype) for c in clients),
        ["Name", "Address", "Secret", "Type"],
        empty="No clients found.",
    )
    if nas:
        click.echo("\nClients in database (nas):")
        echo_table(
            ((n.shortname, n.nasname, _secret(n.secret), n.type, n.description) for n in nas),
            ["Name", "Address", "Secret", "Type", "Description"],
        )


@client_group.command("show")
@click.argument("shortname")
@click.option("--show-secrets", is_flag=True)
@pass_app
@handle_errors
def client_show(app: App, shortname: str, show_secrets: bool):
    host = app.root_host()
    config_dir = find_config_dir(host, app.settings)
    client, nas = get_client(host, config_dir, shortname, Psql(host, app.settings))
    if client is None and nas is None:
        raise click.ClickException(f"Client {shortname} was not found.")

    def _secret(s: str) -> str:
        return s if show_secrets else "********"

    click.echo(f"Client details: {shortname}")
    if client is not None:
        click.echo("\nclients.conf:")
        echo_table(
            [("Address", client.ipaddr), ("Secret", _secret(client.secret)), ("Type", client.nastype),
             ("Require-Message-Authenticator", "yes" if client.require_message_authenticator else "no")],
            ["Field", "Value"],
        )
    if nas is not None:
        click.echo("\nDatabase (nas):")
        echo_table(
            [("Address", nas.nasname), ("Secret", _secret(nas.secret)), ("Type", nas.type),
             ("Description", nas.description)],
            ["Field", "Value"],
        )


@client_group.command("add")
@click.argument("shortname")
@click.argument("ipaddr")
@click.option("--secret", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--nastype", default="other", show_default=True)
@click.option("--require-message-authenticator", is_flag=True)
@pass_app
@handle_errors
def client_add(app: App, shortname: str, ipaddr: str, secret: str, nastype: str,
               require_message_authenticator: bool):
    """Add SHORTNAME at IPADDR (address or CIDR), or update it."""
    client = RadiusClient(shortname, ipaddr, secret, nastype, require_message_authenticator)
    created = add_client(app.root_host(), app.settings, client)
    click.echo(f"Client {shortname} has been {'added' if created else 'updated'}.")


@client_group.command("delete")
@click.argument("shortname")
@pass_app
@handle_errors
def client_delete(app: App, shortname: str):
    if delete_client(app.root_host(), app.settings, shortname):
        click.echo(f"Client {shortname} has been deleted.")
    else:
        click.echo(f"Client {shortname} was not found in clients.conf.")
