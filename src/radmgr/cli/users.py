# src/radmgr/cli/users.py
from __future__ import annotations

from typing import Optional

import click

from ..users import RadiusUser, batch_users, open_user_store, test_user
from .app import App, echo_table, handle_errors, pass_app


@click.group("user")
def user_group():
    """List, add, delete and test RADIUS users."""


@user_group.command("list")
@click.option("--show-passwords", is_flag=True)
@pass_app
@handle_errors
def user_list(app: App, show_passwords: bool):
    store = open_user_store(app.root_host(), app.settings)
    users = store.list_users()
    click.echo(f"RADIUS users ({store.kind}): {len(users)}")
    echo_table(
        ((u.username, u.password if show_passwords else "********", u.group or "",
          u.simultaneous_use or "") for u in users),
        ["Username", "Password", "Group", "Simultaneous-Use"],
        empty="No users found.",
    )


@user_group.command("show")
@click.argument("username")
@click.option("--show-passwords", is_flag=True)
@pass_app
@handle_errors
def user_show(app: App, username: str, show_passwords: bool):
    """Check, reply and group attributes of USERNAME."""
    store = open_user_store(app.root_host(), app.settings)
    items = store.user_attributes(username)
    if not items:
        raise click.ClickException(f"User {username} was not found.")

    def _value(attr: str, value: str) -> str:
        return "********" if attr.endswith("-Password") and not show_passwords else value

    click.echo(f"User details: {username} ({store.kind})")
    echo_table(
        ((kind, attr, op, _value(attr, value)) for kind, attr, op, value in items),
        ["Type", "Attribute", "Op", "Value"],
    )


@user_group.command("add")
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--group", default=None, help="Group to place the user in.")
@click.option("--simultaneous-use", type=click.IntRange(1, 1000), default=None,
              help="Maximum concurrent sessions.")
@pass_app
@handle_errors
def user_add(app: App, username: str, password: str, group: Optional[str], simultaneous_use: Optional[int]):
    """Add USERNAME, or update it when it exists."""
    store = open_user_store(app.root_host(), app.settings)
    created = store.add_user(RadiusUser(username, password, group, simultaneous_use))
    click.echo(f"User {username} has been {'added' if created else 'updated'} ({store.kind}).")


@user_group.command("delete")
@click.argument("username")
@pass_app
@handle_errors
def user_delete(app: App, username: str):
    store = open_user_store(app.root_host(), app.settings)
    if store.delete_user(username):
        click.echo(f"User {username} has been deleted.")
    else:
        click.echo(f"User {username} was not found.")


@user_group.command("test")
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True)
@click.option("--secret", default=None, help="Client secret (default: RADMGR_RADIUS_SECRET).")
@click.option("--server", default="localhost", show_default=True)
@pass_app
@handle_errors
def user_test(app: App, username: str, password: str, secret: Optional[str], server: str):
    """Authenticate USERNAME with radtest."""
    accepted, output = test_user(app.root_host(), username, password,
                                 secret or app.settings.radius_secret, server=server)
    click.echo(output.rstrip("\n"))
    if not accepted:
        raise click.ClickException(f"Authentication failed for {username}.")
    click.echo(f"Authentication successful for {username}.")


@user_group.command("batch")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@pass_app
@handle_errors
def user_batch(app: App, path: str):
    """Apply add/update/delete rows from a CSV or JSON file."""
    store = open_user_store(app.root_host(), app.settings)
    outcomes = batch_users(store, path)
    echo_table(
        ((o.username, o.operation, "OK" if o.ok else "FAILED", o.detail) for o in outcomes),
        ["Username", "Operation", "Result", "Detail"],
    )
    failed = sum(1 for o in outcomes if not o.ok)
    click.echo(f"\nProcessed {len(outcomes)} rows: {len(outcomes) - failed} succeeded, {failed} failed.")
    if failed:
        raise click.ClickException(f"{failed} batch row(s) failed.")


@click.group("group")
def group_group():
    """RADIUS groups."""


@group_group.command("list")
@pass_app
@handle_errors
def group_list(app: App):
    store = open_user_store(app.root_host(), app.settings)
    groups = store.list_groups()
    click.echo("\n".join(groups) if groups else "No groups found.")
