# src/radmgr/cli/openvpn.py
from __future__ import annotations

from typing import Optional

import click

from ..openvpn import configure_openvpn
from .app import App, handle_errors, pass_app


@click.command("openvpn")
@click.option("--ip", default=None, help="OpenVPN server address (default: detect from tun0).")
@click.option("--secret", default=None, help="Shared secret (default: RADMGR_OPENVPN_SECRET).")
@pass_app
@handle_errors
def openvpn_cmd(app: App, ip: Optional[str], secret: Optional[str]):
    """Wire OpenVPN to authenticate against FreeRADIUS."""
    if configure_openvpn(app.root_host(), app.settings, ip=ip, secret=secret):
        click.echo("OpenVPN and FreeRADIUS integration is complete!")
    else:
        click.echo("FreeRADIUS side configured. OpenVPN was not changed; "
                   "see openvpn_radius_config.txt in the FreeRADIUS config directory.")
