"""CLI command: netwarden env - shell exports that route traffic via the proxy."""

from __future__ import annotations

import click

from netwarden.cli import load_config_or_exit

NO_PROXY = "127.0.0.1,localhost,::1,[::1]"


@click.command()
@click.option("--unset", is_flag=True, help="Print commands that remove the variables.")
def env(unset: bool) -> None:
    """Print shell exports; use as: eval "$(netwarden env)"."""
    config = load_config_or_exit()
    names = ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy")
    if unset:
        click.echo(f"unset {' '.join(names)} NO_PROXY no_proxy")
        return
    for name in names:
        click.echo(f'export {name}="{config.proxy_url}"')
    # Bypass hosts still go through the proxy, which tunnels them untouched
    click.echo(f'export NO_PROXY="{NO_PROXY}"')
    click.echo('export no_proxy="$NO_PROXY"')
