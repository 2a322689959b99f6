"""CLI commands: netwarden firewall install|remove|check."""

from __future__ import annotations

import click

from netwarden.cli import EXIT_ERROR, console, load_config_or_exit, load_policy_or_exit
from netwarden.firewall import FirewallRules


@click.group()
@click.option("--sudo", is_flag=True, help="Run iptables through sudo -n.")
@click.option(
    "--proxy-uid",
    type=int,
    default=None,
    help="Let this user's traffic out directly (the proxy's own account).",
)
@click.pass_context
def firewall(ctx: click.Context, sudo: bool, proxy_uid: int | None) -> None:
    """Manage the OUTPUT rules that force traffic through the proxy."""
    config = load_config_or_exit()
    policy = load_policy_or_exit(ctx, config)
    ctx.obj["firewall"] = FirewallRules(policy, proxy_uid=proxy_uid, sudo=sudo)


@firewall.command()
@click.pass_context
def install(ctx: click.Context) -> None:
    """Add any missing rules."""
    rules: FirewallRules = ctx.obj["firewall"]
    if not rules.install():
        console.print("[red]Some rules could not be installed[/red] (run with -v for details)")
        raise SystemExit(1)
    console.print(f"[green]Installed[/green] {len(rules.rules)} rules")


@firewall.command()
@click.pass_context
def remove(ctx: click.Context) -> None:
    """Delete the rules."""
    rules: FirewallRules = ctx.obj["firewall"]
    removed = rules.remove()
    console.print(f"Removed {removed} of {len(rules.rules)} rules")


@firewall.command("check")
@click.pass_context
def check_rules(ctx: click.Context) -> None:
    """Exit 0 if every rule is installed, 1 if any is missing, 3 if unknown."""
    rules: FirewallRules = ctx.obj["firewall"]
    state = rules.check()
    if state is None:
        console.print("[yellow]Firewall state unknown[/yellow] (iptables unavailable or not permitted)")
        raise SystemExit(EXIT_ERROR)
    if not state:
        console.print("[red]Firewall rules are missing[/red]")
        raise SystemExit(1)
    console.print("[green]Firewall rules intact[/green]")
