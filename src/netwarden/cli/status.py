"""CLI command: netwarden status - policy summary and proxy health."""

from __future__ import annotations

import asyncio

import click

from netwarden.cli import console, load_config_or_exit, load_policy_or_exit
from netwarden.config import NetwardenConfig
from netwarden.monitor import MonitorConfig, TamperMonitor
from netwarden.policy.models import PolicyMode, PolicySet
from netwarden.storage.db import get_db
from netwarden.storage.repos import DecisionRepo


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the active policy, proxy state and decision counters."""
    config = load_config_or_exit()
    policy = load_policy_or_exit(ctx, config)

    console.print("[bold]Network policy[/bold]")
    _print_policy(policy, config)

    monitor = TamperMonitor(
        MonitorConfig(pid_file=config.pid_file, check_timeout=config.check_timeout)
    )
    try:
        sample = monitor.sample()
    finally:
        monitor.close()
    note = sample.details.get("proxy_running", "")
    if sample.proxy_running:
        console.print(f"\n[bold]Proxy:[/bold] [green]running[/green] ({note})")
        console.print(f"  Listening: {config.proxy_host}:{config.proxy_port}")
    elif sample.proxy_running is None:
        console.print(f"\n[bold]Proxy:[/bold] [yellow]unknown[/yellow] ({note})")
    else:
        console.print(f"\n[bold]Proxy:[/bold] [red]not running[/red] ({note})")
        console.print("  Start it with: [cyan]netwarden proxy[/cyan]")

    if config.db_path.exists():
        stats = asyncio.run(_stats(config))
        console.print("\n[bold]Decisions:[/bold]")
        console.print(f"  Total:   {stats.total}")
        console.print(f"  Allowed: [green]{stats.allowed}[/green]")
        console.print(f"  Blocked: [red]{stats.blocked}[/red]")
        if stats.errors:
            console.print(f"  Errors:  [yellow]{stats.errors}[/yellow]")


def _print_policy(policy: PolicySet, config: NetwardenConfig) -> None:
    if config.disabled_by_env:
        console.print("  Status: [yellow]DISABLED (NETWARDEN_DISABLE)[/yellow]")
    elif not policy.enabled:
        console.print("  Status: [yellow]DISABLED[/yellow]")
    else:
        console.print("  Status: [green]ENABLED[/green]")
    console.print(f"  Name: {policy.name}")
    console.print(f"  Mode: {policy.mode.value}")

    active = policy.allowed if policy.mode is PolicyMode.ALLOWLIST else policy.blocked
    label = "Allowed" if policy.mode is PolicyMode.ALLOWLIST else "Blocked"
    console.print(f"  {label}: {_patterns(active)}")
    console.print(f"  Bypass: {_patterns(policy.bypass)}")
    console.print(
        "  Protocol blocks: "
        f"private networks={_flag(policy.block_private_networks)}, "
        f"metadata={_flag(policy.block_metadata_services)}, "
        f"raw TCP/UDP={_flag(policy.block_tcp_udp)}"
    )
    for warning in policy.warnings:
        console.print(f"  [yellow]warning:[/yellow] {warning}")


def _patterns(patterns) -> str:
    if not patterns:
        return "none"
    return f"{', '.join(p.raw for p in patterns)} ({len(patterns)})"


def _flag(value: bool) -> str:
    return "on" if value else "off"


async def _stats(config: NetwardenConfig):
    db = await get_db(config.db_path)
    try:
        return await DecisionRepo(db).stats()
    finally:
        await db.close()
