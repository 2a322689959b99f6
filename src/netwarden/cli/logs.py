"""CLI command: netwarden logs - query the persisted decision log."""

from __future__ import annotations

import asyncio
import time

import click
from rich.table import Table

from netwarden.audit.models import Decision, Outcome, Reason
from netwarden.cli import console, load_config_or_exit
from netwarden.config import NetwardenConfig
from netwarden.storage.db import get_db
from netwarden.storage.repos import DecisionRepo

_FOLLOW_POLL = 1.0


@click.command()
@click.option("--filter", "-f", "hostname", default="", help="Hostname substring.")
@click.option(
    "--outcome",
    type=click.Choice([o.value for o in Outcome]),
    default=None,
    help="Only allowed or only blocked decisions.",
)
@click.option(
    "--reason",
    type=click.Choice([r.value for r in Reason]),
    default=None,
    help="Only decisions with this reason.",
)
@click.option("--since", type=float, default=None, help="Only the last N seconds.")
@click.option("-n", "limit", type=int, default=50, show_default=True, help="Show last N.")
@click.option("--all", "show_all", is_flag=True, help="Show every matching decision.")
@click.option("--follow", is_flag=True, help="Keep printing new decisions.")
def logs(
    hostname: str,
    outcome: str | None,
    reason: str | None,
    since: float | None,
    limit: int,
    show_all: bool,
    follow: bool,
) -> None:
    """List recent policy decisions."""
    config = load_config_or_exit()
    if not config.db_path.exists():
        console.print("[yellow]No decisions recorded yet.[/yellow]")
        console.print(f"  [dim]Expected database at {config.db_path}[/dim]")
        return

    query = {
        "hostname": hostname,
        "outcome": Outcome(outcome) if outcome else None,
        "reason": Reason(reason) if reason else None,
        "since": time.time() - since if since is not None else None,
    }
    try:
        asyncio.run(_show(config, query, 0 if show_all else limit, follow))
    except KeyboardInterrupt:
        pass


async def _show(config: NetwardenConfig, query: dict, limit: int, follow: bool) -> None:
    db = await get_db(config.db_path)
    try:
        repo = DecisionRepo(db)
        decisions = await repo.query(limit=limit, **query)
        if not decisions and not follow:
            console.print("[dim]No matching decisions.[/dim]")
            return
        if decisions:
            console.print(_table(decisions))

        last_seq = decisions[-1].seq if decisions else await repo.latest_seq()
        while follow:
            await asyncio.sleep(_FOLLOW_POLL)
            new = await repo.query(after_seq=last_seq, limit=0, **query)
            for decision in new:
                console.print(_line(decision))
                last_seq = decision.seq
    finally:
        await db.close()


def _table(decisions: list[Decision]) -> Table:
    table = Table(title="Network decisions")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Time")
    table.add_column("Host", style="cyan")
    table.add_column("Outcome")
    table.add_column("Reason")
    table.add_column("Pattern", style="dim")
    for d in decisions:
        color = "green" if d.allowed else "red"
        table.add_row(
            str(d.seq),
            time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(d.timestamp)),
            d.hostname,
            f"[{color}]{d.outcome.value}[/{color}]",
            d.reason.value + (" [red](error)[/red]" if d.error else ""),
            d.matched_pattern,
        )
    return table


def _line(d: Decision) -> str:
    color = "green" if d.allowed else "red"
    stamp = time.strftime("%H:%M:%S", time.localtime(d.timestamp))
    return (
        f"[dim]{stamp}[/dim] [{color}]{d.outcome.value:<7}[/{color}] "
        f"[cyan]{d.hostname}[/cyan] ({d.reason.value})"
    )
