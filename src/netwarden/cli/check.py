"""CLI command: netwarden check <host> - evaluate a hostname against the policy."""

from __future__ import annotations

import asyncio
import logging

import aiosqlite
import click

from netwarden.audit.log import DecisionLog
from netwarden.audit.models import Decision
from netwarden.cli import (
    EXIT_ALLOWED,
    EXIT_BLOCKED,
    EXIT_ERROR,
    console,
    load_config_or_exit,
    load_policy_or_exit,
)
from netwarden.config import NetwardenConfig
from netwarden.errors import LogWriteError
from netwarden.interceptor import TrafficInterceptor
from netwarden.policy.holder import PolicyHolder
from netwarden.resolve import HostResolver
from netwarden.storage.db import get_db
from netwarden.storage.repos import DecisionRepo

logger = logging.getLogger(__name__)


@click.command()
@click.argument("host")
@click.option(
    "--no-resolve",
    is_flag=True,
    help="Skip the address lookup (structural checks see only IP literals).",
)
@click.option("--record", is_flag=True, help="Persist the decision to the audit log.")
@click.pass_context
def check(ctx: click.Context, host: str, no_resolve: bool, record: bool) -> None:
    """Evaluate HOST against the active policy.

    Exits 0 if allowed, 1 if blocked, 3 on an internal error (malformed
    hostname, failed lookup, invalid configuration).  With the policy
    disabled nothing is filtered, so the exit code is 0 and the decision
    is shown for information.
    """
    config = load_config_or_exit()
    policy = load_policy_or_exit(ctx, config)

    resolver = HostResolver(timeout=config.resolve_timeout)
    interceptor = TrafficInterceptor(PolicyHolder(policy), DecisionLog(), resolver)
    try:
        result = interceptor.handle(host, lookup=not no_resolve)
    finally:
        resolver.shutdown()
    decision = result.decision

    _print_decision(decision)
    if not decision.is_error:
        matches = interceptor.holder.current[1].matching_patterns(decision.hostname)
        for kind, patterns in matches.items():
            if patterns:
                console.print(f"  [dim]{kind}:[/dim] {', '.join(patterns)}")

    if record:
        try:
            asyncio.run(_record(config, decision, policy.name))
        except (aiosqlite.Error, OSError) as e:
            err = LogWriteError(f"Could not record decision to {config.db_path}: {e}")
            logger.warning("%s", err)
            console.print(f"  [yellow]warning:[/yellow] {err}")

    if decision.is_error:
        raise SystemExit(EXIT_ERROR)
    if not policy.enabled:
        # Nothing is filtered; the decision above is informational only
        console.print(
            "  [yellow]Policy is disabled; the proxy passes all traffic through.[/yellow]"
        )
        raise SystemExit(EXIT_ALLOWED)
    raise SystemExit(EXIT_ALLOWED if decision.allowed else EXIT_BLOCKED)


def _print_decision(decision: Decision) -> None:
    color = "green" if decision.allowed else "red"
    line = (
        f"[{color}]{decision.outcome.value.upper()}[/{color}] "
        f"[cyan]{decision.hostname}[/cyan] ({decision.reason.value})"
    )
    if decision.matched_pattern:
        line += f" [dim]via {decision.matched_pattern}[/dim]"
    console.print(line)
    if decision.error:
        console.print(f"  [red]error:[/red] {decision.error}")


async def _record(config: NetwardenConfig, decision: Decision, policy_name: str) -> None:
    db = await get_db(config.db_path)
    try:
        await DecisionRepo(db).create(decision, policy_name=policy_name)
    finally:
        await db.close()
