"""CLI entry point - Click group with global options."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console

from netwarden import __version__
from netwarden.config import NetwardenConfig
from netwarden.errors import ConfigValidationError
from netwarden.policy.models import PolicySet

# Exit codes of the evaluation entry points
EXIT_ALLOWED = 0
EXIT_BLOCKED = 1
EXIT_ERROR = 3

console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__, prog_name="netwarden")
@click.option(
    "--config",
    "-c",
    "config_files",
    type=click.Path(exists=True, dir_okay=False),
    multiple=True,
    help="Policy YAML layered over the global policy (repeatable).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, config_files: tuple[str, ...], verbose: bool) -> None:
    """netwarden - outbound network policy for development VMs."""
    ctx.ensure_object(dict)
    ctx.obj["policy_files"] = [Path(p) for p in config_files]
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_config_or_exit() -> NetwardenConfig:
    """Load app configuration, exiting with EXIT_ERROR on a bad override."""
    try:
        return NetwardenConfig.load()
    except ConfigValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise SystemExit(EXIT_ERROR) from None


def load_policy_or_exit(ctx: click.Context, config: NetwardenConfig) -> PolicySet:
    """Load the layered policy, exiting with EXIT_ERROR if it is invalid."""
    try:
        return config.load_policy(ctx.obj.get("policy_files"))
    except ConfigValidationError as e:
        console.print(f"[red]Invalid policy:[/red] {e}")
        raise SystemExit(EXIT_ERROR) from None


def _register_commands() -> None:
    from netwarden.cli.check import check  # noqa: F811
    from netwarden.cli.env import env  # noqa: F811
    from netwarden.cli.firewall import firewall  # noqa: F811
    from netwarden.cli.logs import logs  # noqa: F811
    from netwarden.cli.monitor import monitor  # noqa: F811
    from netwarden.cli.proxy import proxy  # noqa: F811
    from netwarden.cli.server import serve  # noqa: F811
    from netwarden.cli.status import status  # noqa: F811

    main.add_command(check)
    main.add_command(logs)
    main.add_command(status)
    main.add_command(monitor)
    main.add_command(proxy)
    main.add_command(firewall)
    main.add_command(env)
    main.add_command(serve)


_register_commands()
