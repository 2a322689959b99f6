"""CLI command: netwarden proxy - run the intercepting proxy."""

from __future__ import annotations

import click

from netwarden.cli import console, load_config_or_exit, load_policy_or_exit


@click.command()
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to listen on (default: 8080).",
)
@click.pass_context
def proxy(ctx: click.Context, port: int | None) -> None:
    """Run the filtering HTTP/HTTPS proxy in the foreground."""
    try:
        from netwarden.proxy.runner import run_proxy
    except ImportError:
        console.print(
            "[red]Proxy dependencies not installed.[/red]\n"
            "Install with: pip install netwarden[proxy]"
        )
        raise SystemExit(1)

    config = load_config_or_exit()
    if port is not None:
        config.proxy_port = port

    # Reject a broken policy before binding the port
    policy = load_policy_or_exit(ctx, config)

    console.print(
        f"[bold]netwarden[/bold] proxy on "
        f"[cyan]{config.proxy_host}:{config.proxy_port}[/cyan] "
        f"with policy [cyan]{policy.name}[/cyan] ({policy.mode.value})"
    )
    if not policy.enabled:
        console.print("  [yellow]Policy is disabled; traffic will not be filtered.[/yellow]")
    console.print("  [dim]Clients: eval \"$(netwarden env)\"[/dim]\n")

    try:
        run_proxy(config, ctx.obj.get("policy_files"))
    except KeyboardInterrupt:
        pass
