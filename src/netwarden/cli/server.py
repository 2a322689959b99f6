"""CLI command: netwarden serve - start the local query API."""

from __future__ import annotations

import click

from netwarden.cli import console, load_config_or_exit, load_policy_or_exit


@click.command()
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to listen on (default: 8471).",
)
@click.pass_context
def serve(ctx: click.Context, port: int | None) -> None:
    """Start the netwarden web API."""
    try:
        import uvicorn
    except ImportError:
        console.print(
            "[red]Web dependencies not installed.[/red]\n"
            "Install with: pip install netwarden[web]"
        )
        raise SystemExit(1)

    config = load_config_or_exit()
    if port is not None:
        config.web_port = port
    load_policy_or_exit(ctx, config)

    console.print(
        f"[bold]netwarden[/bold] API starting on "
        f"[cyan]http://{config.web_host}:{config.web_port}/api/docs[/cyan]"
    )
    console.print("  [dim]Bound to 127.0.0.1 only[/dim]\n")

    import asyncio

    from netwarden.web.app import create_app

    async def _run() -> None:
        app = await create_app(config, ctx.obj.get("policy_files"))
        server_config = uvicorn.Config(
            app,
            host=config.web_host,
            port=config.web_port,
            log_level="info",
        )
        srv = uvicorn.Server(server_config)
        await srv.serve()

    asyncio.run(_run())
