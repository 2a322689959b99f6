"""Run mitmproxy in-process with the netwarden addon."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from mitmproxy.options import Options
from mitmproxy.tools.dump import DumpMaster

from netwarden.config import NetwardenConfig
from netwarden.proxy.addon import NetwardenAddon

logger = logging.getLogger(__name__)


def write_pid_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{os.getpid()}\n")


def remove_pid_file(path: Path) -> None:
    """Remove the pid file if it still names this process."""
    try:
        if path.read_text().strip() == str(os.getpid()):
            path.unlink()
    except FileNotFoundError:
        pass


async def serve_proxy(config: NetwardenConfig, extra_policy_files: list[Path]) -> None:
    """Start the proxy and block until it shuts down."""
    opts = Options(listen_host=config.proxy_host, listen_port=config.proxy_port)
    master = DumpMaster(opts, with_termlog=False, with_dumper=False)
    master.addons.add(NetwardenAddon(config=config))
    if extra_policy_files:
        master.options.update(netwarden_config=[str(p) for p in extra_policy_files])

    write_pid_file(config.pid_file)
    logger.info(
        "Proxy listening on %s:%d (pid %d)",
        config.proxy_host,
        config.proxy_port,
        os.getpid(),
    )
    try:
        await master.run()
    finally:
        remove_pid_file(config.pid_file)


def run_proxy(config: NetwardenConfig, extra_policy_files: list[Path] | None = None) -> None:
    asyncio.run(serve_proxy(config, list(extra_policy_files or [])))
