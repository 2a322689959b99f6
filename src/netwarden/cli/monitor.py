"""CLI command: netwarden monitor - watch for a disabled enforcement layer."""

from __future__ import annotations

import signal
import threading
import time

import click

from netwarden.cli import console, load_config_or_exit, load_policy_or_exit
from netwarden.firewall import FirewallRules
from netwarden.monitor import MonitorConfig, MonitorSample, TamperMonitor


@click.command()
@click.option("--once", is_flag=True, help="Take one sample; exit 1 on tampering.")
@click.option("--interval", type=float, default=None, help="Seconds between samples.")
@click.option("--pid", "target_pid", type=int, default=None, help="Inspect this process's environment.")
@click.option("--no-firewall", is_flag=True, help="Skip the firewall check.")
@click.option("--no-env", is_flag=True, help="Skip the proxy environment check.")
@click.option("--sudo", is_flag=True, help="Run iptables through sudo -n.")
@click.pass_context
def monitor(
    ctx: click.Context,
    once: bool,
    interval: float | None,
    target_pid: int | None,
    no_firewall: bool,
    no_env: bool,
    sudo: bool,
) -> None:
    """Sample proxy liveness, firewall rules and proxy environment."""
    config = load_config_or_exit()
    policy = load_policy_or_exit(ctx, config)

    tamper = TamperMonitor(
        MonitorConfig(
            pid_file=config.pid_file,
            firewall=None if no_firewall else FirewallRules(policy, sudo=sudo),
            proxy_url=None if no_env else config.proxy_url,
            target_pid=target_pid,
            check_timeout=config.check_timeout,
        )
    )

    try:
        if once:
            sample = tamper.sample()
            _print_sample(sample)
            raise SystemExit(1 if sample.tampered else 0)

        stop = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
        every = interval or config.monitor_interval
        console.print(f"[bold]netwarden[/bold] monitoring every {every:g}s (Ctrl+C to stop)\n")
        try:
            tamper.run(stop, _print_sample, interval=every)
        except KeyboardInterrupt:
            stop.set()
    finally:
        tamper.close()


def _state(value: bool | None) -> str:
    if value is None:
        return "[yellow]unknown[/yellow]"
    return "[green]ok[/green]" if value else "[red]FAILED[/red]"


def _print_sample(sample: MonitorSample) -> None:
    stamp = time.strftime("%H:%M:%S", time.localtime(sample.timestamp))
    header = "[red bold]TAMPERED[/red bold]" if sample.tampered else "[green]intact[/green]"
    console.print(f"[dim]{stamp}[/dim] {header}")
    for name, value in (
        ("proxy_running", sample.proxy_running),
        ("firewall_intact", sample.firewall_intact),
        ("proxy_env_present", sample.proxy_env_present),
    ):
        note = sample.details.get(name, "")
        console.print(f"  {name:<18} {_state(value)} [dim]{note}[/dim]")
