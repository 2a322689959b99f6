"""Trust/bypass monitor.

The enforcement layer can be switched off by whoever runs inside the
guest: the proxy can be killed, the firewall rules flushed and the proxy
variables unset.  The monitor does not try to prevent that.  It samples
those three facts on a schedule so that something outside can notice.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import psutil

from netwarden.errors import TamperDetected
from netwarden.firewall import FirewallRules

logger = logging.getLogger(__name__)

PROXY_ENV_VARS = ("HTTP_PROXY", "HTTPS_PROXY")


@dataclass(frozen=True)
class MonitorSample:
    """One observation of the enforcement layer.

    Each check is True/False, or None when it was disabled, timed out or
    could not be performed.
    """

    proxy_running: bool | None
    firewall_intact: bool | None
    proxy_env_present: bool | None
    timestamp: float = field(default_factory=time.time)
    details: dict[str, str] = field(default_factory=dict)

    @property
    def tampered(self) -> bool:
        return False in (self.proxy_running, self.firewall_intact, self.proxy_env_present)

    def problems(self) -> list[str]:
        problems = []
        if self.proxy_running is False:
            problems.append("proxy is not running")
        if self.firewall_intact is False:
            problems.append("firewall rules are missing")
        if self.proxy_env_present is False:
            problems.append("proxy environment is not set")
        return problems

    def to_dict(self) -> dict:
        return {
            "proxy_running": self.proxy_running,
            "firewall_intact": self.firewall_intact,
            "proxy_env_present": self.proxy_env_present,
            "timestamp": self.timestamp,
            "tampered": self.tampered,
            "details": dict(self.details),
        }


@dataclass
class MonitorConfig:
    """What to check. Leaving a field at None disables that check."""

    pid_file: Path | None = None
    firewall: FirewallRules | None = None
    proxy_url: str | None = None
    # Environment to inspect: an explicit mapping, or the environ of
    # target_pid, or this process's own environment.
    env: Mapping[str, str] | None = None
    target_pid: int | None = None
    check_timeout: float = 5.0


class TamperMonitor:
    """Samples proxy liveness, firewall state and proxy environment."""

    def __init__(self, config: MonitorConfig) -> None:
        self._config = config
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=3, thread_name_prefix="netwarden-monitor"
        )

    def sample(self) -> MonitorSample:
        """Run every enabled check, each bounded by ``check_timeout``."""
        cfg = self._config
        details: dict[str, str] = {}

        checks: dict[str, Callable[[], tuple[bool | None, str]] | None] = {
            "proxy_running": self._check_proxy if cfg.pid_file else None,
            "firewall_intact": self._check_firewall if cfg.firewall else None,
            "proxy_env_present": self._check_env if cfg.proxy_url else None,
        }
        futures = {
            name: self._pool.submit(fn) for name, fn in checks.items() if fn is not None
        }

        deadline = time.monotonic() + cfg.check_timeout
        results: dict[str, bool | None] = {name: None for name in checks}
        for name, future in futures.items():
            remaining = max(0.0, deadline - time.monotonic())
            try:
                value, note = future.result(timeout=remaining)
            except concurrent.futures.TimeoutError:
                future.cancel()
                value, note = None, f"timed out after {cfg.check_timeout:.1f}s"
            except Exception as e:
                logger.debug("Monitor check %s failed: %s", name, e)
                value, note = None, f"check failed: {e}"
            results[name] = value
            if note:
                details[name] = note

        for name in checks:
            if name not in futures:
                details[name] = "disabled"

        sample = MonitorSample(details=details, **results)
        if sample.tampered:
            logger.warning("Tampering detected: %s", "; ".join(sample.problems()))
        return sample

    def check(self) -> MonitorSample:
        """Sample, raising TamperDetected if any check failed."""
        sample = self.sample()
        if sample.tampered:
            raise TamperDetected(sample, sample.problems())
        return sample

    def run(
        self,
        stop_event: threading.Event,
        on_sample: Callable[[MonitorSample], None],
        interval: float = 30.0,
    ) -> None:
        """Sample every *interval* seconds until *stop_event* is set."""
        while not stop_event.is_set():
            on_sample(self.sample())
            stop_event.wait(interval)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    # --- individual checks -------------------------------------------------

    def _check_proxy(self) -> tuple[bool | None, str]:
        pid_file = self._config.pid_file
        try:
            text = pid_file.read_text().strip()
        except FileNotFoundError:
            return False, f"no pid file at {pid_file}"
        except OSError as e:
            return None, f"cannot read {pid_file}: {e}"

        try:
            pid = int(text)
        except ValueError:
            return None, f"invalid pid file contents: {text!r}"

        if not psutil.pid_exists(pid):
            return False, f"pid {pid} does not exist"
        try:
            proc = psutil.Process(pid)
            if not proc.is_running() or proc.status() == psutil.STATUS_ZOMBIE:
                return False, f"pid {pid} is not running"
        except psutil.NoSuchProcess:
            return False, f"pid {pid} does not exist"
        except psutil.AccessDenied:
            return None, f"access denied for pid {pid}"
        return True, f"pid {pid}"

    def _check_firewall(self) -> tuple[bool | None, str]:
        state = self._config.firewall.check()
        if state is None:
            return None, "firewall state unknown"
        return state, "" if state else "rule set incomplete"

    def _check_env(self) -> tuple[bool | None, str]:
        cfg = self._config
        if cfg.env is not None:
            env = cfg.env
        elif cfg.target_pid is not None:
            try:
                env = psutil.Process(cfg.target_pid).environ()
            except psutil.NoSuchProcess:
                return None, f"target pid {cfg.target_pid} does not exist"
            except psutil.AccessDenied:
                return None, f"access denied reading environ of {cfg.target_pid}"
        else:
            env = os.environ

        missing = [
            var
            for var in PROXY_ENV_VARS
            if _proxy_value(env, var) != cfg.proxy_url.rstrip("/")
        ]
        if missing:
            return False, f"not pointing at {cfg.proxy_url}: {', '.join(missing)}"
        return True, ""


def _proxy_value(env: Mapping[str, str], var: str) -> str:
    value = env.get(var) or env.get(var.lower()) or ""
    return value.strip().rstrip("/")
