"""Global configuration - XDG paths, env vars, defaults."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from netwarden.errors import ConfigValidationError
from netwarden.policy.loader import build_policy, load_layered
from netwarden.policy.models import PolicySet

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_number(name: str, kind: type, default):
    """Read a positive number from the environment, or return *default*."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from None
    if not value > 0:
        raise ConfigValidationError(f"{name} must be positive, got {raw!r}")
    return value


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "netwarden"
    return Path.home() / ".local" / "share" / "netwarden"


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "netwarden"
    return Path.home() / ".config" / "netwarden"


@dataclass
class NetwardenConfig:
    """Application-wide configuration."""

    data_dir: Path = field(default_factory=_default_data_dir)
    config_dir: Path = field(default_factory=_default_config_dir)
    policy_files: list[Path] = field(default_factory=list)
    proxy_host: str = "127.0.0.1"
    proxy_port: int = 8080
    web_host: str = "127.0.0.1"  # Hardcoded - never 0.0.0.0
    web_port: int = 8471
    monitor_interval: float = 30.0
    check_timeout: float = 5.0
    resolve_timeout: float = 2.0
    disabled_by_env: bool = False
    verbose: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / "netwarden.db"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "proxy.pid"

    @property
    def proxy_url(self) -> str:
        return f"http://localhost:{self.proxy_port}"

    @classmethod
    def load(cls) -> NetwardenConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        config.proxy_port = _env_number("NETWARDEN_PROXY_PORT", int, config.proxy_port)
        config.web_port = _env_number("NETWARDEN_WEB_PORT", int, config.web_port)
        config.monitor_interval = _env_number(
            "NETWARDEN_MONITOR_INTERVAL", float, config.monitor_interval
        )
        config.resolve_timeout = _env_number(
            "NETWARDEN_RESOLVE_TIMEOUT", float, config.resolve_timeout
        )

        # Emergency/debugging override; never silent
        if os.environ.get("NETWARDEN_DISABLE", "").strip().lower() in _TRUTHY:
            config.disabled_by_env = True

        # Global policy first, project files are layered on top
        global_policy = config.config_dir / "policy.yaml"
        if global_policy.is_file():
            config.policy_files.append(global_policy)

        return config

    def load_policy(self, extra_files: list[Path] | None = None) -> PolicySet:
        """Load the layered policy and apply runtime overrides.

        With no policy files at all the defaults apply (capability disabled).
        """
        files = self.policy_files + list(extra_files or [])
        policy = load_layered(files) if files else build_policy({})

        if self.disabled_by_env and policy.enabled:
            logger.warning(
                "Network policy DISABLED via NETWARDEN_DISABLE; "
                "traffic is NOT being filtered"
            )
            policy = dataclasses.replace(policy, enabled=False)
        return policy
