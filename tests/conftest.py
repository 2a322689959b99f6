"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from netwarden.policy.models import PolicyMode, PolicySet
from netwarden.policy.patterns import validate_pattern


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def allowlist_policy_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "allowlist.yaml"


@pytest.fixture
def denylist_policy_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "denylist.yaml"


@pytest.fixture
def allowlist_policy() -> PolicySet:
    return PolicySet(
        name="allow-github",
        mode=PolicyMode.ALLOWLIST,
        allowed=(validate_pattern("api.github.com"),),
    )


@pytest.fixture
def denylist_policy() -> PolicySet:
    return PolicySet(
        name="deny-telemetry",
        mode=PolicyMode.DENYLIST,
        blocked=(validate_pattern("*.mixpanel.com"),),
    )


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG dirs at tmp_path and clear netwarden env overrides."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    for var in (
        "NETWARDEN_PROXY_PORT",
        "NETWARDEN_WEB_PORT",
        "NETWARDEN_MONITOR_INTERVAL",
        "NETWARDEN_RESOLVE_TIMEOUT",
        "NETWARDEN_DISABLE",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path
