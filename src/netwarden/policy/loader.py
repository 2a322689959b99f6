"""Load and validate PolicySet objects from YAML files.

Everything is checked here, before any traffic is evaluated: unknown keys,
wrong types and malformed patterns reject the whole file.  A policy may
``inherit`` presets (``preset:<name>``) or other files; domain lists from
parents are prepended, scalar keys set by the child win.
"""

from __future__ import annotations

import importlib.resources
import logging
from collections.abc import Iterable
from pathlib import Path

import yaml

from netwarden.errors import ConfigValidationError
from netwarden.policy.models import PolicyMode, PolicySet
from netwarden.policy.patterns import DomainPattern, validate_pattern

logger = logging.getLogger(__name__)

_PRESET_PREFIX = "preset:"

_LIST_KEYS = ("allowed_domains", "blocked_domains", "bypass_domains")
_BOOL_KEYS = (
    "enabled",
    "block_private_networks",
    "block_metadata_services",
    "block_tcp_udp",
    "strict",
)
_STR_KEYS = ("name", "mode", "description")
_KNOWN_KEYS = frozenset(_LIST_KEYS + _BOOL_KEYS + _STR_KEYS + ("inherit",))

DEFAULTS: dict = {
    "name": "unnamed",
    "mode": PolicyMode.DENYLIST.value,
    "enabled": False,
    "block_private_networks": True,
    "block_metadata_services": True,
    "block_tcp_udp": True,
    "strict": False,
}


def load_policy(path: str | Path) -> PolicySet:
    """Load a policy from a YAML file path."""
    return build_policy(_load_raw(Path(path), _resolved=set()))


def load_policy_from_string(text: str) -> PolicySet:
    """Parse a YAML string into a PolicySet, resolving inheritance."""
    data = _parse_yaml(text, "<string>")
    return build_policy(_expand(data, Path.cwd(), "<string>", _resolved=set()))


def load_layered(paths: Iterable[str | Path]) -> PolicySet:
    """Load several config files, later ones layered over earlier ones.

    Domain lists accumulate across layers; scalar keys are overridden.
    """
    merged: dict = {}
    for path in paths:
        merged = merge_raw(merged, _load_raw(Path(path), _resolved=set()))
    return build_policy(merged)


def merge_raw(base: dict, override: dict) -> dict:
    """Merge two raw config mappings."""
    result = dict(base)
    for key, value in override.items():
        if key in _LIST_KEYS:
            result[key] = _as_list(key, base.get(key, [])) + _as_list(key, value)
        else:
            result[key] = value
    return result


def _as_list(key: str, value) -> list:
    if isinstance(value, str):
        return [value]
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigValidationError(f"'{key}' must be a list of domain patterns")
    return list(value)


def build_policy(data: dict) -> PolicySet:
    """Turn a raw (already merged) mapping into a validated PolicySet."""
    _check_keys(data)
    raw = {**DEFAULTS, **data}

    for key in _BOOL_KEYS:
        if not isinstance(raw[key], bool):
            raise ConfigValidationError(
                f"'{key}' must be true or false, got {raw[key]!r}"
            )

    mode_text = raw["mode"]
    if not isinstance(mode_text, str):
        raise ConfigValidationError(f"'mode' must be a string, got {mode_text!r}")
    try:
        mode = PolicyMode(mode_text.strip().lower())
    except ValueError:
        raise ConfigValidationError(
            f"'mode' must be 'allowlist' or 'denylist', got {mode_text!r}"
        ) from None

    allowed = _parse_patterns("allowed_domains", raw.get("allowed_domains", []))
    blocked = _parse_patterns("blocked_domains", raw.get("blocked_domains", []))
    bypass = _parse_patterns("bypass_domains", raw.get("bypass_domains", []))

    warnings = list_warnings(mode, allowed, blocked)
    if warnings and raw["strict"]:
        raise ConfigValidationError("; ".join(warnings))
    level = logging.WARNING if raw["enabled"] else logging.DEBUG
    for warning in warnings:
        logger.log(level, "Policy '%s': %s", raw["name"], warning)

    return PolicySet(
        mode=mode,
        allowed=allowed,
        blocked=blocked,
        bypass=bypass,
        block_private_networks=raw["block_private_networks"],
        block_metadata_services=raw["block_metadata_services"],
        block_tcp_udp=raw["block_tcp_udp"],
        enabled=raw["enabled"],
        name=str(raw["name"]),
        warnings=tuple(warnings),
    )


def list_warnings(
    mode: PolicyMode,
    allowed: tuple[DomainPattern, ...],
    blocked: tuple[DomainPattern, ...],
) -> list[str]:
    """Likely-misconfiguration notes for a mode/list combination."""
    warnings: list[str] = []
    if mode is PolicyMode.ALLOWLIST:
        if not allowed:
            warnings.append(
                "allowlist mode with no allowed_domains blocks every request"
            )
        if blocked:
            warnings.append(
                f"blocked_domains ({len(blocked)} patterns) is ignored in "
                "allowlist mode"
            )
    else:
        if not blocked:
            warnings.append(
                "denylist mode with no blocked_domains allows every request"
            )
        if allowed:
            warnings.append(
                f"allowed_domains ({len(allowed)} patterns) is ignored in "
                "denylist mode"
            )
    return warnings


def _parse_patterns(key: str, values) -> tuple[DomainPattern, ...]:
    if values is None:
        values = []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        raise ConfigValidationError(f"'{key}' must be a list of domain patterns")

    patterns: list[DomainPattern] = []
    seen: set[str] = set()
    for value in values:
        try:
            pattern = validate_pattern(value)
        except ConfigValidationError as e:
            raise ConfigValidationError(f"{key}: {e}") from None
        if pattern.raw not in seen:
            seen.add(pattern.raw)
            patterns.append(pattern)
    return tuple(patterns)


def _check_keys(data: dict) -> None:
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigValidationError(f"Unknown policy keys: {', '.join(unknown)}")


def _parse_yaml(text: str, source: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML in {source}: {e}") from None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Policy YAML must be a mapping ({source})")
    return data


def _load_raw(path: Path, _resolved: set[str]) -> dict:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigValidationError(f"Cannot read policy file {path}: {e}") from None
    source = str(path.resolve())
    return _expand(_parse_yaml(text, str(path)), path.parent, source, _resolved)


def _expand(data: dict, base_dir: Path, source: str, _resolved: set[str]) -> dict:
    """Resolve ``inherit`` references into a single flat mapping."""
    _check_keys(data)

    # Circular inheritance detection
    if source in _resolved:
        raise ConfigValidationError(f"Circular policy inheritance detected: {source}")
    _resolved.add(source)

    inherit_list = data.get("inherit", [])
    if isinstance(inherit_list, str):
        inherit_list = [inherit_list]
    if not isinstance(inherit_list, list):
        raise ConfigValidationError("'inherit' must be a list of references")

    merged: dict = {}
    for ref in inherit_list:
        parent = _load_ref(str(ref), base_dir, _resolved)
        parent.pop("name", None)
        merged = merge_raw(merged, parent)

    # Only the current chain counts; shared ancestors are fine
    _resolved.discard(source)

    own = {k: v for k, v in data.items() if k != "inherit"}
    return merge_raw(merged, own)


def _load_ref(ref: str, base_dir: Path, _resolved: set[str]) -> dict:
    if ref.startswith(_PRESET_PREFIX):
        return _load_preset(ref[len(_PRESET_PREFIX) :], _resolved)
    path = Path(ref).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return _load_raw(path, _resolved)


def _load_preset(name: str, _resolved: set[str]) -> dict:
    pkg = importlib.resources.files("netwarden.policy.presets")
    resource = pkg.joinpath(f"{name}.yaml")
    if not resource.is_file():
        raise ConfigValidationError(f"Unknown policy preset: {name}")
    text = resource.read_text(encoding="utf-8")
    source = f"preset:{name}"
    return _expand(_parse_yaml(text, source), Path.cwd(), source, _resolved)


def available_presets() -> list[str]:
    pkg = importlib.resources.files("netwarden.policy.presets")
    return sorted(
        entry.name[: -len(".yaml")]
        for entry in pkg.iterdir()
        if entry.name.endswith(".yaml")
    )
