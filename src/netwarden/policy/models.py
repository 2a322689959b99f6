"""Policy data models - immutable dataclasses used across the entire codebase."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from netwarden.policy.patterns import DomainPattern


class PolicyMode(enum.Enum):
    """Which domain list is authoritative."""

    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"


@dataclass(frozen=True)
class PolicySet:
    """A complete, validated network policy.

    Only one of ``allowed``/``blocked`` is consulted, depending on ``mode``.
    Instances are never mutated; reconfiguration builds a new one.
    """

    mode: PolicyMode = PolicyMode.DENYLIST
    allowed: tuple[DomainPattern, ...] = ()
    blocked: tuple[DomainPattern, ...] = ()
    bypass: tuple[DomainPattern, ...] = ()
    block_private_networks: bool = True
    block_metadata_services: bool = True
    block_tcp_udp: bool = True
    enabled: bool = True
    name: str = "unnamed"
    warnings: tuple[str, ...] = ()

    @property
    def active_patterns(self) -> tuple[DomainPattern, ...]:
        """The list the current mode evaluates against."""
        if self.mode is PolicyMode.ALLOWLIST:
            return self.allowed
        return self.blocked

    @property
    def needs_resolution(self) -> bool:
        """Whether evaluation looks at resolved addresses at all."""
        return self.block_private_networks or self.block_metadata_services
