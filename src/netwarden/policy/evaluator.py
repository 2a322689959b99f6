"""Policy evaluator - hot path, classifies a hostname against a compiled policy."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from dataclasses import dataclass

from netwarden.audit.models import Decision, Outcome, Reason
from netwarden.policy.models import PolicyMode, PolicySet
from netwarden.policy.patterns import DomainPattern, PatternKind

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

METADATA_ADDRESSES: frozenset[IPAddress] = frozenset(
    ipaddress.ip_address(a)
    for a in (
        "169.254.169.254",  # AWS, GCP, Azure, OpenStack
        "169.254.170.2",  # AWS ECS task metadata
        "100.100.100.200",  # Alibaba Cloud
        "fd00:ec2::254",  # AWS IMDS over IPv6
        "fe80::a9fe:a9fe",
    )
)

METADATA_HOSTNAMES: frozenset[str] = frozenset(
    {"metadata.google.internal", "metadata.goog", "metadata"}
)

PRIVATE_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = tuple(
    ipaddress.ip_network(n)
    for n in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "0.0.0.0/8",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)


@dataclass(frozen=True)
class _PatternIndex:
    """Set-based lookup: exact names plus wildcard suffix domains."""

    exact: frozenset[str]
    suffixes: frozenset[str]
    by_raw: dict[str, DomainPattern]

    @classmethod
    def build(cls, patterns: Iterable[DomainPattern]) -> _PatternIndex:
        exact: set[str] = set()
        suffixes: set[str] = set()
        by_raw: dict[str, DomainPattern] = {}
        for p in patterns:
            if p.kind is PatternKind.WILDCARD_PREFIX:
                suffixes.add(p.domain)
            else:
                exact.add(p.raw)
            by_raw[p.raw] = p
        return cls(frozenset(exact), frozenset(suffixes), by_raw)

    def lookup(self, host: str) -> str | None:
        """Return the raw text of a matching pattern, or None."""
        if host in self.exact:
            return host
        labels = host.split(".")
        # A wildcard covers its own bare domain as well as any subdomain
        for i in range(len(labels)):
            suffix = ".".join(labels[i:])
            if suffix in self.suffixes:
                return "*." + suffix
        return None

    def all_matches(self, host: str) -> list[str]:
        found = []
        if host in self.exact:
            found.append(host)
        labels = host.split(".")
        for i in range(len(labels)):
            suffix = ".".join(labels[i:])
            if suffix in self.suffixes:
                found.append("*." + suffix)
        return found


class PolicyEvaluator:
    """Evaluates hostnames against one PolicySet snapshot.

    Structural checks (metadata services, private networks) run first, then
    bypass, then the domain list for the active mode.  Domain matching is a
    set-membership test, so pattern order never changes the outcome.
    """

    def __init__(self, policy: PolicySet) -> None:
        self.policy = policy
        self._allowed = _PatternIndex.build(policy.allowed)
        self._blocked = _PatternIndex.build(policy.blocked)
        self._bypass = _PatternIndex.build(policy.bypass)

    def evaluate(
        self,
        hostname: str,
        resolved_ips: Iterable[str | IPAddress] = (),
    ) -> Decision:
        """Classify *hostname* (already normalized) given its addresses."""
        host = hostname.lower().rstrip(".")
        addresses = _collect_addresses(host, resolved_ips)
        policy = self.policy

        if policy.block_metadata_services:
            if host in METADATA_HOSTNAMES:
                return _blocked(host, Reason.METADATA_SERVICE, host)
            for addr in addresses:
                if addr in METADATA_ADDRESSES:
                    return _blocked(host, Reason.METADATA_SERVICE, str(addr))

        if policy.block_private_networks:
            for addr in addresses:
                if is_private_address(addr):
                    return _blocked(host, Reason.PRIVATE_NETWORK, str(addr))

        bypass = self._bypass.lookup(host)
        if bypass is not None:
            return _allowed(host, Reason.BYPASS, bypass)

        if policy.mode is PolicyMode.DENYLIST:
            match = self._blocked.lookup(host)
            if match is not None:
                return _blocked(host, Reason.MATCHED_DENY, match)
            return _allowed(host, Reason.DEFAULT_ALLOW)

        match = self._allowed.lookup(host)
        if match is not None:
            return _allowed(host, Reason.MATCHED_ALLOW, match)
        return _blocked(host, Reason.DEFAULT_DENY)

    def is_bypassed(self, hostname: str) -> bool:
        """Whether TLS for *hostname* should be passed through untouched."""
        return self._bypass.lookup(hostname.lower().rstrip(".")) is not None

    def matching_patterns(self, hostname: str) -> dict[str, list[str]]:
        """Every pattern matching *hostname*, per list. For diagnostics."""
        host = hostname.lower().rstrip(".")
        return {
            "allowed": self._allowed.all_matches(host),
            "blocked": self._blocked.all_matches(host),
            "bypass": self._bypass.all_matches(host),
        }


def is_private_address(addr: IPAddress) -> bool:
    """True if *addr* is loopback, link-local, RFC1918 or unique-local."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return any(addr.version == net.version and addr in net for net in PRIVATE_NETWORKS)


def _collect_addresses(
    host: str, resolved_ips: Iterable[str | IPAddress]
) -> list[IPAddress]:
    addresses: list[IPAddress] = []
    for ip in (host, *resolved_ips):
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            continue
        if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
            addresses.append(addr.ipv4_mapped)
        addresses.append(addr)
    return addresses


def _allowed(host: str, reason: Reason, pattern: str = "") -> Decision:
    return Decision(
        hostname=host,
        outcome=Outcome.ALLOWED,
        reason=reason,
        matched_pattern=pattern,
    )


def _blocked(host: str, reason: Reason, pattern: str = "") -> Decision:
    return Decision(
        hostname=host,
        outcome=Outcome.BLOCKED,
        reason=reason,
        matched_pattern=pattern,
    )
