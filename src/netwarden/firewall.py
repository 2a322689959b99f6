"""Firewall rule set that forces guest traffic through the proxy.

Uses iptables/ip6tables on the OUTPUT chain.  Every rule carries a
``netwarden`` comment so it can be checked for and removed individually.
The monitor only asks whether the full set is still present.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from netwarden.policy.models import PolicySet

logger = logging.getLogger(__name__)

RULE_COMMENT = "netwarden"

_COMMAND_TIMEOUT = 5


@dataclass(frozen=True)
class FirewallRule:
    """One OUTPUT-chain rule. ``insert`` rules go to the top of the chain."""

    binary: str
    args: tuple[str, ...]
    insert: bool = False

    def command(self, op: str) -> list[str]:
        return [
            self.binary,
            op,
            "OUTPUT",
            *self.args,
            "-m",
            "comment",
            "--comment",
            RULE_COMMENT,
        ]


def build_rules(policy: PolicySet, proxy_uid: int | None = None) -> list[FirewallRule]:
    """The rule set implied by *policy*'s structural flags."""
    rules: list[FirewallRule] = []

    if policy.block_tcp_udp:
        for binary, icmp_reject in (
            ("iptables", "icmp-port-unreachable"),
            ("ip6tables", "icmp6-port-unreachable"),
        ):
            rules.extend(
                [
                    FirewallRule(binary, ("-m", "state", "--state", "ESTABLISHED,RELATED", "-j", "ACCEPT")),
                    FirewallRule(binary, ("-p", "udp", "--dport", "53", "-j", "ACCEPT")),
                    FirewallRule(binary, ("-p", "tcp", "--dport", "53", "-j", "ACCEPT")),
                    FirewallRule(binary, ("-o", "lo", "-j", "ACCEPT")),
                ]
            )
            if proxy_uid is not None:
                # The proxy's own upstream connections
                rules.append(
                    FirewallRule(
                        binary,
                        ("-m", "owner", "--uid-owner", str(proxy_uid), "-j", "ACCEPT"),
                    )
                )
            rules.extend(
                [
                    FirewallRule(binary, ("-p", "tcp", "-j", "REJECT", "--reject-with", "tcp-reset")),
                    FirewallRule(binary, ("-p", "udp", "-j", "REJECT", "--reject-with", icmp_reject)),
                ]
            )

    if policy.block_private_networks:
        for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"):
            rules.append(FirewallRule("iptables", ("-d", net, "-j", "REJECT"), insert=True))
        for net in ("fc00::/7", "fe80::/10"):
            rules.append(FirewallRule("ip6tables", ("-d", net, "-j", "REJECT"), insert=True))

    if policy.block_metadata_services:
        rules.append(
            FirewallRule("iptables", ("-d", "169.254.169.254", "-j", "REJECT"), insert=True)
        )
        rules.append(
            FirewallRule("ip6tables", ("-d", "fe80::a9fe:a9fe", "-j", "REJECT"), insert=True)
        )

    return rules


class FirewallRules:
    """Installs, checks and removes the netwarden rule set.

    Rules are tracked so that :meth:`remove` only touches what this set
    describes.  Commands run with a timeout; ``sudo -n`` is prepended when
    requested.
    """

    def __init__(
        self,
        policy: PolicySet,
        proxy_uid: int | None = None,
        sudo: bool = False,
        timeout: float = _COMMAND_TIMEOUT,
    ) -> None:
        self.rules = build_rules(policy, proxy_uid=proxy_uid)
        self._sudo = sudo
        self._timeout = timeout

    def install(self) -> bool:
        """Add every missing rule. Returns True if the full set is in place."""
        ok = True
        for rule in self.rules:
            present = self._run(rule.command("-C"))
            if present:
                continue
            op = "-I" if rule.insert else "-A"
            if not self._run(rule.command(op)):
                logger.error("Failed to add %s rule: %s", rule.binary, " ".join(rule.args))
                ok = False
        if ok:
            logger.info("Installed %d firewall rules", len(self.rules))
        return ok

    def remove(self) -> int:
        """Delete every rule of the set. Returns how many were removed."""
        removed = 0
        for rule in self.rules:
            if self._run(rule.command("-D")):
                removed += 1
        logger.info("Removed %d firewall rules", removed)
        return removed

    def check(self) -> bool | None:
        """True if all rules are installed, False if any is missing.

        None when the state cannot be determined (no iptables binary,
        missing privileges, timeout).
        """
        for rule in self.rules:
            try:
                proc = subprocess.run(
                    self._prefix(rule.command("-C")),
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )
            except (subprocess.TimeoutExpired, FileNotFoundError, PermissionError) as e:
                logger.debug("Cannot check firewall rules: %s", e)
                return None
            if proc.returncode == 1:
                return False
            if proc.returncode != 0:
                # 2+ is a usage/permission failure, not an absent rule
                logger.debug("iptables -C failed: %s", proc.stderr.strip())
                return None
        return True

    def _prefix(self, cmd: list[str]) -> list[str]:
        return ["sudo", "-n", *cmd] if self._sudo else cmd

    def _run(self, cmd: list[str]) -> bool:
        try:
            subprocess.run(
                self._prefix(cmd),
                check=True,
                capture_output=True,
                timeout=self._timeout,
            )
            return True
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.debug("Command failed (%s): %s", " ".join(cmd), e)
            return False
