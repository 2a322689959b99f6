"""Traffic interceptor - decides, acts on, and records each connection attempt."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from netwarden.audit.log import DecisionLog
from netwarden.audit.models import Decision, Outcome, Reason
from netwarden.errors import HostnameError, ResolutionError
from netwarden.policy.holder import PolicyHolder
from netwarden.policy.patterns import is_ip_literal, normalize_hostname
from netwarden.resolve import HostResolver

logger = logging.getLogger(__name__)

BLOCKED_HEADER = "X-Netwarden-Blocked"
BLOCKED_STATUS = 403

ResolveFn = Callable[[], Iterable[str]]


class Action(enum.Enum):
    """What the proxy does with the connection."""

    FORWARD = "forward"
    REJECT = "reject"


@dataclass(frozen=True)
class Rejection:
    """The response a blocked client receives."""

    status: int
    body: str
    headers: dict[str, str]


@dataclass(frozen=True)
class InterceptResult:
    """Outcome of :meth:`TrafficInterceptor.handle`."""

    action: Action
    decision: Decision

    @property
    def forwarded(self) -> bool:
        return self.action is Action.FORWARD

    def rejection(self) -> Rejection:
        """An unambiguous "blocked by network policy" response."""
        d = self.decision
        return Rejection(
            status=BLOCKED_STATUS,
            body=f"Blocked by network policy: {d.hostname} ({d.reason.value})\n",
            headers={
                "Content-Type": "text/plain",
                BLOCKED_HEADER: d.reason.value,
            },
        )


class TrafficInterceptor:
    """Classifies outbound connection attempts against the active policy.

    Every call to :meth:`handle` appends exactly one entry to the decision
    log.  Anything that goes wrong while evaluating (malformed hostname,
    failed or slow lookup) blocks the attempt.
    """

    def __init__(
        self,
        holder: PolicyHolder,
        log: DecisionLog,
        resolver: HostResolver | None = None,
    ) -> None:
        self._holder = holder
        self._log = log
        self._resolver = resolver or HostResolver()

    @property
    def holder(self) -> PolicyHolder:
        return self._holder

    @property
    def log(self) -> DecisionLog:
        return self._log

    def handle(
        self,
        hostname: str,
        resolve: ResolveFn | None = None,
        *,
        lookup: bool = True,
    ) -> InterceptResult:
        """Evaluate one connection attempt to *hostname*.

        *resolve* is called at most once, and only when the policy needs
        addresses for its private-network or metadata checks.  It runs
        under the resolver's timeout; an empty result or any exception
        blocks the attempt.  Without it the resolver's own lookup is used.
        With ``lookup=False`` no addresses are looked up at all, so the
        structural checks only see IP literals.
        """
        decision = self._decide(hostname, resolve, lookup)
        entry = self._log.append(decision)

        if entry.outcome is Outcome.ALLOWED:
            logger.debug("Allowed %s (%s)", entry.hostname, entry.reason.value)
            return InterceptResult(action=Action.FORWARD, decision=entry)

        logger.info(
            "Blocked %s (%s%s)",
            entry.hostname,
            entry.reason.value,
            f": {entry.error}" if entry.error else "",
        )
        return InterceptResult(action=Action.REJECT, decision=entry)

    def evaluate(
        self,
        hostname: str,
        resolve: ResolveFn | None = None,
        *,
        lookup: bool = True,
    ) -> Decision:
        """Classify without recording, for dry runs."""
        return self._decide(hostname, resolve, lookup)

    def _decide(
        self, hostname: str, resolve: ResolveFn | None, lookup: bool
    ) -> Decision:
        policy, evaluator = self._holder.current

        try:
            host = normalize_hostname(hostname)
        except HostnameError as e:
            return _fail_closed(str(hostname), str(e))

        addresses: Iterable[str] = ()
        if lookup and policy.needs_resolution and not is_ip_literal(host):
            try:
                if resolve is None:
                    addresses = self._resolver.resolve(host)
                else:
                    addresses = self._resolver.resolve_with(host, resolve)
            except ResolutionError as e:
                return _fail_closed(host, str(e))
            except Exception as e:
                logger.exception("Unexpected failure resolving %s", host)
                return _fail_closed(host, f"Lookup of {host} failed: {e}")

        return evaluator.evaluate(host, addresses)


def _fail_closed(hostname: str, error: str) -> Decision:
    return Decision(
        hostname=hostname,
        outcome=Outcome.BLOCKED,
        reason=Reason.DEFAULT_DENY,
        error=error,
    )
