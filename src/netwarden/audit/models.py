"""Decision records - what the interceptor decided, and why."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field


class Outcome(enum.Enum):
    """Whether the connection attempt was let through."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"


class Reason(enum.Enum):
    """Which evaluation step produced the outcome."""

    MATCHED_ALLOW = "matched-allow"
    MATCHED_DENY = "matched-deny"
    PRIVATE_NETWORK = "private-network"
    METADATA_SERVICE = "metadata-service"
    DEFAULT_DENY = "default-deny"
    DEFAULT_ALLOW = "default-allow"
    BYPASS = "bypass"


@dataclass(frozen=True)
class Decision:
    """A single policy decision. Immutable once created."""

    hostname: str
    outcome: Outcome
    reason: Reason
    matched_pattern: str = ""
    error: str = ""
    timestamp: float = field(default_factory=time.time)
    seq: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOWED

    @property
    def is_error(self) -> bool:
        """True when this is a fail-closed result of an internal error."""
        return bool(self.error)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seq": self.seq,
            "hostname": self.hostname,
            "outcome": self.outcome.value,
            "reason": self.reason.value,
            "matched_pattern": self.matched_pattern,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DecisionFilter:
    """Predicates for querying the decision log. Empty fields match all."""

    hostname: str = ""
    outcome: Outcome | None = None
    reason: Reason | None = None
    since: float | None = None
    until: float | None = None

    def matches(self, decision: Decision) -> bool:
        if self.hostname and self.hostname.lower() not in decision.hostname.lower():
            return False
        if self.outcome is not None and decision.outcome is not self.outcome:
            return False
        if self.reason is not None and decision.reason is not self.reason:
            return False
        if self.since is not None and decision.timestamp < self.since:
            return False
        if self.until is not None and decision.timestamp > self.until:
            return False
        return True


@dataclass(frozen=True)
class DecisionStats:
    """Counters over the log, mirroring the proxy's request statistics."""

    total: int = 0
    allowed: int = 0
    blocked: int = 0
    errors: int = 0
