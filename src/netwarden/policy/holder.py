"""Atomically swappable reference to the active policy."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from netwarden.errors import ConfigValidationError
from netwarden.policy.evaluator import PolicyEvaluator
from netwarden.policy.models import PolicySet

logger = logging.getLogger(__name__)


class PolicyHolder:
    """Publishes immutable policy snapshots to concurrent readers.

    Readers call :attr:`current` once per evaluation and use that snapshot
    throughout; they never lock.  Writers build a complete PolicySet and
    evaluator first, then publish both with a single reference assignment.
    """

    def __init__(self, policy: PolicySet) -> None:
        self._snapshot = (policy, PolicyEvaluator(policy))
        self._write_lock = threading.Lock()
        self._generation = 0

    @property
    def current(self) -> tuple[PolicySet, PolicyEvaluator]:
        """The active (policy, evaluator) pair."""
        return self._snapshot

    @property
    def policy(self) -> PolicySet:
        return self._snapshot[0]

    @property
    def generation(self) -> int:
        """Incremented on every successful swap."""
        return self._generation

    def swap(self, policy: PolicySet) -> PolicySet:
        """Publish *policy*, returning the one it replaced."""
        evaluator = PolicyEvaluator(policy)
        with self._write_lock:
            old = self._snapshot[0]
            self._snapshot = (policy, evaluator)
            self._generation += 1
        logger.info(
            "Activated policy '%s' (%s, generation %d)",
            policy.name,
            policy.mode.value,
            self._generation,
        )
        return old

    def reload(self, loader: Callable[[], PolicySet]) -> bool:
        """Load a replacement via *loader*; keep the current policy on failure."""
        try:
            policy = loader()
        except ConfigValidationError as e:
            logger.error("Policy reload rejected, keeping '%s': %s", self.policy.name, e)
            return False
        self.swap(policy)
        return True
