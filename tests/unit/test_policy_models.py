"""Tests for policy and decision data models."""

from __future__ import annotations

import dataclasses

import pytest

from netwarden.audit.models import Decision, DecisionFilter, Outcome, Reason
from netwarden.policy.models import PolicyMode, PolicySet
from netwarden.policy.patterns import validate_pattern


def test_policy_frozen(allowlist_policy):
    with pytest.raises(dataclasses.FrozenInstanceError):
        allowlist_policy.mode = PolicyMode.DENYLIST  # type: ignore[misc]


def test_active_patterns_follow_mode():
    allowed = (validate_pattern("a.com"),)
    blocked = (validate_pattern("b.com"),)
    allow = PolicySet(mode=PolicyMode.ALLOWLIST, allowed=allowed, blocked=blocked)
    deny = PolicySet(mode=PolicyMode.DENYLIST, allowed=allowed, blocked=blocked)
    assert allow.active_patterns == allowed
    assert deny.active_patterns == blocked


def test_needs_resolution():
    assert PolicySet().needs_resolution
    assert not PolicySet(
        block_private_networks=False, block_metadata_services=False
    ).needs_resolution


def test_decision_defaults():
    d = Decision(hostname="a.com", outcome=Outcome.ALLOWED, reason=Reason.DEFAULT_ALLOW)
    assert d.allowed
    assert not d.is_error
    assert d.seq == 0
    assert len(d.id) == 12


def test_decision_to_dict():
    d = Decision(
        hostname="x.mixpanel.com",
        outcome=Outcome.BLOCKED,
        reason=Reason.MATCHED_DENY,
        matched_pattern="*.mixpanel.com",
        timestamp=100.0,
    )
    data = d.to_dict()
    assert data["outcome"] == "blocked"
    assert data["reason"] == "matched-deny"
    assert data["matched_pattern"] == "*.mixpanel.com"
    assert data["timestamp"] == 100.0


class TestDecisionFilter:
    def _decision(self, host="api.github.com", outcome=Outcome.ALLOWED, ts=100.0):
        reason = Reason.MATCHED_ALLOW if outcome is Outcome.ALLOWED else Reason.DEFAULT_DENY
        return Decision(hostname=host, outcome=outcome, reason=reason, timestamp=ts)

    def test_empty_matches_all(self):
        assert DecisionFilter().matches(self._decision())

    def test_hostname_substring_case_insensitive(self):
        assert DecisionFilter(hostname="GITHUB").matches(self._decision())
        assert not DecisionFilter(hostname="gitlab").matches(self._decision())

    def test_outcome(self):
        flt = DecisionFilter(outcome=Outcome.BLOCKED)
        assert flt.matches(self._decision(outcome=Outcome.BLOCKED))
        assert not flt.matches(self._decision())

    def test_reason(self):
        flt = DecisionFilter(reason=Reason.DEFAULT_DENY)
        assert flt.matches(self._decision(outcome=Outcome.BLOCKED))
        assert not flt.matches(self._decision())

    def test_time_range(self):
        flt = DecisionFilter(since=50.0, until=150.0)
        assert flt.matches(self._decision(ts=100.0))
        assert not flt.matches(self._decision(ts=10.0))
        assert not flt.matches(self._decision(ts=200.0))
