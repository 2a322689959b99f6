"""Tests for the traffic interceptor."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from netwarden.audit.log import DecisionLog
from netwarden.audit.models import Outcome, Reason
from netwarden.errors import ResolutionError
from netwarden.interceptor import (
    BLOCKED_HEADER,
    Action,
    TrafficInterceptor,
)
from netwarden.policy.evaluator import PolicyEvaluator
from netwarden.policy.holder import PolicyHolder
from netwarden.policy.models import PolicySet
from netwarden.resolve import HostResolver


@pytest.fixture
def resolver():
    r = MagicMock()
    r.resolve.return_value = ("140.82.112.6",)
    return r


def _interceptor(policy: PolicySet, resolver) -> TrafficInterceptor:
    return TrafficInterceptor(PolicyHolder(policy), DecisionLog(), resolver)


class TestHandle:
    def test_allowed_forwards(self, allowlist_policy, resolver):
        result = _interceptor(allowlist_policy, resolver).handle("api.github.com")
        assert result.action is Action.FORWARD
        assert result.forwarded
        assert result.decision.reason is Reason.MATCHED_ALLOW

    def test_blocked_rejects(self, allowlist_policy, resolver):
        result = _interceptor(allowlist_policy, resolver).handle("gist.github.com")
        assert result.action is Action.REJECT
        assert result.decision.reason is Reason.DEFAULT_DENY

    def test_hostname_normalized(self, allowlist_policy, resolver):
        result = _interceptor(allowlist_policy, resolver).handle("API.GitHub.com.")
        assert result.decision.hostname == "api.github.com"
        assert result.forwarded

    def test_private_resolution_blocks_allowlisted_host(self, allowlist_policy):
        result = _interceptor(allowlist_policy, None).handle(
            "api.github.com", resolve=lambda: ["10.0.0.5"]
        )
        assert result.action is Action.REJECT
        assert result.decision.reason is Reason.PRIVATE_NETWORK


class TestLogging:
    @pytest.mark.parametrize(
        "host", ["api.github.com", "gist.github.com", "bad host", "10.0.0.5", "x" * 300]
    )
    def test_exactly_one_entry_per_call(self, allowlist_policy, resolver, host):
        interceptor = _interceptor(allowlist_policy, resolver)
        interceptor.handle(host)
        assert len(interceptor.log) == 1

    def test_log_matches_pure_evaluation(self, denylist_policy, resolver):
        interceptor = _interceptor(denylist_policy, resolver)
        evaluator = PolicyEvaluator(denylist_policy)
        hosts = ["x.mixpanel.com", "mixpanel.com", "unrelated.com", "api.github.com"]
        for host in hosts:
            interceptor.handle(host)

        logged = list(interceptor.log.query())
        assert [d.hostname for d in logged] == hosts
        for entry in logged:
            expected = evaluator.evaluate(entry.hostname, ["140.82.112.6"])
            assert (entry.outcome, entry.reason) == (expected.outcome, expected.reason)

    def test_returned_decision_is_logged_entry(self, allowlist_policy, resolver):
        interceptor = _interceptor(allowlist_policy, resolver)
        result = interceptor.handle("api.github.com")
        assert list(interceptor.log.query()) == [result.decision]
        assert result.decision.seq == 1

    def test_evaluate_does_not_log(self, allowlist_policy, resolver):
        interceptor = _interceptor(allowlist_policy, resolver)
        decision = interceptor.evaluate("api.github.com")
        assert decision.allowed
        assert len(interceptor.log) == 0

    def test_log_sink_failure_does_not_change_decision(self, allowlist_policy, resolver):
        def broken(_d):
            raise RuntimeError("sink down")

        interceptor = TrafficInterceptor(
            PolicyHolder(allowlist_policy), DecisionLog(sinks=[broken]), resolver
        )
        assert interceptor.handle("api.github.com").forwarded


class TestFailClosed:
    def test_malformed_hostname(self, denylist_policy, resolver):
        result = _interceptor(denylist_policy, resolver).handle("exa mple.com")
        assert result.action is Action.REJECT
        assert result.decision.reason is Reason.DEFAULT_DENY
        assert result.decision.is_error
        resolver.resolve.assert_not_called()

    def test_resolution_error(self, denylist_policy, resolver):
        resolver.resolve.side_effect = ResolutionError("Lookup of a.com timed out")
        result = _interceptor(denylist_policy, resolver).handle("unrelated.com")
        assert result.decision.outcome is Outcome.BLOCKED
        assert result.decision.reason is Reason.DEFAULT_DENY
        assert "timed out" in result.decision.error

    def test_caller_resolver_oserror(self, denylist_policy):
        def resolve():
            raise OSError("network unreachable")

        result = _interceptor(denylist_policy, None).handle("unrelated.com", resolve=resolve)
        assert result.action is Action.REJECT
        assert "network unreachable" in result.decision.error

    def test_caller_resolver_unexpected_exception(self, denylist_policy):
        def resolve():
            raise ValueError("bad idna")

        interceptor = _interceptor(denylist_policy, None)
        result = interceptor.handle("api.github.com", resolve=resolve)
        assert result.action is Action.REJECT
        assert result.decision.reason is Reason.DEFAULT_DENY
        assert "bad idna" in result.decision.error
        assert len(interceptor.log) == 1

    def test_caller_resolver_empty_result(self, denylist_policy):
        result = _interceptor(denylist_policy, None).handle(
            "unrelated.com", resolve=lambda: []
        )
        assert result.action is Action.REJECT
        assert result.decision.reason is Reason.DEFAULT_DENY
        assert "no addresses" in result.decision.error

    def test_caller_resolver_is_time_bounded(self, denylist_policy):
        release = threading.Event()

        def hang():
            release.wait(5)
            return ["93.184.216.34"]

        resolver = HostResolver(timeout=0.1)
        try:
            result = _interceptor(denylist_policy, resolver).handle(
                "unrelated.com", resolve=hang
            )
        finally:
            release.set()
            resolver.shutdown()
        assert result.action is Action.REJECT
        assert "timed out" in result.decision.error

    def test_unexpected_resolver_failure(self, denylist_policy, resolver):
        resolver.resolve.side_effect = RuntimeError("pool shut down")
        interceptor = _interceptor(denylist_policy, resolver)
        result = interceptor.handle("unrelated.com")
        assert result.action is Action.REJECT
        assert result.decision.is_error
        assert len(interceptor.log) == 1


class TestLazyResolution:
    def test_not_resolved_without_structural_checks(self, resolver):
        policy = PolicySet(block_private_networks=False, block_metadata_services=False)
        _interceptor(policy, resolver).handle("example.com")
        resolver.resolve.assert_not_called()

    def test_ip_literal_not_resolved(self, denylist_policy, resolver):
        result = _interceptor(denylist_policy, resolver).handle("10.0.0.5")
        assert result.decision.reason is Reason.PRIVATE_NETWORK
        resolver.resolve.assert_not_called()

    def test_caller_resolve_called_once(self, denylist_policy):
        resolve = MagicMock(return_value=["93.184.216.34"])
        _interceptor(denylist_policy, None).handle("example.com", resolve=resolve)
        resolve.assert_called_once_with()

    def test_lookup_disabled(self, denylist_policy, resolver):
        result = _interceptor(denylist_policy, resolver).handle(
            "unrelated.com", lookup=False
        )
        assert result.forwarded
        assert result.decision.reason is Reason.DEFAULT_ALLOW
        resolver.resolve.assert_not_called()

    def test_lookup_disabled_still_checks_ip_literals(self, denylist_policy, resolver):
        result = _interceptor(denylist_policy, resolver).handle("10.0.0.5", lookup=False)
        assert result.decision.reason is Reason.PRIVATE_NETWORK


class TestRejection:
    def test_rejection_is_classifiable(self, allowlist_policy, resolver):
        result = _interceptor(allowlist_policy, resolver).handle("gist.github.com")
        rejection = result.rejection()
        assert rejection.status == 403
        assert "Blocked by network policy" in rejection.body
        assert "gist.github.com" in rejection.body
        assert rejection.headers[BLOCKED_HEADER] == "default-deny"


def test_uses_policy_swapped_in(allowlist_policy, denylist_policy, resolver):
    interceptor = _interceptor(allowlist_policy, resolver)
    assert not interceptor.handle("unrelated.com").forwarded
    interceptor.holder.swap(denylist_policy)
    assert interceptor.handle("unrelated.com").forwarded
