"""Tests for the mitmproxy addon boundary."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

pytest.importorskip("mitmproxy")

from netwarden.audit.log import DecisionLog  # noqa: E402
from netwarden.audit.models import Decision, Outcome, Reason  # noqa: E402
from netwarden.interceptor import BLOCKED_HEADER, TrafficInterceptor  # noqa: E402
from netwarden.policy.holder import PolicyHolder  # noqa: E402
from netwarden.policy.models import PolicyMode, PolicySet  # noqa: E402
from netwarden.policy.patterns import validate_pattern  # noqa: E402
from netwarden.proxy.addon import NetwardenAddon  # noqa: E402


def _policy(enabled: bool = True) -> PolicySet:
    return PolicySet(
        name="addon-test",
        mode=PolicyMode.ALLOWLIST,
        allowed=(validate_pattern("api.github.com"),),
        bypass=(validate_pattern("*.apple.com"),),
        enabled=enabled,
    )


@pytest.fixture
def addon() -> NetwardenAddon:
    resolver = MagicMock()
    resolver.resolve.return_value = ("140.82.112.6",)
    interceptor = TrafficInterceptor(PolicyHolder(_policy()), DecisionLog(), resolver)
    return NetwardenAddon(interceptor=interceptor)


def _flow(host: str, conn_id: str = "conn-1") -> MagicMock:
    flow = MagicMock()
    flow.request.host = host
    flow.request.pretty_host = host
    flow.client_conn.id = conn_id
    flow.response = None
    return flow


class TestHttpConnect:
    def test_allowed_tunnel(self, addon):
        flow = _flow("api.github.com")
        asyncio.run(addon.http_connect(flow))
        assert flow.response is None
        assert len(addon.interceptor.log) == 1

    def test_blocked_tunnel_gets_403(self, addon):
        flow = _flow("evil.example.com")
        asyncio.run(addon.http_connect(flow))
        assert flow.response.status_code == 403
        assert flow.response.headers[BLOCKED_HEADER] == "default-deny"
        assert b"Blocked by network policy" in flow.response.content


class TestRequest:
    def test_in_tunnel_request_not_reevaluated(self, addon):
        connect = _flow("api.github.com")
        asyncio.run(addon.http_connect(connect))
        asyncio.run(addon.request(_flow("api.github.com")))
        assert len(addon.interceptor.log) == 1

    def test_different_host_in_tunnel_evaluated(self, addon):
        asyncio.run(addon.http_connect(_flow("api.github.com")))
        flow = _flow("gist.github.com")
        asyncio.run(addon.request(flow))
        assert flow.response.status_code == 403
        assert len(addon.interceptor.log) == 2

    def test_plain_http_request(self, addon):
        flow = _flow("api.github.com", conn_id="plain")
        asyncio.run(addon.request(flow))
        assert flow.response is None
        assert len(addon.interceptor.log) == 1

    def test_existing_response_untouched(self, addon):
        flow = _flow("evil.example.com")
        flow.response = sentinel = object()
        asyncio.run(addon.request(flow))
        assert flow.response is sentinel
        assert len(addon.interceptor.log) == 0

    def test_disconnect_forgets_tunnel(self, addon):
        asyncio.run(addon.http_connect(_flow("api.github.com")))
        client = MagicMock()
        client.id = "conn-1"
        addon.client_disconnected(client)
        asyncio.run(addon.request(_flow("api.github.com")))
        assert len(addon.interceptor.log) == 2


class TestDisabled:
    def test_pass_through_and_warn_once(self, caplog):
        interceptor = TrafficInterceptor(
            PolicyHolder(_policy(enabled=False)), DecisionLog(), MagicMock()
        )
        addon = NetwardenAddon(interceptor=interceptor)
        with caplog.at_level(logging.WARNING, logger="netwarden.proxy.addon"):
            for _ in range(3):
                flow = _flow("evil.example.com")
                asyncio.run(addon.request(flow))
                assert flow.response is None
        assert len(interceptor.log) == 0
        assert caplog.text.count("NOT being filtered") == 1


class TestTlsClientHello:
    def _hello(self, sni: str | None):
        data = MagicMock()
        data.client_hello.sni = sni
        data.context.server.address = ("17.0.0.1", 443)
        data.ignore_connection = False
        return data

    def test_bypass_host_not_intercepted(self, addon):
        data = self._hello("swscan.apple.com")
        addon.tls_clienthello(data)
        assert data.ignore_connection is True

    def test_regular_host_intercepted(self, addon):
        data = self._hello("api.github.com")
        addon.tls_clienthello(data)
        assert data.ignore_connection is False


class TestPersistence:
    def _decision(self) -> Decision:
        return Decision(hostname="a.com", outcome=Outcome.ALLOWED, reason=Reason.BYPASS)

    def test_persist_writes_to_repo(self, addon):
        repo = MagicMock()
        repo.create = AsyncMock(return_value=1)
        addon._repo = repo
        decision = self._decision()
        asyncio.run(addon._persist(decision, "addon-test"))
        repo.create.assert_awaited_once_with(decision, policy_name="addon-test")

    def test_persist_failure_is_logged(self, addon, caplog):
        import aiosqlite

        repo = MagicMock()
        repo.create = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
        addon._repo = repo
        asyncio.run(addon._persist(self._decision(), "addon-test"))
        assert "database is locked" in caplog.text

    def test_sink_without_store_is_noop(self, addon):
        addon._persist_threadsafe(self._decision())
