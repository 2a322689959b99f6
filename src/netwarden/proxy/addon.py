"""mitmproxy addon that puts the traffic interceptor in front of every request.

Run in-process via ``netwarden proxy``, or standalone with
``mitmdump -s netwarden/proxy/addon.py``.

CONNECT tunnels are evaluated once, when the tunnel is requested.  Plain
HTTP requests, and requests inside a tunnel whose Host differs from the
tunnel target, are evaluated per request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

import aiosqlite
from mitmproxy import ctx, http, tls

from netwarden.audit.log import DecisionLog
from netwarden.audit.models import Decision
from netwarden.config import NetwardenConfig
from netwarden.errors import LogWriteError
from netwarden.interceptor import InterceptResult, TrafficInterceptor
from netwarden.policy.holder import PolicyHolder
from netwarden.resolve import HostResolver
from netwarden.storage.db import get_db
from netwarden.storage.repos import DecisionRepo

logger = logging.getLogger(__name__)


class NetwardenAddon:
    def __init__(
        self,
        config: NetwardenConfig | None = None,
        interceptor: TrafficInterceptor | None = None,
    ) -> None:
        self._config = config
        self._interceptor = interceptor
        self._tunnels: dict[str, str] = {}
        self._db: aiosqlite.Connection | None = None
        self._repo: DecisionRepo | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._warned_disabled = False

    @property
    def interceptor(self) -> TrafficInterceptor:
        if self._interceptor is None:
            config = self._ensure_config()
            resolver = HostResolver(timeout=config.resolve_timeout)
            self._interceptor = TrafficInterceptor(
                PolicyHolder(config.load_policy()), DecisionLog(), resolver
            )
        return self._interceptor

    def _ensure_config(self) -> NetwardenConfig:
        if self._config is None:
            self._config = NetwardenConfig.load()
        return self._config

    # --- lifecycle ---------------------------------------------------------

    def load(self, loader) -> None:
        loader.add_option(
            "netwarden_config",
            Sequence[str],
            [],
            "Policy files layered over the global netwarden policy.",
        )
        loader.add_option(
            "netwarden_db",
            str,
            "",
            "SQLite file decisions are persisted to (default: the data dir).",
        )
        self.interceptor.log.add_sink(self._persist_threadsafe)

    def configure(self, updated: set[str]) -> None:
        if "netwarden_config" in updated and ctx.options.netwarden_config:
            files = [Path(p) for p in ctx.options.netwarden_config]
            config = self._ensure_config()
            # A bad file keeps the previous policy active
            self.interceptor.holder.reload(lambda: config.load_policy(files))

    async def running(self) -> None:
        self._loop = asyncio.get_running_loop()
        db_path = ctx.options.netwarden_db or self._ensure_config().db_path
        try:
            self._db = await get_db(db_path)
            self._repo = DecisionRepo(self._db)
        except (aiosqlite.Error, OSError) as e:
            logger.error(
                "%s", LogWriteError(f"Decision store unavailable ({db_path}): {e}")
            )

        policy = self.interceptor.holder.policy
        logger.info(
            "netwarden active: policy '%s' (%s, enabled=%s)",
            policy.name,
            policy.mode.value,
            policy.enabled,
        )

    async def done(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._repo = None

    # --- traffic hooks -----------------------------------------------------

    async def http_connect(self, flow: http.HTTPFlow) -> None:
        if not self._enforcing():
            return
        result = await asyncio.to_thread(self.interceptor.handle, flow.request.host)
        if result.forwarded:
            self._tunnels[flow.client_conn.id] = result.decision.hostname
        else:
            flow.response = _blocked_response(result)

    async def request(self, flow: http.HTTPFlow) -> None:
        if flow.response is not None or not self._enforcing():
            return
        host = flow.request.pretty_host
        if self._tunnels.get(flow.client_conn.id) == host.lower().rstrip("."):
            return
        result = await asyncio.to_thread(self.interceptor.handle, host)
        if not result.forwarded:
            flow.response = _blocked_response(result)

    def tls_clienthello(self, data: tls.ClientHelloData) -> None:
        if not self._enforcing():
            return
        host = data.client_hello.sni
        if not host and data.context.server.address:
            host = data.context.server.address[0]
        if host and self.interceptor.holder.current[1].is_bypassed(host):
            # Certificate-pinned services: tunnel without interception
            data.ignore_connection = True

    def client_disconnected(self, client) -> None:
        self._tunnels.pop(client.id, None)

    # --- helpers -----------------------------------------------------------

    def _enforcing(self) -> bool:
        if self.interceptor.holder.policy.enabled:
            self._warned_disabled = False
            return True
        if not self._warned_disabled:
            logger.warning("Network policy is disabled; traffic is NOT being filtered")
            self._warned_disabled = True
        return False

    def _persist_threadsafe(self, decision: Decision) -> None:
        loop = self._loop
        if loop is None or self._repo is None:
            return
        policy_name = self.interceptor.holder.policy.name
        asyncio.run_coroutine_threadsafe(self._persist(decision, policy_name), loop)

    async def _persist(self, decision: Decision, policy_name: str) -> None:
        if self._repo is None:
            return
        try:
            await self._repo.create(decision, policy_name=policy_name)
        except (aiosqlite.Error, ValueError) as e:
            logger.warning(
                "%s", LogWriteError(f"Failed to persist decision #{decision.seq}: {e}")
            )


def _blocked_response(result: InterceptResult) -> http.Response:
    rejection = result.rejection()
    return http.Response.make(
        rejection.status, rejection.body.encode(), rejection.headers
    )


addons = [NetwardenAddon()]
