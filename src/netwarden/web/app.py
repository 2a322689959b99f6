"""FastAPI application factory for the netwarden query API."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI

from netwarden import __version__
from netwarden.audit.log import DecisionLog
from netwarden.config import NetwardenConfig
from netwarden.interceptor import TrafficInterceptor
from netwarden.policy.holder import PolicyHolder
from netwarden.resolve import HostResolver
from netwarden.storage.db import get_db


async def create_app(
    config: NetwardenConfig | None = None,
    policy_files: list[Path] | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or NetwardenConfig.load()

    app = FastAPI(
        title="netwarden",
        version=__version__,
        docs_url="/api/docs",
    )

    app.state.config = config
    app.state.db = await get_db(config.db_path)
    # Dry-run evaluations only; the proxy owns the real decision log
    app.state.interceptor = TrafficInterceptor(
        PolicyHolder(config.load_policy(policy_files)),
        DecisionLog(),
        HostResolver(timeout=config.resolve_timeout),
    )

    from netwarden.web.api.decisions import router as decisions_router
    from netwarden.web.api.policy import router as policy_router

    app.include_router(decisions_router, prefix="/api")
    app.include_router(policy_router, prefix="/api")

    @app.on_event("shutdown")
    async def shutdown() -> None:
        if hasattr(app.state, "db"):
            await app.state.db.close()

    return app
