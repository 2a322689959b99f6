"""REST API for inspecting the active policy."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["policy"])


class CheckRequest(BaseModel):
    hostname: str
    resolve: bool = True


@router.get("/policy")
async def get_policy(request: Request):
    policy = request.app.state.interceptor.holder.policy
    return {
        "name": policy.name,
        "enabled": policy.enabled,
        "mode": policy.mode.value,
        "allowed_domains": [p.raw for p in policy.allowed],
        "blocked_domains": [p.raw for p in policy.blocked],
        "bypass_domains": [p.raw for p in policy.bypass],
        "block_private_networks": policy.block_private_networks,
        "block_metadata_services": policy.block_metadata_services,
        "block_tcp_udp": policy.block_tcp_udp,
        "warnings": list(policy.warnings),
    }


@router.post("/check")
async def check_host(body: CheckRequest, request: Request):
    """Evaluate a hostname against the active policy without recording it."""
    interceptor = request.app.state.interceptor
    decision = await asyncio.to_thread(
        interceptor.evaluate, body.hostname, lookup=body.resolve
    )
    return decision.to_dict()
