"""REST API for the persisted decision log."""

from __future__ import annotations

import time

from fastapi import APIRouter, Query, Request

from netwarden.audit.models import Outcome, Reason
from netwarden.storage.repos import DecisionRepo

router = APIRouter(tags=["decisions"])


@router.get("/decisions")
async def list_decisions(
    request: Request,
    hostname: str = "",
    outcome: Outcome | None = None,
    reason: Reason | None = None,
    since: float | None = Query(None, description="Only the last N seconds."),
    after_seq: int = 0,
    limit: int = Query(50, ge=0, le=1000),
):
    repo = DecisionRepo(request.app.state.db)
    decisions = await repo.query(
        hostname=hostname,
        outcome=outcome,
        reason=reason,
        since=time.time() - since if since is not None else None,
        after_seq=after_seq,
        limit=limit,
    )
    return [d.to_dict() for d in decisions]


@router.get("/decisions/stats")
async def decision_stats(request: Request):
    repo = DecisionRepo(request.app.state.db)
    stats = await repo.stats()
    return {
        "total": stats.total,
        "allowed": stats.allowed,
        "blocked": stats.blocked,
        "errors": stats.errors,
    }
