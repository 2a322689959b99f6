"""Repository classes for the durable decision store."""

from __future__ import annotations

import aiosqlite

from netwarden.audit.models import Decision, DecisionStats, Outcome, Reason


class DecisionRepo:
    """Append and query persisted decisions.

    The store assigns its own ``seq`` (an autoincrement key), so ordering
    survives proxy restarts; the in-process log's sequence does not.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def create(self, decision: Decision, policy_name: str = "") -> int:
        cursor = await self._db.execute(
            "INSERT INTO decisions "
            "(id, hostname, outcome, reason, matched_pattern, error, "
            "policy_name, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                decision.id,
                decision.hostname,
                decision.outcome.value,
                decision.reason.value,
                decision.matched_pattern,
                decision.error,
                policy_name,
                decision.timestamp,
            ),
        )
        await self._db.commit()
        return cursor.lastrowid

    async def query(
        self,
        hostname: str = "",
        outcome: Outcome | None = None,
        reason: Reason | None = None,
        since: float | None = None,
        until: float | None = None,
        after_seq: int = 0,
        limit: int = 50,
    ) -> list[Decision]:
        """Matching decisions, oldest first.

        With a positive *limit* the newest *limit* matches are returned.
        """
        clauses = ["seq > ?"]
        params: list = [after_seq]
        if hostname:
            clauses.append("hostname LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(hostname.lower())}%")
        if outcome is not None:
            clauses.append("outcome = ?")
            params.append(outcome.value)
        if reason is not None:
            clauses.append("reason = ?")
            params.append(reason.value)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(until)

        sql = f"SELECT * FROM decisions WHERE {' AND '.join(clauses)} ORDER BY seq DESC"
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._db.execute(sql, params)
        rows = [_row_to_decision(row) async for row in cursor]
        rows.reverse()
        return rows

    async def get(self, decision_id: str) -> Decision | None:
        cursor = await self._db.execute(
            "SELECT * FROM decisions WHERE id = ?", (decision_id,)
        )
        row = await cursor.fetchone()
        return _row_to_decision(row) if row else None

    async def stats(self, since: float | None = None) -> DecisionStats:
        sql = (
            "SELECT COUNT(*) AS total, "
            "COALESCE(SUM(outcome = 'allowed'), 0) AS allowed, "
            "COALESCE(SUM(error != ''), 0) AS errors "
            "FROM decisions"
        )
        params: tuple = ()
        if since is not None:
            sql += " WHERE timestamp >= ?"
            params = (since,)
        cursor = await self._db.execute(sql, params)
        row = await cursor.fetchone()
        total, allowed = row["total"], row["allowed"]
        return DecisionStats(
            total=total, allowed=allowed, blocked=total - allowed, errors=row["errors"]
        )

    async def latest_seq(self) -> int:
        cursor = await self._db.execute("SELECT COALESCE(MAX(seq), 0) FROM decisions")
        row = await cursor.fetchone()
        return row[0]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_decision(row: aiosqlite.Row) -> Decision:
    return Decision(
        hostname=row["hostname"],
        outcome=Outcome(row["outcome"]),
        reason=Reason(row["reason"]),
        matched_pattern=row["matched_pattern"],
        error=row["error"],
        timestamp=row["timestamp"],
        seq=row["seq"],
        id=row["id"],
    )
