"""Append-only, in-process decision log."""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable, Iterator

from netwarden.audit.models import Decision, DecisionFilter, DecisionStats, Outcome
from netwarden.errors import LogWriteError

logger = logging.getLogger(__name__)

DecisionSink = Callable[[Decision], None]


class DecisionLog:
    """Records every decision, in evaluation order.

    Appends are serialized by a lock and tagged with a monotonic sequence
    number.  Entries are never edited or removed.  Sinks are called after
    the entry is stored; a failing sink is reported through ``on_error``
    and never propagates to the caller.
    """

    def __init__(
        self,
        sinks: list[DecisionSink] | None = None,
        on_error: Callable[[LogWriteError], None] | None = None,
    ) -> None:
        self._entries: list[Decision] = []
        self._lock = threading.Lock()
        self._seq = 0
        self._sinks = list(sinks or [])
        self._on_error = on_error

    def add_sink(self, sink: DecisionSink) -> None:
        self._sinks.append(sink)

    def append(self, decision: Decision) -> Decision:
        """Store *decision* and return the sequenced record."""
        with self._lock:
            self._seq += 1
            entry = dataclasses.replace(decision, seq=self._seq)
            self._entries.append(entry)

        for sink in self._sinks:
            try:
                sink(entry)
            except Exception as e:
                err = LogWriteError(f"Audit sink failed for #{entry.seq}: {e}")
                logger.warning("%s", err)
                self._report(err)
        return entry

    def _report(self, err: LogWriteError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:
            logger.exception("Audit error callback failed")

    def query(self, flt: DecisionFilter | None = None) -> Iterator[Decision]:
        """Lazily yield matching entries, oldest first.

        Each call starts over; entries appended while iterating are not
        included.
        """
        flt = flt or DecisionFilter()
        end = len(self._entries)
        for i in range(end):
            entry = self._entries[i]
            if flt.matches(entry):
                yield entry

    def recent(self, limit: int = 50, flt: DecisionFilter | None = None) -> list[Decision]:
        """The newest *limit* matching entries, oldest first."""
        matched = list(self.query(flt))
        return matched[-limit:] if limit > 0 else matched

    def stats(self) -> DecisionStats:
        total = allowed = errors = 0
        for entry in self.query():
            total += 1
            if entry.outcome is Outcome.ALLOWED:
                allowed += 1
            if entry.is_error:
                errors += 1
        return DecisionStats(
            total=total, allowed=allowed, blocked=total - allowed, errors=errors
        )

    def __len__(self) -> int:
        return len(self._entries)
