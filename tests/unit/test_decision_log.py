"""Tests for the in-process decision log."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from netwarden.audit.log import DecisionLog
from netwarden.audit.models import Decision, DecisionFilter, Outcome, Reason
from netwarden.errors import LogWriteError


def _allowed(host: str, ts: float = 100.0) -> Decision:
    return Decision(hostname=host, outcome=Outcome.ALLOWED, reason=Reason.DEFAULT_ALLOW, timestamp=ts)


def _blocked(host: str, ts: float = 100.0) -> Decision:
    return Decision(hostname=host, outcome=Outcome.BLOCKED, reason=Reason.MATCHED_DENY, timestamp=ts)


def test_append_assigns_sequence():
    log = DecisionLog()
    first = log.append(_allowed("a.com"))
    second = log.append(_blocked("b.com"))
    assert (first.seq, second.seq) == (1, 2)
    assert len(log) == 2


def test_append_preserves_fields():
    log = DecisionLog()
    original = _blocked("b.com")
    entry = log.append(original)
    assert entry.id == original.id
    assert entry.outcome is original.outcome
    assert original.seq == 0


def test_query_is_restartable():
    log = DecisionLog()
    for host in ("a.com", "b.com", "c.com"):
        log.append(_allowed(host))
    first = [d.hostname for d in log.query()]
    second = [d.hostname for d in log.query()]
    assert first == second == ["a.com", "b.com", "c.com"]


def test_query_is_lazy_and_bounded():
    log = DecisionLog()
    log.append(_allowed("a.com"))
    it = log.query()
    log.append(_allowed("b.com"))
    # The generator has not started yet, so it sees both
    assert [d.hostname for d in it] == ["a.com", "b.com"]

    it = log.query()
    assert next(it).hostname == "a.com"
    log.append(_allowed("c.com"))
    assert [d.hostname for d in it] == ["b.com"]


def test_query_filters():
    log = DecisionLog()
    log.append(_allowed("api.github.com", ts=10.0))
    log.append(_blocked("x.mixpanel.com", ts=20.0))
    log.append(_blocked("api.mixpanel.com", ts=30.0))

    assert [d.hostname for d in log.query(DecisionFilter(hostname="mixpanel"))] == [
        "x.mixpanel.com",
        "api.mixpanel.com",
    ]
    assert len(list(log.query(DecisionFilter(outcome=Outcome.ALLOWED)))) == 1
    assert [d.hostname for d in log.query(DecisionFilter(since=15.0, until=25.0))] == [
        "x.mixpanel.com"
    ]


def test_recent():
    log = DecisionLog()
    for i in range(10):
        log.append(_allowed(f"h{i}.com"))
    assert [d.hostname for d in log.recent(3)] == ["h7.com", "h8.com", "h9.com"]
    assert len(log.recent(0)) == 10


def test_stats():
    log = DecisionLog()
    log.append(_allowed("a.com"))
    log.append(_blocked("b.com"))
    log.append(
        Decision(
            hostname="bad",
            outcome=Outcome.BLOCKED,
            reason=Reason.DEFAULT_DENY,
            error="Lookup of bad timed out",
        )
    )
    stats = log.stats()
    assert (stats.total, stats.allowed, stats.blocked, stats.errors) == (3, 1, 2, 1)


def test_sink_receives_sequenced_entry():
    sink = MagicMock()
    log = DecisionLog(sinks=[sink])
    entry = log.append(_allowed("a.com"))
    sink.assert_called_once_with(entry)


def test_failing_sink_does_not_raise():
    errors: list[LogWriteError] = []
    good = MagicMock()

    def broken(_decision):
        raise OSError("disk full")

    log = DecisionLog(sinks=[broken, good], on_error=errors.append)
    entry = log.append(_blocked("b.com"))

    assert entry.outcome is Outcome.BLOCKED
    assert len(log) == 1
    good.assert_called_once()
    assert len(errors) == 1
    assert "disk full" in str(errors[0])


def test_failing_error_callback_does_not_raise():
    good = MagicMock()

    def broken(_decision):
        raise OSError("disk full")

    def bad_callback(_err):
        raise RuntimeError("callback down")

    log = DecisionLog(sinks=[broken, good], on_error=bad_callback)
    entry = log.append(_allowed("a.com"))

    assert entry.seq == 1
    assert len(log) == 1
    good.assert_called_once_with(entry)


def test_concurrent_appends_get_unique_ordered_seq():
    log = DecisionLog()

    def worker(n: int):
        for i in range(200):
            log.append(_allowed(f"w{n}-{i}.com"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    seqs = [d.seq for d in log.query()]
    assert seqs == list(range(1, 1601))
