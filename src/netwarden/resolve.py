"""Hostname-to-address resolution for the structural policy checks.

Lookups go through ``socket.getaddrinfo`` on a small worker pool so that
each one is bounded by a timeout; the traffic path never waits on a hung
resolver.  Successful results are cached for a short TTL.
"""

from __future__ import annotations

import concurrent.futures
import ipaddress
import logging
import socket
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from netwarden.errors import ResolutionError

logger = logging.getLogger(__name__)

# Timeout in seconds for a single lookup.
DEFAULT_TIMEOUT = 2.0

# Cached results are reused for this many seconds.
_CACHE_TTL = 30.0

_CACHE_MAX_ENTRIES = 4096

_MAX_WORKERS = 8


@dataclass
class HostResolver:
    """Resolves hostnames to IP address strings with a hard timeout.

    IP literals are returned as-is without a lookup.  Failures and timeouts
    raise :class:`ResolutionError`; they are never cached.
    """

    timeout: float = DEFAULT_TIMEOUT
    cache_ttl: float = _CACHE_TTL
    max_cache_entries: int = _CACHE_MAX_ENTRIES
    _cache: dict[str, tuple[float, tuple[str, ...]]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _pool: concurrent.futures.ThreadPoolExecutor = field(
        default_factory=lambda: concurrent.futures.ThreadPoolExecutor(
            max_workers=_MAX_WORKERS, thread_name_prefix="netwarden-resolve"
        )
    )

    def resolve(self, hostname: str) -> tuple[str, ...]:
        """Return the addresses *hostname* resolves to."""
        try:
            return (str(ipaddress.ip_address(hostname)),)
        except ValueError:
            pass

        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(hostname)
        if cached and now - cached[0] < self.cache_ttl:
            return cached[1]

        addresses = self._bounded(hostname, lambda: self._lookup(hostname))

        with self._lock:
            self._cache.pop(hostname, None)
            self._prune(now)
            self._cache[hostname] = (now, addresses)
        return addresses

    def resolve_with(
        self, hostname: str, lookup: Callable[[], Iterable[str]]
    ) -> tuple[str, ...]:
        """Run a caller-supplied *lookup* under the same timeout, uncached."""
        return self._bounded(hostname, lambda: tuple(str(ip) for ip in lookup()))

    def _bounded(
        self, hostname: str, lookup: Callable[[], tuple[str, ...]]
    ) -> tuple[str, ...]:
        future = self._pool.submit(lookup)
        try:
            addresses = future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise ResolutionError(
                f"Lookup of {hostname} timed out after {self.timeout:.1f}s"
            ) from None
        except Exception as e:
            raise ResolutionError(f"Lookup of {hostname} failed: {e}") from None

        if not addresses:
            raise ResolutionError(f"Lookup of {hostname} returned no addresses")
        return addresses

    def _prune(self, now: float) -> None:
        # Caller holds the lock
        stale = [h for h, (ts, _) in self._cache.items() if now - ts >= self.cache_ttl]
        for host in stale:
            del self._cache[host]
        while self._cache and len(self._cache) >= self.max_cache_entries:
            # Insertion order, so the first key is the oldest
            del self._cache[next(iter(self._cache))]

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _lookup(hostname: str) -> tuple[str, ...]:
        infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
        seen: list[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            ip = sockaddr[0].split("%", 1)[0]  # strip IPv6 zone id
            if ip not in seen:
                seen.append(ip)
        return tuple(seen)
