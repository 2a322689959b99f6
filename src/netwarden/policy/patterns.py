"""Domain patterns - validation and hostname matching.

Two shapes are accepted:

- ``example.com`` - exact, case-insensitive match.
- ``*.example.com`` - matches ``example.com`` itself and every subdomain
  at any depth.  Matching the bare domain is intentional; configs in the
  wild rely on ``*.github.com`` covering ``github.com``.

Only hostnames are matched.  Schemes, ports and paths are rejected.
"""

from __future__ import annotations

import enum
import ipaddress
import re
from dataclasses import dataclass

from netwarden.errors import ConfigValidationError, HostnameError

_LABEL_RE = re.compile(r"^[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?$")
_MAX_LABEL = 63
_MAX_NAME = 253

_WILDCARD_PREFIX = "*."


class PatternKind(enum.Enum):
    """Shape of a domain pattern."""

    EXACT = "exact"
    WILDCARD_PREFIX = "wildcard_prefix"


@dataclass(frozen=True)
class DomainPattern:
    """A validated domain pattern. Build with :func:`validate_pattern`."""

    raw: str
    kind: PatternKind

    @property
    def domain(self) -> str:
        """The domain part of the pattern, without any ``*.`` prefix."""
        if self.kind is PatternKind.WILDCARD_PREFIX:
            return self.raw[len(_WILDCARD_PREFIX) :]
        return self.raw

    def __str__(self) -> str:
        return self.raw


def validate_pattern(raw: str) -> DomainPattern:
    """Parse *raw* into a :class:`DomainPattern` or raise ConfigValidationError."""
    if not isinstance(raw, str):
        raise ConfigValidationError(
            f"Domain pattern must be a string, got {type(raw).__name__}"
        )

    text = raw.strip().lower()
    if text.endswith(".") and not text.endswith(_WILDCARD_PREFIX):
        text = text[:-1]

    if not text:
        raise ConfigValidationError("Domain pattern must not be empty")
    if "/" in text or ":" in text:
        raise ConfigValidationError(
            f"Invalid pattern {raw!r}: patterns match hostnames only "
            "(no scheme, port or path)"
        )

    stars = text.count("*")
    if text == "*":
        raise ConfigValidationError(
            f"Invalid pattern {raw!r}: a bare wildcard is not allowed "
            "(use denylist mode with an empty blocklist to allow everything)"
        )
    if stars > 1:
        raise ConfigValidationError(
            f"Invalid pattern {raw!r}: at most one wildcard is allowed"
        )
    if stars == 1:
        if not text.startswith(_WILDCARD_PREFIX):
            raise ConfigValidationError(
                f"Invalid pattern {raw!r}: wildcard must be a full leading "
                "label followed by a dot (e.g. '*.example.com')"
            )
        domain = text[len(_WILDCARD_PREFIX) :]
        if not domain:
            raise ConfigValidationError(
                f"Invalid pattern {raw!r}: wildcard must be followed by a domain"
            )
        _check_labels(raw, domain)
        return DomainPattern(raw=text, kind=PatternKind.WILDCARD_PREFIX)

    _check_labels(raw, text)
    return DomainPattern(raw=text, kind=PatternKind.EXACT)


def _check_labels(raw: str, domain: str) -> None:
    if len(domain) > _MAX_NAME:
        raise ConfigValidationError(
            f"Invalid pattern {raw!r}: domain exceeds {_MAX_NAME} characters"
        )
    for label in domain.split("."):
        if not label:
            raise ConfigValidationError(
                f"Invalid pattern {raw!r}: empty label (doubled or leading dot)"
            )
        if len(label) > _MAX_LABEL:
            raise ConfigValidationError(
                f"Invalid pattern {raw!r}: label {label!r} exceeds "
                f"{_MAX_LABEL} characters"
            )
        if not _LABEL_RE.match(label):
            raise ConfigValidationError(
                f"Invalid pattern {raw!r}: label {label!r} may only contain "
                "letters, digits, '-' and '_' and must not start or end with '-'"
            )


def matches(pattern: DomainPattern, hostname: str) -> bool:
    """Return True if *hostname* is covered by *pattern*."""
    host = hostname.strip().lower()
    if host.endswith("."):
        host = host[:-1]
    if not host:
        return False

    if pattern.kind is PatternKind.EXACT:
        return host == pattern.raw

    domain = pattern.domain
    return host == domain or host.endswith("." + domain)


def normalize_hostname(hostname: str) -> str:
    """Canonicalize a connection target, raising HostnameError if malformed.

    IP literals (including bracketed IPv6) are returned in compressed form.
    """
    if not isinstance(hostname, str):
        raise HostnameError(f"Hostname must be a string, got {type(hostname).__name__}")

    host = hostname.strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        pass

    if host.endswith("."):
        host = host[:-1]
    if not host:
        raise HostnameError("Empty hostname")
    if len(host) > _MAX_NAME:
        raise HostnameError(f"Hostname exceeds {_MAX_NAME} characters")
    if any(c in host for c in "/:@ \t\r\n"):
        raise HostnameError(f"Malformed hostname: {hostname!r}")

    for label in host.split("."):
        if not label or len(label) > _MAX_LABEL or not _LABEL_RE.match(label):
            raise HostnameError(f"Malformed hostname: {hostname!r}")
    return host


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True
