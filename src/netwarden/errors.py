"""Exception taxonomy shared across netwarden."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netwarden.monitor import MonitorSample


class NetwardenError(Exception):
    """Base class for all netwarden errors."""


class ConfigValidationError(NetwardenError, ValueError):
    """Configuration is malformed; the whole policy is rejected."""


class HostnameError(NetwardenError, ValueError):
    """A connection target could not be parsed as a hostname."""


class ResolutionError(NetwardenError):
    """Name lookup failed or timed out."""


class LogWriteError(NetwardenError):
    """An audit sink could not record a decision."""


class TamperDetected(NetwardenError):
    """The enforcement layer was found disabled or incomplete."""

    def __init__(self, sample: MonitorSample, problems: list[str]) -> None:
        self.sample = sample
        self.problems = problems
        super().__init__("; ".join(problems) or "enforcement tampered")
