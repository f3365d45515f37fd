"""Error taxonomy for probe execution."""

from __future__ import annotations


class ProbeError(Exception):
    """Base class for probe failures."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.message = message
        # Partial output captured before the failure, if any
        self.output = output


class ValidationError(ProbeError, ValueError):
    """Malformed request; rejected before any cluster action."""


class SchedulingError(ProbeError):
    """Pod was rejected at admission, failed to pull its image, or died before becoming ready."""


class SchedulingTimeout(ProbeError):
    """Pod did not become ready (or no probe slot freed up) before the deadline."""


class ExecTransportError(ProbeError):
    """Exec channel failed for reasons unrelated to the command's exit code."""


class ExecTimeout(ProbeError):
    """Command was still running when the deadline expired."""


class ProbeCancelled(ProbeError):
    """Caller cancelled the probe."""


class CleanupFailure(ProbeError):
    """Pod deletion request failed. Logged, never surfaced as probe failure."""
