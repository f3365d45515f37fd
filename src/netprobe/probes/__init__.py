"""Probe engine: create an ephemeral pod, run a command in it, always delete it."""

from netprobe.probes.errors import (
    CleanupFailure,
    ExecTimeout,
    ExecTransportError,
    ProbeCancelled,
    ProbeError,
    SchedulingError,
    SchedulingTimeout,
    ValidationError,
)
from netprobe.probes.manager import ProbeManager
from netprobe.probes.models import (
    PodHandle,
    ProbeKind,
    ProbeRequest,
    ProbeResult,
    ProbeState,
)

__all__ = [
    "CleanupFailure",
    "ExecTimeout",
    "ExecTransportError",
    "PodHandle",
    "ProbeCancelled",
    "ProbeError",
    "ProbeKind",
    "ProbeManager",
    "ProbeRequest",
    "ProbeResult",
    "ProbeState",
    "SchedulingError",
    "SchedulingTimeout",
    "ValidationError",
]
