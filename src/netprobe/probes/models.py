"""Structured models for probe requests, results and pod handles."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Labels and annotations stamped on every probe pod
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_MANAGED_BY_VALUE = "netprobe"
LABEL_PROBE_KIND = "netprobe/probe-kind"
ANNOTATION_CREATED_AT = "netprobe/created-at"
ANNOTATION_COMMAND = "netprobe/command"

PROBE_CONTAINER = "probe"
PROBE_LABEL_SELECTOR = f"{LABEL_MANAGED_BY}={LABEL_MANAGED_BY_VALUE}"


class ProbeKind(str, Enum):
    """Kinds of active probe."""

    CONNECTIVITY = "connectivity"
    DNS = "dns"
    HTTP = "http"


class ProbeState(str, Enum):
    """Per-request lifecycle states."""

    CREATED = "created"
    SCHEDULED = "scheduled"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CLEANUP_ISSUED = "cleanup_issued"
    TERMINAL = "terminal"


class ProbeRequest(BaseModel):
    """Logical probe intent submitted by a calling tool."""

    model_config = ConfigDict(frozen=True)

    kind: ProbeKind
    namespace: str = Field(default="", description="Namespace for the probe pod; empty means the configured default")
    command: tuple[str, ...] = Field(..., description="argv executed inside the probe container")
    timeout_seconds: float | None = Field(
        default=None,
        description="Requested timeout; clamped to the configured ceiling",
    )


class ProbeResult(BaseModel):
    """Outcome of a single probe execution."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: str = ""
    error: str = Field(default="", description="Lifecycle or transport failure; empty when the command ran")
    duration: float = Field(default=0.0, description="Elapsed seconds")
    kind: ProbeKind
    namespace: str
    pod_name: str | None = None
    exit_code: int | None = None
    error_kind: str | None = Field(default=None, description="Name of the failure class, e.g. SchedulingTimeout")
    truncated: bool = False


class PodHandle(BaseModel):
    """Identity of a created probe pod."""

    name: str
    namespace: str
    image: str
    command: tuple[str, ...]
    created_at: datetime
    phase: str = "Pending"
