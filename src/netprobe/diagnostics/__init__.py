"""Diagnostics: probe tools that build commands and interpret probe output."""

from netprobe.diagnostics.models import Category, DiagnosticFinding, Severity
from netprobe.diagnostics.probes import (
    MAX_TOOL_TIMEOUT_SECONDS,
    probe_connectivity,
    probe_dns,
    probe_http,
)

__all__ = [
    "Category",
    "DiagnosticFinding",
    "MAX_TOOL_TIMEOUT_SECONDS",
    "Severity",
    "probe_connectivity",
    "probe_dns",
    "probe_http",
]
