"""Structured findings produced by the probe tools."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Finding severity, from worst to best."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    OK = "ok"


class Category(str, Enum):
    """Area of the network a finding is about."""

    CONNECTIVITY = "connectivity"
    DNS = "dns"
    ROUTING = "routing"
    TLS = "tls"
    POLICY = "policy"


class DiagnosticFinding(BaseModel):
    """A single diagnostic result."""

    severity: Severity
    category: Category
    summary: str = Field(..., description="One-line outcome")
    detail: str = Field(default="", description="Probe output or error text backing the summary")
    suggestion: str = Field(default="", description="What to check next when the probe failed")

    @property
    def ok(self) -> bool:
        return self.severity in (Severity.OK, Severity.INFO)
