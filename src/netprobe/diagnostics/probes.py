"""
Probe tools: TCP connectivity, DNS resolution and HTTP reachability.

Each tool turns its arguments into a shell command, runs it through a
ProbeManager and reads the sentinel text the command prints to decide the
finding. The manager reports whether the command ran; only these tools know
what its output means.
"""

from __future__ import annotations

import re
import shlex

from netprobe.diagnostics.models import Category, DiagnosticFinding, Severity
from netprobe.probes import ProbeKind, ProbeManager, ProbeRequest, ProbeResult, ValidationError

MAX_TOOL_TIMEOUT_SECONDS = 30
DEFAULT_TOOL_TIMEOUT_SECONDS = 10

CONNECTION_SUCCESS = "CONNECTION_SUCCESS"
CONNECTION_FAILED = "CONNECTION_FAILED"
BODY_SEPARATOR = "---BODY---"
BODY_SNIPPET_BYTES = 1024

DNS_FAILURE_MARKERS = ("** server can't find", "NXDOMAIN")
DNS_RECORD_TYPES = frozenset({"A", "AAAA", "SRV", "CNAME", "MX", "TXT", "PTR", "NS"})
HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"})

_HOST_RE = re.compile(r"^[A-Za-z0-9._:\-\[\]]+$")

SUGGEST_CONNECTIVITY = (
    "Check NetworkPolicies, service endpoints, DNS resolution, and firewall rules "
    "between the source and destination namespaces."
)
SUGGEST_DNS = (
    "Check CoreDNS pods are running, verify the service exists in the expected namespace, "
    "and check NetworkPolicies are not blocking DNS (port 53)."
)
SUGGEST_HTTP = (
    "Check that the target service is running, DNS resolves correctly, and there are no "
    "NetworkPolicies or mTLS requirements blocking the connection."
)


def clamp_tool_timeout(timeout_seconds: int | None) -> int:
    if timeout_seconds is None or timeout_seconds <= 0:
        return DEFAULT_TOOL_TIMEOUT_SECONDS
    return min(int(timeout_seconds), MAX_TOOL_TIMEOUT_SECONDS)


def _failure_detail(result: ProbeResult) -> str:
    output = result.output.strip()
    if result.error:
        return f"{result.error}; {output}" if output else result.error
    return output


# -- connectivity --


def connectivity_command(target_host: str, target_port: int, timeout_seconds: int) -> list[str]:
    if not target_host or not _HOST_RE.match(target_host):
        raise ValidationError(f"invalid target_host: {target_host!r}")
    if not 0 < int(target_port) < 65536:
        raise ValidationError(f"invalid target_port: {target_port!r}")
    script = (
        f"nc -z -w {timeout_seconds} {shlex.quote(target_host)} {int(target_port)} "
        f"&& echo '{CONNECTION_SUCCESS}' || echo '{CONNECTION_FAILED}'"
    )
    return ["sh", "-c", script]


def interpret_connectivity(result: ProbeResult, target_host: str, target_port: int) -> DiagnosticFinding:
    where = f"{result.namespace} to {target_host}:{target_port}"
    if result.success and CONNECTION_SUCCESS in result.output:
        return DiagnosticFinding(
            severity=Severity.OK,
            category=Category.CONNECTIVITY,
            summary=f"TCP connectivity from {where} succeeded",
            detail=f"output={result.output.strip()} duration={result.duration:.2f}s",
        )
    return DiagnosticFinding(
        severity=Severity.CRITICAL,
        category=Category.CONNECTIVITY,
        summary=f"TCP connectivity from {where} failed",
        detail=_failure_detail(result),
        suggestion=SUGGEST_CONNECTIVITY,
    )


async def probe_connectivity(
    manager: ProbeManager,
    target_host: str,
    target_port: int,
    source_namespace: str | None = None,
    timeout_seconds: int | None = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> DiagnosticFinding:
    """Test a TCP connection from a pod in ``source_namespace``."""
    timeout = clamp_tool_timeout(timeout_seconds)
    request = ProbeRequest(
        kind=ProbeKind.CONNECTIVITY,
        namespace=source_namespace or "",
        command=connectivity_command(target_host, target_port, timeout),
    )
    result = await manager.execute(request)
    return interpret_connectivity(result, target_host, target_port)


# -- dns --


def dns_command(hostname: str, record_type: str = "A") -> list[str]:
    if not hostname or not _HOST_RE.match(hostname):
        raise ValidationError(f"invalid hostname: {hostname!r}")
    record_type = (record_type or "A").upper()
    if record_type not in DNS_RECORD_TYPES:
        raise ValidationError(f"unsupported record_type: {record_type!r}")
    return ["sh", "-c", f"nslookup -type={record_type} {shlex.quote(hostname)} 2>&1; echo EXIT_CODE=$?"]


def interpret_dns(result: ProbeResult, hostname: str, record_type: str = "A") -> DiagnosticFinding:
    output = result.output.strip()
    record_type = (record_type or "A").upper()
    resolved = result.success and not any(marker in output for marker in DNS_FAILURE_MARKERS)
    if resolved:
        return DiagnosticFinding(
            severity=Severity.OK,
            category=Category.DNS,
            summary=f"DNS resolution for {hostname} ({record_type}) succeeded",
            detail=f"output={output} duration={result.duration:.2f}s",
        )
    return DiagnosticFinding(
        severity=Severity.CRITICAL,
        category=Category.DNS,
        summary=f"DNS resolution for {hostname} ({record_type}) failed",
        detail=_failure_detail(result),
        suggestion=SUGGEST_DNS,
    )


async def probe_dns(
    manager: ProbeManager,
    hostname: str,
    source_namespace: str | None = None,
    record_type: str = "A",
) -> DiagnosticFinding:
    """Resolve ``hostname`` from a pod in ``source_namespace``."""
    request = ProbeRequest(
        kind=ProbeKind.DNS,
        namespace=source_namespace or "",
        command=dns_command(hostname, record_type),
    )
    result = await manager.execute(request)
    return interpret_dns(result, hostname, record_type)


# -- http --


def http_command(url: str, method: str = "GET", headers: str = "", timeout_seconds: int = 10) -> list[str]:
    if not url or not url.startswith(("http://", "https://")):
        raise ValidationError(f"invalid url: {url!r}")
    method = (method or "GET").upper()
    if method not in HTTP_METHODS:
        raise ValidationError(f"unsupported method: {method!r}")

    parts = [
        "curl -s -o /tmp/body",
        "-w '%{http_code}|%{time_total}|%{ssl_verify_result}'",
        f"-X {method} --max-time {timeout_seconds} -L",
    ]
    for header in (headers or "").split(";"):
        header = header.strip()
        if header:
            parts.append(f"-H {shlex.quote(header)}")
    parts.append(shlex.quote(url))
    script = " ".join(parts)
    script += f" 2>&1; echo; echo '{BODY_SEPARATOR}'; head -c {BODY_SNIPPET_BYTES} /tmp/body 2>/dev/null || true"
    return ["sh", "-c", script]


def parse_curl_output(output: str) -> tuple[str, str, str]:
    """Split curl output into ``(status_code, response_time, body_snippet)``."""
    output = output.strip()
    status_line = output.split("\n", 1)[0]
    body = ""
    idx = output.find(BODY_SEPARATOR)
    if idx >= 0:
        body = output[idx + len(BODY_SEPARATOR):].strip()
        if len(body) > BODY_SNIPPET_BYTES:
            body = body[:BODY_SNIPPET_BYTES] + "...(truncated)"
    fields = status_line.split("|", 2)
    if len(fields) >= 2 and fields[0].isdigit():
        return fields[0], f"{fields[1]}s", body
    return "000", "unknown", body


def interpret_http(result: ProbeResult, url: str, method: str = "GET") -> DiagnosticFinding:
    method = (method or "GET").upper()
    status, response_time, body = parse_curl_output(result.output)
    if result.success and status != "000":
        code = int(status)
        severity = Severity.OK
        if code >= 500:
            severity = Severity.CRITICAL
        elif code >= 400:
            severity = Severity.WARNING
        return DiagnosticFinding(
            severity=severity,
            category=Category.CONNECTIVITY,
            summary=f"HTTP {method} {url} returned {status} in {response_time}",
            detail=f"status={status} response_time={response_time} body_snippet={body}",
        )
    return DiagnosticFinding(
        severity=Severity.CRITICAL,
        category=Category.CONNECTIVITY,
        summary=f"HTTP {method} {url} failed (connection error or timeout)",
        detail=_failure_detail(result),
        suggestion=SUGGEST_HTTP,
    )


async def probe_http(
    manager: ProbeManager,
    url: str,
    method: str = "GET",
    headers: str = "",
    source_namespace: str | None = None,
    timeout_seconds: int | None = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> DiagnosticFinding:
    """Send one HTTP request from a pod in ``source_namespace``."""
    timeout = clamp_tool_timeout(timeout_seconds)
    request = ProbeRequest(
        kind=ProbeKind.HTTP,
        namespace=source_namespace or "",
        command=http_command(url, method, headers, timeout),
    )
    result = await manager.execute(request)
    return interpret_http(result, url, method)
