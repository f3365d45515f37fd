"""Report templates and Rich rendering for probe findings."""

from __future__ import annotations

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from netprobe.diagnostics.models import DiagnosticFinding, Severity

REPORT_HEADER = """
# Network Probe Report
"""

REPORT_SECTION_FINDING = """
## {summary}

**Severity:** {severity} &nbsp; **Category:** {category}
"""

REPORT_SECTION_DETAIL = """
### Detail
```
{detail}
```
"""

REPORT_SECTION_SUGGESTION = """
### Next steps
{suggestion}
"""

REPORT_SWEEP = """
## Orphan sweep
Deleted {count} leftover probe pod(s) from: {namespaces}
"""

BORDER_STYLES = {
    Severity.OK: "green",
    Severity.INFO: "blue",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "red",
}


def render_finding(finding: DiagnosticFinding) -> str:
    """Render a finding as Markdown."""
    parts = [
        REPORT_HEADER,
        REPORT_SECTION_FINDING.format(
            summary=finding.summary,
            severity=finding.severity.value,
            category=finding.category.value,
        ),
    ]
    if finding.detail:
        parts.append(REPORT_SECTION_DETAIL.format(detail=finding.detail))
    if finding.suggestion:
        parts.append(REPORT_SECTION_SUGGESTION.format(suggestion=finding.suggestion))
    return "\n".join(parts)


def print_finding(finding: DiagnosticFinding, console: Console | None = None) -> None:
    """Print a finding to the console using Rich."""
    c = console or Console()
    c.print(
        Panel(
            Markdown(render_finding(finding)),
            title="netprobe",
            border_style=BORDER_STYLES.get(finding.severity, "blue"),
        )
    )


def print_sweep(count: int, namespaces: list[str], console: Console | None = None) -> None:
    c = console or Console()
    text = REPORT_HEADER + REPORT_SWEEP.format(count=count, namespaces=", ".join(namespaces) or "-")
    c.print(Panel(Markdown(text), title="netprobe", border_style="blue"))
