"""CLI entrypoint for netprobe."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from netprobe import __version__
from netprobe.config import Settings, get_settings
from netprobe.diagnostics import DiagnosticFinding, probe_connectivity, probe_dns, probe_http
from netprobe.probes import ProbeManager, ValidationError
from netprobe.report import print_finding, print_sweep


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="netprobe: run TCP, DNS and HTTP checks from a throwaway pod inside a Kubernetes cluster.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--namespace",
        "-n",
        default=None,
        help="Namespace to run the probe pod in (default: from env or NETPROBE_PROBE_NAMESPACE)",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: KUBECONFIG env or ~/.kube/config)",
    )
    parser.add_argument("--context", default=None, help="Kubernetes context to use")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="probe", required=True)

    tcp = sub.add_parser("connectivity", help="Test a TCP connection")
    tcp.add_argument("host", help="Target hostname or IP, e.g. my-svc.other-ns.svc.cluster.local")
    tcp.add_argument("port", type=int, help="Target port")
    tcp.add_argument("--timeout", type=int, default=10, help="Connect timeout in seconds (max 30)")

    dns = sub.add_parser("dns", help="Resolve a hostname")
    dns.add_argument("hostname", help="Hostname to resolve")
    dns.add_argument("--record-type", default="A", help="A, AAAA, SRV, CNAME, ...")

    http = sub.add_parser("http", help="Send an HTTP request")
    http.add_argument("url", help="Target URL")
    http.add_argument("--method", "-X", default="GET", help="HTTP method")
    http.add_argument(
        "--header",
        "-H",
        action="append",
        default=[],
        help="Extra header as 'Key: Value'; may be repeated",
    )
    http.add_argument("--timeout", type=int, default=10, help="Request timeout in seconds (max 30)")

    sub.add_parser("sweep", help="Delete leftover probe pods older than the orphan TTL")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, settings: Settings) -> DiagnosticFinding | None:
    if args.probe == "sweep" and args.namespace:
        settings.probe_namespace = args.namespace
    manager = ProbeManager(settings)
    if args.probe == "sweep":
        count = await asyncio.to_thread(manager.sweeper.sweep_once)
        print_sweep(count, [settings.probe_namespace])
        return None
    if args.probe == "connectivity":
        return await probe_connectivity(manager, args.host, args.port, args.namespace, args.timeout)
    if args.probe == "dns":
        return await probe_dns(manager, args.hostname, args.namespace, args.record_type)
    return await probe_http(
        manager,
        args.url,
        method=args.method,
        headers=";".join(args.header),
        source_namespace=args.namespace,
        timeout_seconds=args.timeout,
    )


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the netprobe CLI."""
    args = _parse_args(argv)
    settings = get_settings()
    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    if not args.verbose:
        # The kubernetes client is chatty at INFO
        logging.getLogger("kubernetes").setLevel(logging.WARNING)

    if args.kubeconfig:
        settings.kubeconfig = args.kubeconfig
    if args.context:
        settings.context = args.context

    try:
        finding = asyncio.run(_run(args, settings))
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        logging.exception("Probe failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if finding is None:
        return 0
    print_finding(finding, Console())
    return 0 if finding.ok else 1


if __name__ == "__main__":
    sys.exit(main())
