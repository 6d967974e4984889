"""Entry point for the Vitals health-check aggregator."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vitals.config import settings
from vitals.health.models import ComponentNotFound, ComponentResult, Result, Status

console = Console()

EXIT_UP = 0
EXIT_DOWN = 1
EXIT_NOT_FOUND = 2


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Vitals API Server", style="bold green"))
    uvicorn.run(
        "vitals.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def _render(results: list[ComponentResult], overall: Status) -> Table:
    style = "green" if overall == Status.UP else "red"
    table = Table(title=f"Overall: [{style}]{overall.value.upper()}[/{style}]")
    table.add_column("Component")
    table.add_column("Status")
    table.add_column("Error")
    table.add_column("Details", overflow="fold")
    table.add_column("ms", justify="right")

    for r in sorted(results, key=lambda r: r.name):
        s = "green" if r.ok else "red"
        details = ", ".join(f"{k}={v}" for k, v in r.details.items())
        table.add_row(
            r.name,
            f"[{s}]{r.status.value}[/{s}]",
            r.error_message or "",
            details,
            f"{r.duration_ms:.0f}",
        )
    return table


def run_check(name: str | None, manifest: str | None, timeout: float | None) -> int:
    """Run one or all checks once and print a table. Returns the exit code."""
    from vitals.api.server import build_engine

    with build_engine(manifest, timeout) as engine:
        if name:
            try:
                one = asyncio.run(engine.check_one(name))
            except ComponentNotFound as e:
                console.print(f"[red]{e}[/red]")
                return EXIT_NOT_FOUND
            results, overall = [one], one.status
        else:
            result: Result = asyncio.run(engine.check_all())
            results, overall = list(result.components.values()), result.status

    if not results:
        console.print("[yellow]No components registered[/yellow]")
    console.print(_render(results, overall))
    return EXIT_UP if overall == Status.UP else EXIT_DOWN


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Vitals health-check aggregator")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")

    check_parser = sub.add_parser("check", help="Run health checks once")
    check_parser.add_argument("name", nargs="?", help="Component to check (default: all)")
    check_parser.add_argument("--manifest", help=f"Component manifest (default: {settings.components_file})")
    check_parser.add_argument("--timeout", type=float, help="Per-check timeout in seconds")

    args = parser.parse_args(argv)
    _configure_logging()

    if args.command == "serve":
        run_server()
        return EXIT_UP
    if args.command == "check":
        if args.timeout is not None and args.timeout < 0:
            parser.error("--timeout must be >= 0")
        return run_check(args.name, args.manifest, args.timeout)

    parser.print_help()
    return EXIT_UP


if __name__ == "__main__":
    sys.exit(main())
