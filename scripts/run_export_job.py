#!/usr/bin/env python3
"""Run export jobs and inspect integrations from the command line."""

import argparse
import asyncio
import json
import sys

from rich.console import Console
from rich.table import Table

from creative_export.core.errors import IntegrationError
from creative_export.core.logging_config import setup_structured_logging
from creative_export.services.pipeline import build_pipeline

console = Console()

STATE_STYLES = {"sent": "green", "received": "green", "duplicate": "yellow", "error": "red"}


def run_job(job_id: str, as_json: bool = False) -> int:
    """Process one export job and print the per-ad outcome."""
    pipeline = build_pipeline()
    try:
        result = asyncio.run(pipeline.orchestrator.run_job(job_id))
    except IntegrationError as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        return 1

    if as_json:
        console.print_json(json.dumps(result.to_document()))
        return 0 if result.status != "failed" else 2

    console.print(f"\n[bold]Export job {result.job_id}[/bold] via [cyan]{result.integration_key}[/cyan]")
    if result.summary.message:
        console.print(f"[yellow]{result.summary.message}[/yellow]")

    if result.sync_status:
        table = Table(title=f"Attempt {result.attempt}")
        table.add_column("Ad ID", style="cyan")
        table.add_column("State")
        table.add_column("Message", style="white")
        for ad_id, entry in result.sync_status.items():
            style = STATE_STYLES.get(entry.state, "white")
            table.add_row(ad_id, f"[{style}]{entry.state}[/{style}]", entry.message)
        console.print(table)

    counts = result.summary.counts
    console.print(
        f"Status: [bold]{result.status}[/bold]  total={counts.total} sent={counts.sent} "
        f"received={counts.received} duplicate={counts.duplicate} error={counts.error}"
    )
    return 0 if result.status != "failed" else 2


def list_integrations() -> int:
    pipeline = build_pipeline()
    integrations = pipeline.registry.list()
    if not integrations:
        console.print("[yellow]No integrations found.[/yellow]")
        return 0

    table = Table(title="Integrations")
    table.add_column("Key", style="cyan")
    table.add_column("Label", style="green")
    for integration in integrations:
        table.add_row(integration["key"], integration["label"])
    console.print(table)
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Creative export pipeline tools")
    parser.add_argument("--verbose", action="store_true", help="Emit structured logs")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Process an export job")
    run_parser.add_argument("job_id", help="Export job ID")
    run_parser.add_argument("--json", action="store_true", help="Print the raw job result")

    subparsers.add_parser("integrations", help="List available integrations")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        setup_structured_logging()

    if args.command == "run":
        sys.exit(run_job(args.job_id, args.json))
    elif args.command == "integrations":
        sys.exit(list_integrations())


if __name__ == "__main__":
    main()
