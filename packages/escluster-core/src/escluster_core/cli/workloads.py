"""Workload CLI commands.

StateDB holds workloads as last applied, with no platform to report
readiness back. These commands stand in for that feedback:
- list: Show a cluster's workloads and their readiness
- ready: Record that a workload's node has started (or stopped)

A rollout waiting on a workload advances on the next reconcile after it
is marked ready.
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from escluster_core.config import OperatorSettings
from escluster_core.db import StateDB

workloads_app = typer.Typer(help="Inspect workloads and record their readiness")


@workloads_app.command("list")
def list_workloads(
    cluster: str = typer.Argument(..., help="Cluster name"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List the workloads of a cluster."""

    async def _list() -> None:
        async with StateDB(OperatorSettings().db_path) as db:
            live = await db.list_workloads(namespace, cluster)

        if json_output:
            data = [
                {
                    "name": w.name,
                    "pool": w.descriptor.pool,
                    "roles": [r.value for r in w.descriptor.roles],
                    "ready": w.ready,
                }
                for w in live
            ]
            print(json.dumps(data, indent=2))
            return

        if not live:
            print(f"No workloads for {namespace}/{cluster}")
            return

        console = Console()
        table = Table(title=f"Workloads of {namespace}/{cluster}")
        table.add_column("Workload", style="cyan")
        table.add_column("Pool")
        table.add_column("Roles")
        table.add_column("Ready", justify="center")
        for w in live:
            table.add_row(
                w.name,
                w.descriptor.pool,
                ",".join(r.value for r in w.descriptor.roles),
                "[green]yes[/green]" if w.ready else "[red]no[/red]",
            )
        console.print(table)

    asyncio.run(_list())


@workloads_app.command("ready")
def mark_ready(
    names: list[str] = typer.Argument(..., help="Workload name(s)"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Workload namespace"),
    unready: bool = typer.Option(False, "--unready", help="Mark not ready instead"),
) -> None:
    """Record workload readiness."""

    async def _mark() -> list[str]:
        async with StateDB(OperatorSettings().db_path) as db:
            return [n for n in names if not await db.mark_ready(namespace, n, ready=not unready)]

    missing = asyncio.run(_mark())
    for name in names:
        if name in missing:
            print(f"Workload {namespace}/{name} not found")
        else:
            print(f"Marked {namespace}/{name} {'not ready' if unready else 'ready'}")
    if missing:
        raise typer.Exit(1)
