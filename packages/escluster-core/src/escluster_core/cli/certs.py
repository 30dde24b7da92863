"""Certificate CLI commands.

This module provides CLI commands for inspecting and rotating the PKI
material of a cluster:
- show: Display each identity's current bundle
- rotate: Force reissue of one identity's bundle

Rotating a node-mounted identity (elasticsearch, logging-es) changes the
certificate revision of every node; the next reconcile rolls the nodes one
at a time.
"""

import asyncio
import json
from datetime import timedelta

import typer
from rich.console import Console
from rich.table import Table

from escluster_core.certs import NODE_MOUNTED, CertIdentity, CertificateManager
from escluster_core.config import OperatorSettings
from escluster_core.db import StateDB
from escluster_core.errors import CACorruptionError
from escluster_protocols import ClusterKey

certs_app = typer.Typer(help="Inspect and rotate cluster certificates")


def _manager(key: ClusterKey, db: StateDB, settings: OperatorSettings) -> CertificateManager:
    return CertificateManager(
        key,
        db,
        validity=timedelta(days=settings.cert_validity_days),
        ca_validity=timedelta(days=settings.ca_validity_days),
        key_size=settings.cert_key_size,
        call_timeout=settings.call_timeout_seconds,
    )


@certs_app.command("show")
def show(
    name: str = typer.Argument(..., help="Cluster name"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the current certificate bundle of every identity."""

    async def _show() -> None:
        settings = OperatorSettings()
        async with StateDB(settings.db_path) as db:
            manager = _manager(ClusterKey(namespace, name), db, settings)
            bundles = {i: await manager.get(i) for i in CertIdentity}

        if json_output:
            data = [
                {
                    "identity": i.value,
                    "version": b.version if b else None,
                    "serial": str(b.serial) if b else None,
                    "not_after": b.not_after.isoformat() if b else None,
                }
                for i, b in bundles.items()
            ]
            print(json.dumps(data, indent=2))
            return

        console = Console()
        table = Table(title=f"Certificates of {namespace}/{name}")
        table.add_column("Identity", style="cyan")
        table.add_column("Version", justify="right")
        table.add_column("Expires")
        table.add_column("Serial")
        table.add_column("Mounted", justify="center")

        for identity, bundle in bundles.items():
            mounted = "yes" if identity in NODE_MOUNTED else ""
            if bundle is None:
                table.add_row(identity.value, "-", "[red]missing[/red]", "-", mounted)
                continue
            table.add_row(
                identity.value,
                str(bundle.version),
                bundle.not_after.strftime("%Y-%m-%d %H:%M:%S"),
                f"{bundle.serial:x}"[:16],
                mounted,
            )
        console.print(table)

    asyncio.run(_show())


@certs_app.command("rotate")
def rotate(
    name: str = typer.Argument(..., help="Cluster name"),
    identity: CertIdentity = typer.Argument(..., help="Identity to reissue"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
) -> None:
    """Force reissue of one identity's certificate."""

    async def _rotate() -> None:
        settings = OperatorSettings()
        async with StateDB(settings.db_path) as db:
            key = ClusterKey(namespace, name)
            if await db.get_cluster(key) is None:
                print(f"Cluster {key} not found")
                raise typer.Exit(1)
            manager = _manager(key, db, settings)
            try:
                bundle = await manager.rotate(identity)
            except CACorruptionError as e:
                print(str(e))
                raise typer.Exit(1)

        print(f"Rotated {identity.value} to v{bundle.version}")
        if identity in NODE_MOUNTED:
            print("Nodes will be rolled by the next reconcile")

    asyncio.run(_rotate())
