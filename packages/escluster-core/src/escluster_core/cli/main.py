"""Operator CLI - keeps search clusters at their declared topology."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from escluster_core.cli.certs import certs_app
from escluster_core.cli.factory import build_context, get_available_flavors
from escluster_core.cli.workloads import workloads_app
from escluster_core.config import OperatorSettings
from escluster_core.db import StateDB
from escluster_core.errors import InvalidSpecError
from escluster_core.reconcile import ControllerLoop, Reconciler
from escluster_core.resource import ClusterResource, load_resource
from escluster_core.topology import plan_topology
from escluster_protocols import ClusterKey

app = typer.Typer(
    name="escluster",
    help="Operator for multi-role search clusters",
    no_args_is_help=True,
)

# Add command groups
app.add_typer(certs_app, name="certs")
app.add_typer(workloads_app, name="workloads")


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Configure logging from settings."""
    settings = OperatorSettings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_flavor(flavor: str) -> None:
    if flavor not in get_available_flavors():
        print(f"Unknown flavor '{flavor}'. Available flavors: {', '.join(get_available_flavors())}")
        raise typer.Exit(1)


def _load(path: Path) -> ClusterResource:
    try:
        return load_resource(path)
    except (OSError, ValidationError) as e:
        print(f"Cannot load {path}: {e}")
        raise typer.Exit(1)


@app.command("plan")
def plan(
    path: Path = typer.Argument(..., help="Cluster resource (YAML or JSON)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the workloads a resource plans to, without applying anything."""
    resource = _load(path)
    try:
        planned = plan_topology(
            resource.spec,
            resource.metadata.name,
            resource.metadata.namespace,
            existing=resource.status.generations,
            cluster_uid=resource.metadata.uid,
        )
    except InvalidSpecError as e:
        print(str(e))
        raise typer.Exit(1)

    if json_output:
        data = {
            "revision": planned.revision,
            "masters": planned.quorum.master_count,
            "quorum": planned.quorum.quorum,
            "replicas": planned.replicas,
            "redundancy_degraded": planned.redundancy_degraded,
            "workloads": [w.model_dump(mode="json") for w in planned.workloads],
        }
        print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(title=f"Plan for {resource.key} ({planned.revision})")
    table.add_column("Workload", style="cyan")
    table.add_column("Pool")
    table.add_column("Roles")
    table.add_column("Ordinal", justify="right")
    table.add_column("Storage")
    for w in planned.workloads:
        table.add_row(
            w.name,
            w.pool,
            ",".join(r.value for r in w.roles),
            str(w.ordinal),
            w.storage.size or "ephemeral",
        )
    console.print(table)

    degraded = " [yellow](degraded)[/yellow]" if planned.redundancy_degraded else ""
    console.print(
        f"masters={planned.quorum.master_count} quorum={planned.quorum.quorum} "
        f"data={planned.data_nodes} replicas={planned.replicas}{degraded}"
    )


@app.command("apply")
def apply(
    path: Path = typer.Argument(..., help="Cluster resource (YAML or JSON)"),
) -> None:
    """Create or update a cluster resource."""
    resource = _load(path)

    async def _apply() -> None:
        async with StateDB(OperatorSettings().db_path) as db:
            await db.put_cluster(resource)
        print(f"Applied {resource.key}")

    asyncio.run(_apply())


@app.command("delete")
def delete(
    name: str = typer.Argument(..., help="Cluster name"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
) -> None:
    """Request teardown of a cluster (done by the next reconcile)."""

    async def _delete() -> None:
        async with StateDB(OperatorSettings().db_path) as db:
            found = await db.request_deletion(ClusterKey(namespace, name))
        if not found:
            print(f"Cluster {namespace}/{name} not found")
            raise typer.Exit(1)
        print(f"Deletion of {namespace}/{name} requested")

    asyncio.run(_delete())


@app.command("status")
def status(
    name: str = typer.Argument(None, help="Cluster name (all clusters if omitted)"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show cluster status and rollout progress."""

    async def _status() -> None:
        async with StateDB(OperatorSettings().db_path) as db:
            keys = [ClusterKey(namespace, name)] if name else await db.list_clusters()
            resources = [r for r in [await db.get_cluster(k) for k in keys] if r is not None]

        if name and not resources:
            print(f"Cluster {namespace}/{name} not found")
            raise typer.Exit(1)

        if json_output:
            data = [
                {"cluster": str(r.key), "status": r.status.model_dump(mode="json", by_alias=True)}
                for r in resources
            ]
            print(json.dumps(data, indent=2))
            return

        console = Console()
        table = Table(title="Clusters")
        table.add_column("Cluster", style="cyan")
        table.add_column("Phase", style="green")
        table.add_column("Pools")
        table.add_column("Rollout")
        table.add_column("Last Step")
        table.add_column("Conditions")

        for r in resources:
            s = r.status
            rollout = s.rollout.phase.value
            if s.rollout.queue:
                rollout += f" {s.rollout.cursor + 1}/{len(s.rollout.queue)}"
            table.add_row(
                str(r.key),
                s.phase.value,
                ", ".join(f"{p}={n}" for p, n in sorted(s.pools.items())) or "-",
                rollout,
                s.rollout.last_step or "-",
                ", ".join(c.type.value for c in s.conditions) or "-",
            )
        console.print(table)

        if name:
            for c in resources[0].status.conditions:
                console.print(f"[yellow]{c.type.value}[/yellow] ({c.reason}): {c.message}")
            if resources[0].status.rollout.deferred_reason:
                console.print(f"Deferred: {resources[0].status.rollout.deferred_reason}")

    asyncio.run(_status())


@app.command("reconcile")
def reconcile(
    name: str = typer.Argument(..., help="Cluster name"),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Cluster namespace"),
    passes: int = typer.Option(1, "--passes", "-p", help="Maximum passes to run"),
    flavor: str = typer.Option(
        "elasticsearch", "--flavor", "-f", help=f"Cluster flavor ({', '.join(get_available_flavors())})"
    ),
    auto_ready: bool = typer.Option(
        False, "--auto-ready", help="Mark applied workloads ready (no platform feedback)"
    ),
) -> None:
    """Run reconciliation passes for one cluster, stopping when idle."""
    _check_flavor(flavor)

    async def _reconcile() -> None:
        settings = OperatorSettings()
        key = ClusterKey(namespace, name)
        async with StateDB(settings.db_path, auto_ready=auto_ready) as db:
            reconciler = Reconciler(build_context(db, settings, flavor))
            for i in range(passes):
                result = await reconciler.reconcile(key)
                resource = await db.get_cluster(key)
                phase = resource.status.rollout.phase.value if resource else "removed"
                detail = f" error: {result.error}" if result.error else ""
                print(f"pass {i + 1}: {phase}{detail}")
                if result.requeue_after is None:
                    break

    asyncio.run(_reconcile())


@app.command("run")
def run(
    flavor: str = typer.Option(
        "elasticsearch", "--flavor", "-f", help=f"Cluster flavor ({', '.join(get_available_flavors())})"
    ),
    auto_ready: bool = typer.Option(
        False, "--auto-ready", help="Mark applied workloads ready (no platform feedback)"
    ),
) -> None:
    """Run the control loop until SIGINT/SIGTERM."""
    _check_flavor(flavor)

    async def _run() -> None:
        settings = OperatorSettings()
        async with StateDB(settings.db_path, auto_ready=auto_ready) as db:
            ctx = build_context(db, settings, flavor)
            loop = ControllerLoop(Reconciler(ctx), db, resync_interval=settings.resync_interval_seconds)
            await loop.run()

    asyncio.run(_run())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
