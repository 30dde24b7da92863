"""
SQLite-based operator state store.

StateDB is the local backend of every store the reconciler talks to:
- ClusterStoreProtocol: desired-state resources and their status
- SecretStoreProtocol: PKI material, with atomic batch writes
- WorkloadClientProtocol: node workloads as last applied

It backs the CLI (a single-host registry of clusters) and the tests.

Per project patterns:
- Use async context manager for connection lifecycle
- Use transactions for atomicity (a secret batch is one transaction)
- Read failures raise TransientError, write failures PersistenceFailure
"""

import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from escluster_core.db.schema import SCHEMA_SQL
from escluster_core.errors import PersistenceFailure, TransientError
from escluster_core.resource import ClusterMeta, ClusterResource, ClusterStatus
from escluster_core.types import ClusterSpec, LiveWorkload, WorkloadDescriptor
from escluster_protocols import ClusterKey, Secret

logger = logging.getLogger(__name__)


class StateDB:
    """
    Async context manager for operator state.

    Example:
        async with StateDB(Path("state.db")) as db:
            await db.put_cluster(resource)
            resource = await db.get_cluster(resource.key)
    """

    def __init__(self, db_path: Path | str, auto_ready: bool = False) -> None:
        """
        Initialize the database connection manager.

        Args:
            db_path: Path to the SQLite database file (or ":memory:")
            auto_ready: Mark applied workloads ready immediately. Used when
                no platform reports readiness back (local runs, tests).
        """
        self.db_path = db_path
        self.auto_ready = auto_ready
        self._conn: aiosqlite.Connection | None = None
        # One connection is shared by every cluster task; transactions must not interleave.
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "StateDB":
        """Open database connection and ensure schema exists."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._ensure_schema()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _ensure_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        try:
            async with self._lock, self._conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise TransientError(f"state read failed: {e}") from e

    async def _fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    async def _write(self, statements: list[tuple[str, tuple]]) -> int:
        """Run statements in one transaction, returning rows changed."""
        changed = 0
        async with self._lock:
            try:
                for sql, params in statements:
                    cursor = await self._conn.execute(sql, params)
                    changed += max(cursor.rowcount, 0)
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceFailure(f"state write failed: {e}") from e
        return changed

    # -------------------------------------------------------------------------
    # Clusters
    # -------------------------------------------------------------------------

    async def put_cluster(self, resource: ClusterResource) -> None:
        """
        Create or update a cluster resource's spec.

        The status of an existing resource is preserved, so re-applying a
        resource never loses rollout progress.
        """
        await self._write(
            [
                (
                    """
                    INSERT INTO clusters (namespace, name, uid, spec, deletion_requested)
                    VALUES (?, ?, ?, ?, 0)
                    ON CONFLICT(namespace, name) DO UPDATE SET
                        uid = CASE WHEN excluded.uid != '' THEN excluded.uid ELSE clusters.uid END,
                        spec = excluded.spec,
                        deletion_requested = 0
                    """,
                    (
                        resource.metadata.namespace,
                        resource.metadata.name,
                        resource.metadata.uid,
                        resource.spec.model_dump_json(by_alias=True),
                    ),
                )
            ]
        )

    async def get_cluster(self, key: ClusterKey) -> ClusterResource | None:
        """Load a cluster resource, or None if it does not exist."""
        row = await self._fetchone(
            "SELECT * FROM clusters WHERE namespace = ? AND name = ?",
            (key.namespace, key.name),
        )
        if row is None:
            return None
        return self._row_to_cluster(row)

    async def list_clusters(self) -> list[ClusterKey]:
        rows = await self._fetchall("SELECT namespace, name FROM clusters ORDER BY namespace, name")
        return [ClusterKey(namespace=r["namespace"], name=r["name"]) for r in rows]

    async def update_status(self, key: ClusterKey, status: ClusterStatus) -> None:
        """Persist the status subresource of a cluster."""
        await self._write(
            [
                (
                    "UPDATE clusters SET status = ? WHERE namespace = ? AND name = ?",
                    (status.model_dump_json(by_alias=True), key.namespace, key.name),
                )
            ]
        )

    async def request_deletion(self, key: ClusterKey) -> bool:
        """
        Mark a cluster for teardown.

        Returns:
            True if the cluster exists.
        """
        changed = await self._write(
            [
                (
                    "UPDATE clusters SET deletion_requested = 1 WHERE namespace = ? AND name = ?",
                    (key.namespace, key.name),
                )
            ]
        )
        return changed > 0

    async def remove_cluster(self, key: ClusterKey) -> None:
        """Forget a cluster after teardown completed."""
        await self._write(
            [
                (
                    "DELETE FROM clusters WHERE namespace = ? AND name = ?",
                    (key.namespace, key.name),
                )
            ]
        )

    def _row_to_cluster(self, row: aiosqlite.Row) -> ClusterResource:
        status = (
            ClusterStatus.model_validate_json(row["status"]) if row["status"] else ClusterStatus()
        )
        return ClusterResource(
            metadata=ClusterMeta(
                name=row["name"],
                namespace=row["namespace"],
                uid=row["uid"],
                deletion_requested=bool(row["deletion_requested"]),
            ),
            spec=ClusterSpec.model_validate_json(row["spec"]),
            status=status,
        )

    # -------------------------------------------------------------------------
    # Secrets
    # -------------------------------------------------------------------------

    async def get_secret(self, namespace: str, name: str) -> Secret | None:
        row = await self._fetchone(
            "SELECT * FROM secrets WHERE namespace = ? AND name = ?",
            (namespace, name),
        )
        return self._row_to_secret(row) if row else None

    async def list_secrets(self, namespace: str, prefix: str) -> list[Secret]:
        """List secrets whose name starts with prefix."""
        rows = await self._fetchall(
            "SELECT * FROM secrets WHERE namespace = ? AND substr(name, 1, ?) = ? ORDER BY name",
            (namespace, len(prefix), prefix),
        )
        return [self._row_to_secret(r) for r in rows]

    async def write_secrets(self, secrets: list[Secret]) -> None:
        """Create or replace a batch of secrets in one transaction."""
        await self._write(
            [
                (
                    """
                    INSERT INTO secrets (namespace, name, data, labels)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(namespace, name) DO UPDATE SET
                        data = excluded.data,
                        labels = excluded.labels
                    """,
                    (
                        s.namespace,
                        s.name,
                        json.dumps({k: base64.b64encode(v).decode("ascii") for k, v in s.data.items()}),
                        json.dumps(s.labels),
                    ),
                )
                for s in secrets
            ]
        )

    async def delete_secrets(self, namespace: str, names: list[str]) -> int:
        return await self._write(
            [
                ("DELETE FROM secrets WHERE namespace = ? AND name = ?", (namespace, name))
                for name in names
            ]
        )

    def _row_to_secret(self, row: aiosqlite.Row) -> Secret:
        return Secret(
            namespace=row["namespace"],
            name=row["name"],
            data={k: base64.b64decode(v) for k, v in json.loads(row["data"]).items()},
            labels=json.loads(row["labels"]),
        )

    # -------------------------------------------------------------------------
    # Workloads
    # -------------------------------------------------------------------------

    async def list_workloads(self, namespace: str, cluster: str) -> list[LiveWorkload]:
        rows = await self._fetchall(
            "SELECT * FROM workloads WHERE namespace = ? AND cluster = ? ORDER BY name",
            (namespace, cluster),
        )
        return [
            LiveWorkload(
                descriptor=WorkloadDescriptor.model_validate_json(r["descriptor"]),
                ready=bool(r["ready"]),
            )
            for r in rows
        ]

    async def apply_workload(self, descriptor: WorkloadDescriptor) -> None:
        """Create or replace a workload; a replaced workload restarts unready."""
        await self._write(
            [
                (
                    """
                    INSERT INTO workloads (namespace, name, cluster, descriptor, ready)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, name) DO UPDATE SET
                        descriptor = excluded.descriptor,
                        ready = excluded.ready
                    """,
                    (
                        descriptor.namespace,
                        descriptor.name,
                        descriptor.cluster,
                        descriptor.model_dump_json(),
                        1 if self.auto_ready else 0,
                    ),
                )
            ]
        )
        logger.debug("Applied workload %s/%s", descriptor.namespace, descriptor.name)

    async def delete_workload(self, descriptor: WorkloadDescriptor) -> None:
        await self._write(
            [
                (
                    "DELETE FROM workloads WHERE namespace = ? AND name = ?",
                    (descriptor.namespace, descriptor.name),
                )
            ]
        )

    async def mark_ready(self, namespace: str, name: str, ready: bool = True) -> bool:
        """
        Record platform readiness of a workload.

        Returns:
            True if the workload exists.
        """
        changed = await self._write(
            [
                (
                    "UPDATE workloads SET ready = ? WHERE namespace = ? AND name = ?",
                    (1 if ready else 0, namespace, name),
                )
            ]
        )
        return changed > 0
