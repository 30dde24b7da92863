"""
SQLite schema for the local operator state store.

This module defines the database schema for:
- Cluster resources (desired spec plus the status subresource)
- Secrets (PKI material written by the certificate manager)
- Workloads (the node workloads the rollout sequencer applies)

The schema supports:
- Lookups by namespaced name for every object kind
- Deletion requests recorded on the resource until teardown completes
- Atomic multi-secret writes (one transaction per batch)
"""

SCHEMA_SQL = """
-- Desired-state resources and their status
CREATE TABLE IF NOT EXISTS clusters (
    namespace TEXT NOT NULL,
    name TEXT NOT NULL,
    uid TEXT NOT NULL DEFAULT '',
    spec TEXT NOT NULL,                          -- JSON ClusterSpec
    status TEXT,                                 -- JSON ClusterStatus, NULL until first pass
    deletion_requested BOOLEAN NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (namespace, name)
);

-- Named key/value bundles (CA, certificate bundles, node secret)
CREATE TABLE IF NOT EXISTS secrets (
    namespace TEXT NOT NULL,
    name TEXT NOT NULL,
    data TEXT NOT NULL,                          -- JSON object, base64 values
    labels TEXT NOT NULL DEFAULT '{}',           -- JSON object
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (namespace, name)
);

-- Node workloads as last applied
CREATE TABLE IF NOT EXISTS workloads (
    namespace TEXT NOT NULL,
    name TEXT NOT NULL,
    cluster TEXT NOT NULL,
    descriptor TEXT NOT NULL,                    -- JSON WorkloadDescriptor
    ready BOOLEAN NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (namespace, name)
);

-- Index for listing a cluster's workloads
CREATE INDEX IF NOT EXISTS idx_workloads_cluster
ON workloads(namespace, cluster);

-- Triggers to update updated_at on modification
CREATE TRIGGER IF NOT EXISTS clusters_updated_at
AFTER UPDATE ON clusters
BEGIN
    UPDATE clusters SET updated_at = CURRENT_TIMESTAMP
    WHERE namespace = NEW.namespace AND name = NEW.name;
END;

CREATE TRIGGER IF NOT EXISTS secrets_updated_at
AFTER UPDATE ON secrets
BEGIN
    UPDATE secrets SET updated_at = CURRENT_TIMESTAMP
    WHERE namespace = NEW.namespace AND name = NEW.name;
END;

CREATE TRIGGER IF NOT EXISTS workloads_updated_at
AFTER UPDATE ON workloads
BEGIN
    UPDATE workloads SET updated_at = CURRENT_TIMESTAMP
    WHERE namespace = NEW.namespace AND name = NEW.name;
END;
"""
