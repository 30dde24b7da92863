"""
Elasticsearch-specific Pydantic response types.

This module provides Pydantic models for parsing responses from the
cluster's administrative REST API:
- GET /_cluster/health
- GET /_cat/nodes?format=json

These are API response types for external data validation. Internal
types (HealthSnapshot, NodeReadiness) are dataclasses in
escluster_protocols.

Notes:
- _cat APIs return every value as a string, including numbers
- _cat/nodes uses dotted keys ("node.role"), mapped through aliases
- The elected master is marked with "*" in the master column
"""

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Cluster Health
# =============================================================================


class ClusterHealthResponse(BaseModel):
    """
    Response from GET /_cluster/health.

    Example response:
    {
        "cluster_name": "elasticsearch",
        "status": "green",
        "timed_out": false,
        "number_of_nodes": 3,
        "number_of_data_nodes": 3,
        "active_primary_shards": 5,
        "relocating_shards": 0,
        "unassigned_shards": 0
    }
    """

    model_config = ConfigDict(extra="ignore")

    cluster_name: str = ""
    status: str  # "green", "yellow", "red"
    timed_out: bool = False
    number_of_nodes: int = 0
    number_of_data_nodes: int = 0
    active_primary_shards: int = 0
    active_shards: int = 0
    relocating_shards: int = 0
    initializing_shards: int = 0
    unassigned_shards: int = 0


# =============================================================================
# Nodes
# =============================================================================


class CatNodeEntry(BaseModel):
    """
    Single row of GET /_cat/nodes?format=json&h=name,node.role,master,ip.

    Example row:
    {"name": "elasticsearch-cdm-1a2b3c4d-1-6f7d9-x2k4p", "node.role": "mdi", "master": "*", "ip": "10.0.0.4"}
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    node_role: str = Field(default="", alias="node.role")
    master: str = ""  # "*" elected, "-" not elected
    ip: str = ""

    @property
    def master_eligible(self) -> bool:
        return "m" in self.node_role

    @property
    def elected_master(self) -> bool:
        return self.master == "*"


# =============================================================================
# Settings
# =============================================================================


class AcknowledgedResponse(BaseModel):
    """Response of settings and template updates: {"acknowledged": true}."""

    model_config = ConfigDict(extra="ignore")

    acknowledged: bool = False
