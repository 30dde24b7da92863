"""
Elasticsearch admin API client for cluster health and settings.

This module provides the ElasticsearchClient class for querying cluster
health and node membership, and for pushing replica settings.

ElasticsearchClient receives an injected httpx.AsyncClient with base_url set
to the cluster endpoint (and the admin client certificate configured). All
methods are async and fail loudly on HTTP errors; classifying failures is
the prober's job.
"""

from dataclasses import dataclass

import httpx

from escluster_elasticsearch.types import (
    AcknowledgedResponse,
    CatNodeEntry,
    ClusterHealthResponse,
)

OPERATOR_TEMPLATE = "common.settings.operator.template.json"
"""Index template carrying the replica count for indices not yet created."""


@dataclass
class ElasticsearchClient:
    """
    Admin API client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to the cluster.

    Example:
        async with httpx.AsyncClient(base_url="https://es:9200") as http:
            client = ElasticsearchClient(http=http)
            health = await client.get_cluster_health()
            print(f"{health.cluster_name}: {health.status}")
    """

    http: httpx.AsyncClient

    async def get_cluster_health(self) -> ClusterHealthResponse:
        """
        Get cluster health.

        Calls GET /_cluster/health.

        Raises:
            httpx.HTTPStatusError: On HTTP errors (4xx, 5xx responses).
            pydantic.ValidationError: On malformed response data.
        """
        response = await self.http.get("/_cluster/health")
        response.raise_for_status()
        return ClusterHealthResponse.model_validate(response.json())

    async def get_nodes(self) -> list[CatNodeEntry]:
        """
        Get the nodes that have joined the cluster.

        Calls GET /_cat/nodes?format=json.

        Raises:
            httpx.HTTPStatusError: On HTTP errors (4xx, 5xx responses).
            pydantic.ValidationError: On malformed response data.
        """
        response = await self.http.get(
            "/_cat/nodes",
            params={"format": "json", "h": "name,node.role,master,ip"},
        )
        response.raise_for_status()
        return [CatNodeEntry.model_validate(row) for row in response.json()]

    async def set_replica_count(self, replicas: int) -> None:
        """
        Apply the replica count to existing indices and the operator template.

        Calls PUT /*/_settings and PUT /_template/<operator template>.

        Raises:
            httpx.HTTPStatusError: On HTTP errors (4xx, 5xx responses).
            ValueError: If the cluster did not acknowledge a change.
        """
        response = await self.http.put(
            "/*/_settings",
            json={"index": {"number_of_replicas": replicas}},
        )
        response.raise_for_status()
        if not AcknowledgedResponse.model_validate(response.json()).acknowledged:
            raise ValueError("replica settings update was not acknowledged")

        response = await self.http.put(
            f"/_template/{OPERATOR_TEMPLATE}",
            json={
                "order": 0,
                "index_patterns": ["*"],
                "settings": {"index": {"number_of_replicas": replicas}},
            },
        )
        response.raise_for_status()
        if not AcknowledgedResponse.model_validate(response.json()).acknowledged:
            raise ValueError("replica template update was not acknowledged")
