"""
Health prober for Elasticsearch clusters.

Classifies the cluster's own health report and lists the joined nodes.
Connectivity problems are an observation, not an error: transport
failures, timeouts and 5xx answers all yield an UNKNOWN snapshot, which
callers treat as "not safe to proceed". Other 4xx answers (bad
credentials, missing privileges) raise TransientError so they surface in
the caller's retry accounting.

The prober never retries; backoff belongs to the rollout sequencer.
"""

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from escluster_core.errors import TransientError
from escluster_elasticsearch.es_client import ElasticsearchClient
from escluster_protocols import ClusterHealth, HealthSnapshot, NodeReadiness

logger = logging.getLogger(__name__)

_STATUS = {
    "green": ClusterHealth.GREEN,
    "yellow": ClusterHealth.YELLOW,
    "red": ClusterHealth.RED,
}


@dataclass
class ElasticsearchHealthProber:
    """
    HealthProberProtocol implementation over the admin API.

    Attributes:
        client: Admin API client; its httpx timeout bounds every call.
    """

    client: ElasticsearchClient

    async def status(self) -> HealthSnapshot:
        """
        Observe cluster health and joined nodes.

        Returns:
            HealthSnapshot; UNKNOWN when the cluster cannot be reached.

        Raises:
            TransientError: On 4xx answers.
        """
        try:
            health = await self.client.get_cluster_health()
            nodes = await self.client.get_nodes()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code >= 500:
                return HealthSnapshot.unknown(f"cluster answered {code}")
            raise TransientError(f"health probe rejected with {code}: {e.response.text[:200]}") from e
        except httpx.TimeoutException as e:
            return HealthSnapshot.unknown(f"health probe timed out: {e}")
        except httpx.TransportError as e:
            return HealthSnapshot.unknown(f"cluster unreachable: {e}")
        except (ValidationError, ValueError) as e:
            logger.warning("Unintelligible health response: %s", e)
            return HealthSnapshot.unknown(f"unintelligible health response: {e}")

        return HealthSnapshot(
            health=_STATUS.get(health.status.lower(), ClusterHealth.UNKNOWN),
            nodes=[
                NodeReadiness(
                    name=n.name,
                    roles=n.node_role,
                    master_eligible=n.master_eligible,
                    elected_master=n.elected_master,
                )
                for n in nodes
            ],
            relocating_shards=health.relocating_shards,
        )
