"""
Settings changes pushed to an Elasticsearch cluster.

ElasticsearchAdmin is the ClusterAdminProtocol side of a connection. Unlike
the prober, every failure here is an error: the change did not happen, so
the caller must retry. HTTP errors, transport failures, timeouts and
unacknowledged updates all surface as TransientError.
"""

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from escluster_core.errors import TransientError
from escluster_elasticsearch.es_client import ElasticsearchClient

logger = logging.getLogger(__name__)


@dataclass
class ElasticsearchAdmin:
    """
    ClusterAdminProtocol implementation over the admin API.

    Attributes:
        client: Admin API client; its httpx timeout bounds every call.
    """

    client: ElasticsearchClient

    async def set_replica_count(self, replicas: int) -> None:
        """
        Apply the replica count to existing indices and new ones.

        Raises:
            TransientError: If the cluster did not take the change.
        """
        try:
            await self.client.set_replica_count(replicas)
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise TransientError(f"replica update rejected with {code}: {e.response.text[:200]}") from e
        except httpx.TimeoutException as e:
            raise TransientError(f"replica update timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"cluster unreachable: {e}") from e
        except (ValidationError, ValueError) as e:
            logger.warning("Replica update failed: %s", e)
            raise TransientError(f"replica update failed: {e}") from e
