"""
Factory functions for creating Elasticsearch connections.

This module provides the ConnectionFactory the reconciler uses to open a
mutually authenticated admin connection per pass, allowing operator-core
to talk to a cluster without direct imports from escluster-elasticsearch.
"""

import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from escluster_elasticsearch.admin import ElasticsearchAdmin
from escluster_elasticsearch.es_client import ElasticsearchClient
from escluster_elasticsearch.prober import ElasticsearchHealthProber
from escluster_protocols import ClientCredentials


def build_ssl_context(credentials: ClientCredentials) -> ssl.SSLContext:
    """
    Build a client SSL context from in-memory PEM material.

    The CA is loaded from memory. The ssl module only loads client key
    pairs from files, so those pass through a private temporary directory
    that is removed before returning.
    """
    context = ssl.create_default_context(cadata=credentials.ca_pem.decode("ascii"))
    with tempfile.TemporaryDirectory(prefix="escluster-") as tmp:
        cert_file = Path(tmp) / "admin.crt"
        key_file = Path(tmp) / "admin.key"
        cert_file.write_bytes(credentials.cert_pem)
        key_file.write_bytes(credentials.key_pem)
        key_file.chmod(0o600)
        context.load_cert_chain(certfile=str(cert_file), keyfile=str(key_file))
    return context


@dataclass
class ElasticsearchConnection:
    """
    An open admin connection to one cluster.

    Satisfies ClusterConnectionProtocol: prober for health, admin for
    settings changes, aclose() to release the transport.
    """

    http: httpx.AsyncClient
    client: ElasticsearchClient = field(init=False)
    prober: ElasticsearchHealthProber = field(init=False)
    admin: ElasticsearchAdmin = field(init=False)

    def __post_init__(self) -> None:
        self.client = ElasticsearchClient(http=self.http)
        self.prober = ElasticsearchHealthProber(client=self.client)
        self.admin = ElasticsearchAdmin(client=self.client)

    async def aclose(self) -> None:
        await self.http.aclose()


def create_es_connection(
    endpoint: str,
    credentials: ClientCredentials,
    timeout: float = 5.0,
    http: httpx.AsyncClient | None = None,
) -> ElasticsearchConnection:
    """
    Create an admin connection to a cluster endpoint.

    Args:
        endpoint: Admin API URL (e.g., "https://elasticsearch.logging.svc:9200")
        credentials: Admin identity and CA from the certificate manager.
        timeout: Per-request timeout in seconds.
        http: Optional pre-configured httpx client (tests inject a mock
            transport here). If None, an mTLS client is created.

    Returns:
        ElasticsearchConnection ready for use; close it with aclose().

    Example:
        connection = create_es_connection(endpoint, manager.credentials(admin))
        try:
            snapshot = await connection.prober.status()
        finally:
            await connection.aclose()
    """
    if http is None:
        http = httpx.AsyncClient(
            base_url=endpoint,
            verify=build_ssl_context(credentials),
            timeout=timeout,
        )
    return ElasticsearchConnection(http=http)


def connection_factory(timeout: float = 5.0):
    """Return a ConnectionFactory with a fixed per-request timeout."""

    def connect(endpoint: str, credentials: ClientCredentials) -> ElasticsearchConnection:
        return create_es_connection(endpoint, credentials, timeout=timeout)

    return connect
