"""
Elasticsearch admin API integration for the cluster operator.

Provides the health prober, the replica-settings admin and the mTLS
connection factory the reconciler uses for Elasticsearch clusters.
"""

from escluster_elasticsearch.admin import ElasticsearchAdmin
from escluster_elasticsearch.es_client import ElasticsearchClient
from escluster_elasticsearch.factory import (
    ElasticsearchConnection,
    build_ssl_context,
    connection_factory,
    create_es_connection,
)
from escluster_elasticsearch.prober import ElasticsearchHealthProber

__all__ = [
    "ElasticsearchAdmin",
    "ElasticsearchClient",
    "ElasticsearchConnection",
    "ElasticsearchHealthProber",
    "build_ssl_context",
    "connection_factory",
    "create_es_connection",
]
