"""
Certificate identities and what each one asserts.

Every identity gets its own CA-signed key/certificate pair:
- NODE: transport between cluster nodes (carries the node registered ID)
- HTTP: REST and metrics serving certificate of the nodes
- ADMIN: client identity the operator uses against the admin API
- DASHBOARD_PROXY: serving certificate of the dashboard proxy

NODE and HTTP are mounted by node workloads, so rotating either one rolls
the nodes. ADMIN and DASHBOARD_PROXY are consumed outside the nodes.
"""

from enum import Enum

from escluster_core.certs.pki import LeafProfile

NODE_REGISTERED_ID = "1.2.3.4.5.5"
"""OID the search engine's security layer uses to recognise cluster nodes."""


class CertIdentity(str, Enum):
    """Identities managed by the certificate manager."""

    NODE = "elasticsearch"
    HTTP = "logging-es"
    ADMIN = "system.admin"
    DASHBOARD_PROXY = "kibana-internal"


NODE_MOUNTED = (CertIdentity.NODE, CertIdentity.HTTP)
"""Identities whose material node workloads mount."""


def _service_names(service: str, namespace: str) -> tuple[str, ...]:
    return (
        service,
        f"{service}.{namespace}.svc",
        f"{service}.{namespace}.svc.cluster.local",
    )


def profile_for(identity: CertIdentity, cluster: str, namespace: str) -> LeafProfile:
    """Build the leaf profile for an identity of one cluster."""
    if identity is CertIdentity.NODE:
        return LeafProfile(
            common_name=identity.value,
            dns_names=(
                *_service_names(f"{cluster}-cluster", namespace),
                *_service_names(cluster, namespace),
                "localhost",
            ),
            ip_addresses=("127.0.0.1",),
            registered_ids=(NODE_REGISTERED_ID,),
        )
    if identity is CertIdentity.HTTP:
        return LeafProfile(
            common_name=identity.value,
            dns_names=(
                *_service_names(cluster, namespace),
                *_service_names(f"{cluster}-metrics", namespace),
                "localhost",
            ),
            ip_addresses=("127.0.0.1",),
        )
    if identity is CertIdentity.ADMIN:
        return LeafProfile(common_name=identity.value, server_auth=False)
    return LeafProfile(
        common_name=identity.value,
        dns_names=(*_service_names("kibana", namespace), "localhost"),
        client_auth=False,
    )
