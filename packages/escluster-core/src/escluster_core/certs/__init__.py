"""
Self-managed PKI for search clusters.

The certificate manager issues every identity's key pair from a per-cluster
CA and persists them as secrets, with versioned rotation.
"""

from escluster_core.certs.bundle import CertificateBundle
from escluster_core.certs.identity import NODE_MOUNTED, CertIdentity
from escluster_core.certs.manager import CertificateManager, cert_revision, expiring_soon

__all__ = [
    "CertIdentity",
    "CertificateBundle",
    "CertificateManager",
    "NODE_MOUNTED",
    "cert_revision",
    "expiring_soon",
]
