"""
CertificateBundle: one identity's CA-signed key pair plus metadata.

Bundles are owned by the certificate manager and serialized to secrets in
a fixed key layout. Workloads reference a bundle by its stable secret
name; they never copy it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from escluster_core.certs.identity import CertIdentity
from escluster_core.certs.pki import KeyPair
from escluster_protocols import Secret

KEY_FIELD = "tls.key"
CERT_FIELD = "tls.crt"
CA_FIELD = "ca.crt"

CLUSTER_LABEL = "escluster.io/cluster"
IDENTITY_LABEL = "escluster.io/identity"
VERSION_LABEL = "escluster.io/version"
KIND_LABEL = "escluster.io/kind"


@dataclass
class CertificateBundle:
    """
    Key and certificate of one identity, signed by the cluster CA.

    Attributes:
        identity: Which identity this bundle authenticates.
        version: Monotonic version, bumped on every issuance.
        key_pem: PEM private key.
        cert_pem: PEM certificate.
        ca_pem: PEM certificate of the signing CA.
        not_after: Expiry of the certificate (UTC).
        serial: Certificate serial number.
    """

    identity: CertIdentity
    version: int
    key_pem: bytes = field(repr=False)
    cert_pem: bytes = field(repr=False)
    ca_pem: bytes = field(repr=False)
    not_after: datetime
    serial: int

    @classmethod
    def from_key_pair(
        cls, identity: CertIdentity, version: int, pair: KeyPair, ca_pem: bytes
    ) -> "CertificateBundle":
        return cls(
            identity=identity,
            version=version,
            key_pem=pair.key_pem,
            cert_pem=pair.cert_pem,
            ca_pem=ca_pem,
            not_after=pair.cert.not_valid_after_utc,
            serial=pair.cert.serial_number,
        )

    def expires_within(self, horizon: timedelta, now: datetime) -> bool:
        """True if the certificate expires before now + horizon."""
        return self.not_after - now <= horizon

    def to_secret(self, namespace: str, name: str, cluster: str) -> Secret:
        return Secret(
            namespace=namespace,
            name=name,
            data={
                KEY_FIELD: self.key_pem,
                CERT_FIELD: self.cert_pem,
                CA_FIELD: self.ca_pem,
            },
            labels={
                CLUSTER_LABEL: cluster,
                IDENTITY_LABEL: self.identity.value,
                VERSION_LABEL: str(self.version),
                KIND_LABEL: "bundle",
            },
        )


def secret_version(secret: Secret) -> int:
    """Version recorded on a bundle secret (0 if missing or malformed)."""
    try:
        return int(secret.labels.get(VERSION_LABEL, "0"))
    except ValueError:
        return 0
