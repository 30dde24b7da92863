"""
Certificate manager: self-managed PKI for one cluster.

The manager owns generation, storage and rotation of the cluster CA and of
every identity's key pair. Nothing is signed by an external authority.

Storage layout (all names derived from the cluster name):
- "<cluster>-ca": CA key and certificate, created once, never regenerated
- "<cluster>-tls-<identity>": current bundle of an identity (stable name)
- "<cluster>-tls-<identity>-v<N>": archived copy of version N
- "<cluster>": the key layout node workloads mount

Each issuance writes the stable secret and its own archive in one atomic
batch, so readers see either the old or the new bundle, never a mix. The
previous version stays retrievable until release() is called once the
dependent rollout has applied the new one.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from escluster_core.calls import bounded
from escluster_core.certs.bundle import (
    CA_FIELD,
    CERT_FIELD,
    CLUSTER_LABEL,
    IDENTITY_LABEL,
    KEY_FIELD,
    KIND_LABEL,
    CertificateBundle,
    secret_version,
)
from escluster_core.certs.identity import NODE_MOUNTED, CertIdentity, profile_for
from escluster_core.certs.pki import (
    DEFAULT_KEY_SIZE,
    KeyPair,
    create_ca,
    is_issued_by,
    issue_leaf,
    load_key_pair,
)
from escluster_core.errors import CACorruptionError, PersistenceFailure
from escluster_protocols import ClientCredentials, ClusterKey, Secret, SecretStoreProtocol

logger = logging.getLogger(__name__)

CA_KEY_FIELD = "ca.key"
REVISION_LABEL = "escluster.io/cert-revision"


def expiring_soon(bundle: CertificateBundle, horizon: timedelta, now: datetime | None = None) -> bool:
    """True if bundle expires within horizon of now."""
    return bundle.expires_within(horizon, now or datetime.now(timezone.utc))


def cert_revision(bundles: dict[CertIdentity, CertificateBundle]) -> str:
    """
    Revision string of the material node workloads mount.

    Stamped on every workload descriptor; a change rolls the nodes.
    """
    return "+".join(f"{i.value}.v{bundles[i].version}" for i in NODE_MOUNTED if i in bundles)


class CertificateManager:
    """
    Generates, persists and rotates the PKI material of one cluster.

    Example:
        manager = CertificateManager(key, secrets)
        bundles = await manager.ensure_all()
        if expiring_soon(bundles[CertIdentity.NODE], timedelta(days=30)):
            bundles[CertIdentity.NODE] = await manager.rotate(CertIdentity.NODE)
    """

    def __init__(
        self,
        cluster: ClusterKey,
        secrets: SecretStoreProtocol,
        validity: timedelta = timedelta(days=730),
        ca_validity: timedelta = timedelta(days=1825),
        key_size: int = DEFAULT_KEY_SIZE,
        call_timeout: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            cluster: Cluster the material belongs to.
            secrets: Secret store the material is persisted in.
            validity: Lifetime of leaf certificates.
            ca_validity: Lifetime of the CA (set once, at creation).
            key_size: RSA key size for new keys.
            call_timeout: Bound on every secret store call.
            clock: Returns the current UTC time (injectable for tests).
        """
        self.cluster = cluster
        self.secrets = secrets
        self.validity = validity
        self.ca_validity = ca_validity
        self.key_size = key_size
        self.call_timeout = call_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ca: KeyPair | None = None

    # -------------------------------------------------------------------------
    # Naming
    # -------------------------------------------------------------------------

    @property
    def ca_secret_name(self) -> str:
        return f"{self.cluster.name}-ca"

    @property
    def node_secret_name(self) -> str:
        return self.cluster.name

    def secret_name(self, identity: CertIdentity) -> str:
        return f"{self.cluster.name}-tls-{identity.value}"

    def archive_name(self, identity: CertIdentity, version: int) -> str:
        return f"{self.secret_name(identity)}-v{version}"

    # -------------------------------------------------------------------------
    # CA
    # -------------------------------------------------------------------------

    async def ensure_ca(self) -> KeyPair:
        """
        Load the cluster CA, creating it on first use.

        Raises:
            CACorruptionError: If the persisted CA cannot be used.
            PersistenceFailure: If a new CA cannot be stored.
        """
        if self._ca is not None:
            return self._ca

        secret = await self._get(self.ca_secret_name)
        if secret is None:
            ca = create_ca(
                f"{self.cluster.name}.{self.cluster.namespace}.signer",
                self._clock(),
                self.ca_validity,
                self.key_size,
            )
            await self._write(
                [
                    Secret(
                        namespace=self.cluster.namespace,
                        name=self.ca_secret_name,
                        data={CA_KEY_FIELD: ca.key_pem, CA_FIELD: ca.cert_pem},
                        labels={CLUSTER_LABEL: self.cluster.name, KIND_LABEL: "ca"},
                    )
                ]
            )
            logger.info("Created CA for %s", self.cluster)
            self._ca = ca
            return ca

        try:
            ca = load_key_pair(secret.data[CA_KEY_FIELD], secret.data[CA_FIELD])
        except KeyError as e:
            raise CACorruptionError(self.ca_secret_name, f"missing field {e.args[0]}") from e
        except ValueError as e:
            raise CACorruptionError(self.ca_secret_name, str(e)) from e

        self._ca = ca
        return ca

    # -------------------------------------------------------------------------
    # Bundles
    # -------------------------------------------------------------------------

    async def get(self, identity: CertIdentity, version: int | None = None) -> CertificateBundle | None:
        """
        Load the current bundle of an identity, or an archived version.

        Returns:
            The bundle, or None if it does not exist or cannot be parsed.
        """
        name = self.secret_name(identity) if version is None else self.archive_name(identity, version)
        secret = await self._get(name)
        if secret is None:
            return None
        return self._parse(identity, secret)

    async def ensure(self, identity: CertIdentity) -> CertificateBundle:
        """
        Return a valid bundle for identity, issuing one if needed.

        Idempotent: a stored bundle that parses, has not expired and was
        signed by the current CA is returned unchanged.
        """
        ca = await self.ensure_ca()
        secret = await self._get(self.secret_name(identity))
        current = self._parse(identity, secret) if secret else None

        if current is not None and self._usable(current, ca):
            return current

        version = secret_version(secret) + 1 if secret else 1
        if secret is not None:
            logger.warning(
                "Reissuing %s certificate for %s: stored bundle v%d is unusable",
                identity.value,
                self.cluster,
                version - 1,
            )
        return await self._issue(identity, ca, version)

    async def ensure_all(
        self, identities: Iterable[CertIdentity] = tuple(CertIdentity)
    ) -> dict[CertIdentity, CertificateBundle]:
        """Ensure every listed identity, in order."""
        return {identity: await self.ensure(identity) for identity in identities}

    async def rotate(self, identity: CertIdentity) -> CertificateBundle:
        """
        Force reissue of an identity's bundle with a bumped version.

        The previous version remains retrievable via get(identity, version)
        until release() prunes it.
        """
        ca = await self.ensure_ca()
        secret = await self._get(self.secret_name(identity))
        version = secret_version(secret) + 1 if secret else 1
        bundle = await self._issue(identity, ca, version)
        logger.info("Rotated %s certificate for %s to v%d", identity.value, self.cluster, version)
        return bundle

    async def release(self, identity: CertIdentity, keep_version: int) -> int:
        """
        Delete archived versions of an identity older than keep_version.

        Returns:
            Number of archived versions deleted.
        """
        prefix = f"{self.secret_name(identity)}-v"
        archived = await bounded(
            self.secrets.list_secrets(self.cluster.namespace, prefix),
            self.call_timeout,
            f"listing {prefix}*",
        )
        stale = [
            s.name
            for s in archived
            if s.labels.get(CLUSTER_LABEL) == self.cluster.name
            and s.labels.get(IDENTITY_LABEL) == identity.value
            and secret_version(s) < keep_version
        ]
        if not stale:
            return 0
        deleted = await bounded(
            self.secrets.delete_secrets(self.cluster.namespace, stale),
            self.call_timeout,
            f"deleting {len(stale)} archived bundle(s)",
            PersistenceFailure,
        )
        logger.info("Released %d archived %s bundle(s) for %s", deleted, identity.value, self.cluster)
        return deleted

    async def write_node_secret(self, bundles: dict[CertIdentity, CertificateBundle]) -> bool:
        """
        Write the secret node workloads mount, if its content changed.

        Returns:
            True if the secret was (re)written.
        """
        revision = cert_revision(bundles)
        node = bundles[CertIdentity.NODE]
        http = bundles[CertIdentity.HTTP]
        admin = bundles[CertIdentity.ADMIN]

        existing = await self._get(self.node_secret_name)
        if (
            existing is not None
            and existing.labels.get(REVISION_LABEL) == revision
            and existing.data.get("admin-cert") == admin.cert_pem
        ):
            return False

        await self._write(
            [
                Secret(
                    namespace=self.cluster.namespace,
                    name=self.node_secret_name,
                    data={
                        "elasticsearch.key": node.key_pem,
                        "elasticsearch.crt": node.cert_pem,
                        "logging-es.key": http.key_pem,
                        "logging-es.crt": http.cert_pem,
                        "admin-key": admin.key_pem,
                        "admin-cert": admin.cert_pem,
                        "admin-ca": admin.ca_pem,
                    },
                    labels={
                        CLUSTER_LABEL: self.cluster.name,
                        KIND_LABEL: "node",
                        REVISION_LABEL: revision,
                    },
                )
            ]
        )
        return True

    async def delete_all(self) -> int:
        """Delete every secret owned by this cluster (teardown)."""
        candidates = await bounded(
            self.secrets.list_secrets(self.cluster.namespace, self.cluster.name),
            self.call_timeout,
            f"listing secrets of {self.cluster}",
        )
        owned = [s.name for s in candidates if s.labels.get(CLUSTER_LABEL) == self.cluster.name]
        self._ca = None
        if not owned:
            return 0
        return await bounded(
            self.secrets.delete_secrets(self.cluster.namespace, owned),
            self.call_timeout,
            f"deleting secrets of {self.cluster}",
            PersistenceFailure,
        )

    @staticmethod
    def credentials(admin: CertificateBundle) -> ClientCredentials:
        """Client credentials for the admin API from the admin bundle."""
        return ClientCredentials(ca_pem=admin.ca_pem, cert_pem=admin.cert_pem, key_pem=admin.key_pem)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _issue(self, identity: CertIdentity, ca: KeyPair, version: int) -> CertificateBundle:
        pair = issue_leaf(
            ca,
            profile_for(identity, self.cluster.name, self.cluster.namespace),
            self._clock(),
            self.validity,
            self.key_size,
        )
        bundle = CertificateBundle.from_key_pair(identity, version, pair, ca.cert_pem)
        ns, name = self.cluster.namespace, self.cluster.name
        await self._write(
            [
                bundle.to_secret(ns, self.secret_name(identity), name),
                bundle.to_secret(ns, self.archive_name(identity, version), name),
            ]
        )
        return bundle

    def _parse(self, identity: CertIdentity, secret: Secret) -> CertificateBundle | None:
        try:
            pair = load_key_pair(secret.data[KEY_FIELD], secret.data[CERT_FIELD])
            ca_pem = secret.data[CA_FIELD]
        except (KeyError, ValueError):
            return None
        return CertificateBundle.from_key_pair(identity, secret_version(secret), pair, ca_pem)

    def _usable(self, bundle: CertificateBundle, ca: KeyPair) -> bool:
        if self._clock() >= bundle.not_after:
            return False
        pair = load_key_pair(bundle.key_pem, bundle.cert_pem)
        return is_issued_by(pair.cert, ca.cert)

    async def _get(self, name: str) -> Secret | None:
        return await bounded(
            self.secrets.get_secret(self.cluster.namespace, name),
            self.call_timeout,
            f"reading secret {name}",
        )

    async def _write(self, secrets: list[Secret]) -> None:
        await bounded(
            self.secrets.write_secrets(secrets),
            self.call_timeout,
            f"writing {', '.join(s.name for s in secrets)}",
            PersistenceFailure,
        )


__all__ = [
    "CertificateManager",
    "cert_revision",
    "expiring_soon",
]
