"""
In-process PKI primitives.

Key generation, self-signed CA creation and leaf signing with the
cryptography library, so certificate issuance needs no subprocess or
filesystem and can be exercised directly in tests.

- Algorithm: RSA with SHA-256 signatures
- CA: self-signed, path length 0, key cert sign + CRL sign
- Leaves: validity capped at the CA's own expiry
"""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class LeafProfile:
    """
    What a leaf certificate asserts about its holder.

    Attributes:
        common_name: Subject CN.
        organizational_unit: Subject OU.
        organization: Subject O.
        dns_names: DNS subject alternative names.
        ip_addresses: IP subject alternative names.
        registered_ids: Registered-ID SANs (dotted OIDs).
        server_auth: Include the TLS server auth extended key usage.
        client_auth: Include the TLS client auth extended key usage.
    """

    common_name: str
    organizational_unit: str = "OpenShift"
    organization: str = "Logging"
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    registered_ids: tuple[str, ...] = ()
    server_auth: bool = True
    client_auth: bool = True


@dataclass
class KeyPair:
    """A private key and the certificate for it."""

    key: rsa.RSAPrivateKey
    cert: x509.Certificate = field(repr=False)

    @property
    def key_pem(self) -> bytes:
        return self.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)


def generate_key(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)


def create_ca(
    common_name: str,
    now: datetime,
    validity: timedelta,
    key_size: int = DEFAULT_KEY_SIZE,
) -> KeyPair:
    """
    Create a self-signed certificate authority.

    Args:
        common_name: Subject CN of the CA.
        now: Issuance time (timezone-aware).
        validity: How long the CA is valid.
        key_size: RSA key size in bits.
    """
    key = generate_key(key_size)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Logging"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "OpenShift"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return KeyPair(key=key, cert=cert)


def issue_leaf(
    ca: KeyPair,
    profile: LeafProfile,
    now: datetime,
    validity: timedelta,
    key_size: int = DEFAULT_KEY_SIZE,
) -> KeyPair:
    """
    Issue a leaf certificate signed by the CA.

    The leaf never outlives its CA: not_after is capped at the CA's expiry.
    """
    key = generate_key(key_size)
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, profile.organization),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, profile.organizational_unit),
            x509.NameAttribute(NameOID.COMMON_NAME, profile.common_name),
        ]
    )
    not_after = min(now + validity, ca.cert.not_valid_after_utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(ca.cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
            critical=False,
        )
    )

    usages = []
    if profile.server_auth:
        usages.append(ExtendedKeyUsageOID.SERVER_AUTH)
    if profile.client_auth:
        usages.append(ExtendedKeyUsageOID.CLIENT_AUTH)
    if usages:
        builder = builder.add_extension(x509.ExtendedKeyUsage(usages), critical=False)

    sans: list[x509.GeneralName] = [x509.DNSName(n) for n in profile.dns_names]
    sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in profile.ip_addresses]
    sans += [x509.RegisteredID(x509.ObjectIdentifier(oid)) for oid in profile.registered_ids]
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)

    return KeyPair(key=key, cert=builder.sign(ca.key, hashes.SHA256()))


def load_key_pair(key_pem: bytes, cert_pem: bytes) -> KeyPair:
    """
    Parse a PEM key and certificate and check that they belong together.

    Raises:
        ValueError: If either PEM is malformed, the key is not RSA, or the
            key does not match the certificate.
    """
    key = serialization.load_pem_private_key(key_pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key is not an RSA key")
    cert = x509.load_pem_x509_certificate(cert_pem)
    public = cert.public_key()
    if (
        not isinstance(public, rsa.RSAPublicKey)
        or public.public_numbers() != key.public_key().public_numbers()
    ):
        raise ValueError("private key does not match certificate")
    return KeyPair(key=key, cert=cert)


def is_issued_by(cert: x509.Certificate, ca_cert: x509.Certificate) -> bool:
    """True if cert carries a valid signature from ca_cert."""
    try:
        cert.verify_directly_issued_by(ca_cert)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True
