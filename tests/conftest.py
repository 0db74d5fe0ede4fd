"""Shared fixtures: generated certificates and fixture trust stores."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from trustpatch.truststore import InMemoryTrustStore, anchor_from_der


@pytest.fixture(scope="session")
def signing_key():
    """One EC key for every generated certificate; signatures are never verified."""
    return ec.generate_private_key(ec.SECP256R1())


def _name(common_name: str, organization: Optional[str] = None) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    return x509.Name(attributes)


@pytest.fixture
def make_cert_der(signing_key):
    """Factory returning DER bytes for a certificate with the given names."""

    def _make(common_name: str, issuer_cn: Optional[str] = None, organization: Optional[str] = None) -> bytes:
        subject = _name(common_name, organization)
        issuer = _name(issuer_cn, organization) if issuer_cn else subject
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(signing_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
            .sign(signing_key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.DER)

    return _make


@pytest.fixture
def make_anchor(make_cert_der):
    """Factory returning a TrustAnchor built from a generated certificate."""

    def _make(common_name: str, issuer_cn: Optional[str] = None, organization: Optional[str] = None):
        return anchor_from_der(make_cert_der(common_name, issuer_cn, organization))

    return _make


@pytest.fixture
def acme_root(make_anchor):
    return make_anchor("Acme Root CA", organization="Acme Corp")


@pytest.fixture
def acme_intermediate(make_anchor):
    return make_anchor("Acme Issuing CA 1", issuer_cn="Acme Root CA", organization="Acme Corp")


@pytest.fixture
def acme_store(acme_root, acme_intermediate, make_anchor):
    """Store with the Acme chain plus unrelated public certificates."""
    return InMemoryTrustStore(
        roots=[make_anchor("Public Root X1"), acme_root, make_anchor("Other Global Root")],
        intermediates=[
            make_anchor("Public Issuing R3", issuer_cn="Public Root X1"),
            acme_intermediate,
        ],
    )


@pytest.fixture
def pem_of():
    """Convert a TrustAnchor to PEM bytes."""
    from trustpatch.bundle import to_pem

    def _pem(anchor) -> bytes:
        return to_pem(anchor.raw)

    return _pem
