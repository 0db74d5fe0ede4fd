"""Tests for trust store reading and pattern matching."""

import hashlib
from unittest.mock import Mock, patch

import pytest

from trustpatch.exceptions import IOFailure, NoMatchError
from trustpatch.truststore import (
    InMemoryTrustStore,
    PemFileTrustStore,
    SystemTrustStore,
    anchor_from_der,
    anchor_from_pem,
    find_anchors,
    split_pem_certificates,
    subject_matches,
    unescape_dn,
)


def test_anchor_from_der_fields(make_cert_der):
    """Test subject, issuer and thumbprint of a parsed anchor."""
    der = make_cert_der("Acme Issuing CA 1", issuer_cn="Acme Root CA")
    anchor = anchor_from_der(der)

    assert anchor.subject == "CN=Acme Issuing CA 1"
    assert anchor.issuer == "CN=Acme Root CA"
    assert anchor.thumbprint == hashlib.sha1(der).hexdigest().upper()
    assert anchor.raw == der
    assert not anchor.is_self_signed


def test_anchor_from_pem_matches_der(acme_root, pem_of):
    """Test that PEM and DER parsing give the same anchor."""
    anchor = anchor_from_pem(pem_of(acme_root))
    assert anchor == acme_root
    assert anchor.raw == acme_root.raw


def test_anchor_identity_is_thumbprint(acme_root):
    """Test that equality ignores everything but the thumbprint."""
    from dataclasses import replace

    renamed = replace(acme_root, subject="CN=Something Else")
    assert renamed == acme_root
    assert len({renamed, acme_root}) == 1


@pytest.mark.parametrize(
    "subject,patterns,expected",
    [
        ("CN=Zscaler Root CA,OU=Zscaler Inc.", ["*Zscaler Root CA*"], True),
        ("CN=ZSCALER ROOT CA", ["*zscaler root ca*"], True),
        ("CN=Acme Root CA", ["*Zscaler*", "*Acme*"], True),
        ("CN=Acme Root CA", ["*Zscaler*"], False),
        ("CN=Acme Root CA", ["Acme Root CA"], False),
    ],
)
def test_subject_matches(subject, patterns, expected):
    """Test case-insensitive, ORed glob matching."""
    assert subject_matches(subject, patterns) is expected


def test_find_anchors_filters_by_pattern(acme_store, acme_root):
    """Test that only matching roots are returned."""
    result = find_anchors(acme_store, ["*Acme Root*"])
    assert result == [acme_root]


def test_find_anchors_name_with_comma(make_anchor):
    """Test that patterns match the displayed name, not its RFC 4514 escaping."""
    root = make_anchor("Acme, Inc. Root CA")
    store = InMemoryTrustStore(roots=[root])

    assert root.subject == "CN=Acme\\, Inc. Root CA"
    assert find_anchors(store, ["*Acme, Inc.*"]) == [root]
    assert find_anchors(store, ["*Acme\\, Inc.*"]) == [root]


@pytest.mark.parametrize(
    "name,expected",
    [
        ("CN=Acme\\, Inc.,O=Acme", "CN=Acme, Inc.,O=Acme"),
        ("CN=a\\+b\\;c", "CN=a+b;c"),
        ("CN=back\\\\slash", "CN=back\\slash"),
        ("CN=nul\\00", "CN=nul\x00"),
        ("CN=plain", "CN=plain"),
    ],
)
def test_unescape_dn(name, expected):
    assert unescape_dn(name) == expected


def test_find_anchors_deduplicates(acme_root, make_anchor):
    """Test that the same certificate listed twice is returned once."""
    other = make_anchor("Acme Legacy Root")
    store = InMemoryTrustStore(roots=[acme_root, other, acme_root])

    result = find_anchors(store, ["*Acme*", "*Root CA*"])

    thumbprints = [a.thumbprint for a in result]
    assert len(thumbprints) == len(set(thumbprints))
    assert result == [acme_root, other]


def test_find_anchors_empty_store_raises():
    """Test NoMatchError on an empty store."""
    with pytest.raises(NoMatchError) as exc_info:
        find_anchors(InMemoryTrustStore(), ["*NoSuchCA*"])

    assert exc_info.value.patterns == ["*NoSuchCA*"]
    assert "*NoSuchCA*" in str(exc_info.value)


def test_find_anchors_no_patterns_raises(acme_store):
    """Test that an empty pattern list never matches everything."""
    with pytest.raises(NoMatchError):
        find_anchors(acme_store, ["", "  "])


def test_find_anchors_ignores_intermediate_scope(acme_store):
    """Test that intermediates are never returned as roots."""
    with pytest.raises(NoMatchError):
        find_anchors(acme_store, ["*Acme Issuing*"])


def test_split_pem_certificates(acme_root, acme_intermediate, pem_of):
    """Test splitting a PEM bundle with text between blocks."""
    data = b"# comment\n" + pem_of(acme_root) + b"\n\n" + pem_of(acme_intermediate)
    blocks = split_pem_certificates(data)
    assert len(blocks) == 2
    assert anchor_from_pem(blocks[1]) == acme_intermediate


def test_pem_file_store_splits_scopes(tmp_path, acme_root, acme_intermediate, pem_of):
    """Test that self-signed certificates form the root scope."""
    store_file = tmp_path / "store.pem"
    store_file.write_bytes(pem_of(acme_intermediate) + pem_of(acme_root))

    store = PemFileTrustStore(store_file)

    assert store.list_root_anchors() == [acme_root]
    assert store.list_intermediate_anchors() == [acme_intermediate]


def test_pem_file_store_skips_garbage(tmp_path, acme_root, pem_of):
    """Test that unparsable blocks are skipped."""
    store_file = tmp_path / "store.pem"
    store_file.write_bytes(
        b"-----BEGIN CERTIFICATE-----\nbm90IGEgY2VydA==\n-----END CERTIFICATE-----\n" + pem_of(acme_root)
    )
    assert PemFileTrustStore(store_file).list_root_anchors() == [acme_root]


def test_pem_file_store_missing_file(tmp_path):
    """Test that an unreadable store raises IOFailure with the path."""
    store = PemFileTrustStore(tmp_path / "missing.pem")
    with pytest.raises(IOFailure) as exc_info:
        store.list_root_anchors()
    assert "missing.pem" in exc_info.value.path


@patch("trustpatch.truststore.ssl.enum_certificates", create=True)
def test_system_store_windows(mock_enum, acme_root, acme_intermediate):
    """Test that Windows ROOT and CA stores map to the two scopes."""
    stores = {
        "ROOT": [(acme_root.raw, "x509_asn", True), (b"crl", "pkcs_7_asn", True)],
        "CA": [(acme_intermediate.raw, "x509_asn", True)],
    }
    mock_enum.side_effect = lambda name: stores[name]

    store = SystemTrustStore(platform="win32")

    assert store.list_root_anchors() == [acme_root]
    assert store.list_intermediate_anchors() == [acme_intermediate]


@patch("trustpatch.truststore.subprocess.run")
def test_system_store_macos(mock_run, acme_root, acme_intermediate, pem_of):
    """Test reading keychains through the security command."""
    mock_run.return_value = Mock(returncode=0, stdout=pem_of(acme_root) + pem_of(acme_intermediate), stderr=b"")

    store = SystemTrustStore(platform="darwin")

    assert store.list_root_anchors() == [acme_root]
    assert store.list_intermediate_anchors() == [acme_intermediate]
    assert mock_run.call_args[0][0] == ["security", "find-certificate", "-a", "-p"]


@patch("trustpatch.truststore.subprocess.run")
def test_system_store_macos_failure(mock_run):
    """Test that a failing security command raises IOFailure."""
    mock_run.return_value = Mock(returncode=1, stdout=b"", stderr=b"keychain locked")
    with pytest.raises(IOFailure) as exc_info:
        SystemTrustStore(platform="darwin").list_root_anchors()
    assert "keychain locked" in str(exc_info.value)


def test_system_store_linux_bundle(tmp_path, monkeypatch, acme_root, pem_of):
    """Test reading the first existing system CA bundle."""
    bundle = tmp_path / "ca-certificates.crt"
    bundle.write_bytes(pem_of(acme_root))
    monkeypatch.setattr("trustpatch.truststore.SYSTEM_CA_BUNDLES", [str(bundle)])
    monkeypatch.setattr(
        "trustpatch.truststore.ssl.get_default_verify_paths", lambda: Mock(cafile=None)
    )

    store = SystemTrustStore(platform="linux")

    assert store.list_root_anchors() == [acme_root]
    assert store.list_intermediate_anchors() == []


def test_system_store_linux_no_bundle(tmp_path, monkeypatch):
    """Test IOFailure when no system bundle exists."""
    monkeypatch.setattr("trustpatch.truststore.SYSTEM_CA_BUNDLES", [str(tmp_path / "nope.crt")])
    monkeypatch.setattr(
        "trustpatch.truststore.ssl.get_default_verify_paths", lambda: Mock(cafile=None)
    )
    with pytest.raises(IOFailure):
        SystemTrustStore(platform="linux").list_root_anchors()
