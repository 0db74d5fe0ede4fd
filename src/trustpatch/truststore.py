"""Trust store access and subject-pattern matching."""

import fnmatch
import hashlib
import logging
import os
import re
import ssl
import subprocess
import sys
import warnings
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.utils import CryptographyDeprecationWarning

from trustpatch.exceptions import IOFailure, NoMatchError
from trustpatch.fileio import read_bytes
from trustpatch.models import TrustAnchor

logger = logging.getLogger(__name__)

# Checked in order when the ssl module does not report a CA file.
SYSTEM_CA_BUNDLES = [
    "/etc/ssl/certs/ca-certificates.crt",  # Debian/Ubuntu/Alpine
    "/etc/pki/tls/certs/ca-bundle.crt",  # Fedora/RHEL
    "/etc/ssl/ca-bundle.pem",  # openSUSE
    "/etc/ssl/cert.pem",  # BSD/macOS
]

# Backslash followed by a hex pair or a single escaped character
_DN_ESCAPE = re.compile(r"\\([0-9A-Fa-f]{2}|.)")


class TrustStore(Protocol):
    """Read-only source of trust anchors with a root and an intermediate scope."""

    def list_root_anchors(self) -> List[TrustAnchor]:
        ...

    def list_intermediate_anchors(self) -> List[TrustAnchor]:
        ...


def _load_cert(cert_data: bytes, pem: bool = False) -> x509.Certificate:
    """Load a certificate, suppressing warnings about non-conforming serial numbers."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", CryptographyDeprecationWarning)
        if pem:
            return x509.load_pem_x509_certificate(cert_data)
        return x509.load_der_x509_certificate(cert_data)


def anchor_from_der(der: bytes) -> TrustAnchor:
    """Build a TrustAnchor from DER bytes."""
    cert = _load_cert(der)
    return TrustAnchor(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        thumbprint=hashlib.sha1(der).hexdigest().upper(),
        raw=der,
    )


def anchor_from_pem(pem: bytes) -> TrustAnchor:
    """Build a TrustAnchor from a single PEM block."""
    cert = _load_cert(pem, pem=True)
    return anchor_from_der(cert.public_bytes(serialization.Encoding.DER))


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Split PEM data into individual certificate blocks."""
    pattern = rb"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----"
    matches = re.findall(pattern, data, re.DOTALL)
    return [
        b"-----BEGIN CERTIFICATE-----" + match + b"-----END CERTIFICATE-----\n"
        for match in matches
    ]


def _anchors_from_pem_data(data: bytes, source: str) -> List[TrustAnchor]:
    anchors: List[TrustAnchor] = []
    for block in split_pem_certificates(data):
        try:
            anchors.append(anchor_from_pem(block))
        except ValueError as e:
            logger.debug(f"Skipping unparsable certificate in {source}: {e}")
    return anchors


def _split_by_self_signed(anchors: Iterable[TrustAnchor]) -> Tuple[List[TrustAnchor], List[TrustAnchor]]:
    roots = [a for a in anchors if a.is_self_signed]
    intermediates = [a for a in anchors if not a.is_self_signed]
    return roots, intermediates


class InMemoryTrustStore:
    """Fixed lists of anchors, used by tests and by callers that already hold certificates."""

    def __init__(self, roots: Optional[List[TrustAnchor]] = None, intermediates: Optional[List[TrustAnchor]] = None):
        self._roots = list(roots or [])
        self._intermediates = list(intermediates or [])

    def list_root_anchors(self) -> List[TrustAnchor]:
        return list(self._roots)

    def list_intermediate_anchors(self) -> List[TrustAnchor]:
        return list(self._intermediates)

    def __repr__(self) -> str:
        return f"InMemoryTrustStore({len(self._roots)} roots, {len(self._intermediates)} intermediates)"


class PemFileTrustStore:
    """
    A PEM bundle used as the trust store.

    Self-signed certificates form the root scope, everything else the
    intermediate scope.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._cache: Optional[Tuple[List[TrustAnchor], List[TrustAnchor]]] = None

    def _load(self) -> Tuple[List[TrustAnchor], List[TrustAnchor]]:
        if self._cache is None:
            anchors = _anchors_from_pem_data(read_bytes(self.path), str(self.path))
            logger.debug(f"Loaded {len(anchors)} certificate(s) from {self.path}")
            self._cache = _split_by_self_signed(anchors)
        return self._cache

    def list_root_anchors(self) -> List[TrustAnchor]:
        return list(self._load()[0])

    def list_intermediate_anchors(self) -> List[TrustAnchor]:
        return list(self._load()[1])

    def __repr__(self) -> str:
        return f"PemFileTrustStore({self.path})"


class SystemTrustStore:
    """
    The ambient per-user trust store of the running OS. Never written to.

    Windows exposes separate ROOT and CA system stores. macOS keychains and
    Linux CA bundles do not, so their certificates are split by
    self-signedness.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform
        self._cache: Optional[Tuple[List[TrustAnchor], List[TrustAnchor]]] = None

    def list_root_anchors(self) -> List[TrustAnchor]:
        if self.platform == "win32":
            return self._enum_windows_store("ROOT")
        return list(self._load_posix()[0])

    def list_intermediate_anchors(self) -> List[TrustAnchor]:
        if self.platform == "win32":
            return self._enum_windows_store("CA")
        return list(self._load_posix()[1])

    def _enum_windows_store(self, store_name: str) -> List[TrustAnchor]:
        try:
            entries = ssl.enum_certificates(store_name)  # type: ignore[attr-defined]
        except (AttributeError, OSError) as e:
            raise IOFailure(f"windows:{store_name}", f"cannot enumerate certificate store: {e}") from e

        anchors: List[TrustAnchor] = []
        for cert_bytes, encoding, _trust in entries:
            if encoding != "x509_asn":
                continue
            try:
                anchors.append(anchor_from_der(cert_bytes))
            except ValueError as e:
                logger.debug(f"Skipping unparsable certificate in {store_name} store: {e}")
        logger.debug(f"Loaded {len(anchors)} certificate(s) from Windows {store_name} store")
        return anchors

    def _load_posix(self) -> Tuple[List[TrustAnchor], List[TrustAnchor]]:
        if self._cache is None:
            if self.platform == "darwin":
                anchors = self._load_macos_keychains()
            else:
                anchors = self._load_ca_bundle()
            self._cache = _split_by_self_signed(anchors)
        return self._cache

    def _load_macos_keychains(self) -> List[TrustAnchor]:
        """Export all keychain certificates with the ``security`` command."""
        try:
            result = subprocess.run(
                ["security", "find-certificate", "-a", "-p"],
                capture_output=True,
                timeout=30,
            )
        except FileNotFoundError as e:
            raise IOFailure("security", "command not found (not on macOS?)") from e
        except subprocess.TimeoutExpired as e:
            raise IOFailure("security", "timed out reading keychains") from e

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip()
            raise IOFailure("security", f"find-certificate failed: {stderr}")

        anchors = _anchors_from_pem_data(result.stdout, "macOS keychains")
        logger.debug(f"Loaded {len(anchors)} certificate(s) from macOS keychains")
        return anchors

    def _load_ca_bundle(self) -> List[TrustAnchor]:
        candidates = []
        default_cafile = ssl.get_default_verify_paths().cafile
        if default_cafile:
            candidates.append(default_cafile)
        candidates.extend(SYSTEM_CA_BUNDLES)

        for candidate in candidates:
            if os.path.isfile(candidate):
                anchors = _anchors_from_pem_data(read_bytes(Path(candidate)), candidate)
                logger.debug(f"Loaded {len(anchors)} certificate(s) from {candidate}")
                return anchors

        raise IOFailure(", ".join(candidates), "no system CA bundle found")

    def __repr__(self) -> str:
        return f"SystemTrustStore({self.platform})"


def _unescape_pair(match: "re.Match[str]") -> str:
    escaped = match.group(1)
    if len(escaped) == 2:
        return chr(int(escaped, 16))
    return escaped


def unescape_dn(name: str) -> str:
    """
    Undo RFC 4514 escaping in a distinguished name string.

    ``CN=Acme\\, Inc.`` becomes ``CN=Acme, Inc.`` so names can be compared
    the way they are displayed. The result is for matching only; attribute
    boundaries are no longer unambiguous.
    """
    return _DN_ESCAPE.sub(_unescape_pair, name)


def subject_matches(subject: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive glob match of a subject, escaped or not, against any pattern."""
    candidates = {subject.lower(), unescape_dn(subject).lower()}
    return any(
        fnmatch.fnmatchcase(candidate, pattern.lower()) for pattern in patterns for candidate in candidates
    )


def find_anchors(store: TrustStore, patterns: List[str]) -> List[TrustAnchor]:
    """
    Return root anchors whose subject matches any pattern.

    Results keep discovery order and contain each thumbprint once.

    Args:
        store: Trust store to read
        patterns: Glob patterns such as ``*Zscaler Root CA*``

    Returns:
        Matched root anchors

    Raises:
        NoMatchError: No pattern given, or nothing matched
        IOFailure: Store could not be read
    """
    patterns = [p.strip() for p in patterns if p and p.strip()]
    if not patterns:
        raise NoMatchError([], store=repr(store))

    matched: List[TrustAnchor] = []
    seen = set()
    for anchor in store.list_root_anchors():
        if anchor.thumbprint in seen:
            continue
        if subject_matches(anchor.subject, patterns):
            seen.add(anchor.thumbprint)
            matched.append(anchor)
            logger.debug(f"Matched root: {anchor.subject} ({anchor.thumbprint})")

    if not matched:
        raise NoMatchError(patterns, store=repr(store))

    logger.info(f"Found {len(matched)} root certificate(s) matching {', '.join(patterns)}")
    return matched
