"""PEM bundle rendering and writing."""

import logging
from pathlib import Path
from typing import Optional

import certifi
from cryptography.hazmat.primitives import serialization

from trustpatch.chain import build_chain_set
from trustpatch.fileio import atomic_write_bytes, read_bytes
from trustpatch.models import ChainSet
from trustpatch.truststore import _load_cert, split_pem_certificates

logger = logging.getLogger(__name__)


def to_pem(der: bytes) -> bytes:
    """Encode DER certificate bytes as a single LF-terminated PEM block."""
    pem = _load_cert(der).public_bytes(serialization.Encoding.PEM)
    return _normalize_newlines(pem).rstrip(b"\n") + b"\n"


def _normalize_newlines(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n").replace(b"\r", b"\n")


def public_roots_pem() -> bytes:
    """The certifi CA bundle, normalised to one LF-terminated block per certificate."""
    data = read_bytes(Path(certifi.where()))
    return b"".join(_normalize_newlines(block) for block in split_pem_certificates(data))


def render_bundle(chain: ChainSet, extra_pem: Optional[bytes] = None) -> bytes:
    """
    Concatenate the chain into bundle bytes.

    Roots come first, then intermediates, each sorted by thumbprint, so an
    unchanged store always renders the same bytes. ``extra_pem`` is appended
    after the chain as-is (newline-normalised).
    """
    ordered = build_chain_set(chain.roots, chain.intermediates)
    data = b"".join(to_pem(anchor.raw) for anchor in ordered.anchors)
    if extra_pem:
        extra = _normalize_newlines(extra_pem)
        if not extra.endswith(b"\n"):
            extra += b"\n"
        data += extra
    return data


def write_bundle(chain: ChainSet, path: Path, extra_pem: Optional[bytes] = None) -> bytes:
    """
    Render ``chain`` and atomically replace ``path`` with it.

    Returns:
        The bytes written
    """
    data = render_bundle(chain, extra_pem=extra_pem)
    atomic_write_bytes(Path(path), data)
    logger.info(f"Wrote bundle with {len(chain.anchors)} certificate(s) to {path}")
    return data


def count_pem_blocks(path: Path) -> int:
    """Number of certificate blocks in an existing bundle file."""
    return len(split_pem_certificates(read_bytes(Path(path))))
