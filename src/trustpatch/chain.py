"""Intermediate discovery by issuer-name linkage."""

import logging
import re
from typing import Iterable, List

from trustpatch.exceptions import PartialChainWarning
from trustpatch.models import ChainSet, TrustAnchor
from trustpatch.truststore import TrustStore, unescape_dn

logger = logging.getLogger(__name__)

# Matches CN in both RFC 4514 ("CN=x,O=y") and Windows ("CN=x, O=y") subject strings
_CN_PATTERN = re.compile(r"(?:^|,)\s*CN=((?:\\.|[^,\\])+)", re.IGNORECASE)


def linkage_token(anchor: TrustAnchor) -> str:
    """
    Token used to link intermediates to a root.

    The Common Name of the subject if present, else the whole subject.
    """
    match = _CN_PATTERN.search(anchor.subject)
    if match:
        return unescape_dn(match.group(1)).strip()
    return unescape_dn(anchor.subject).strip()


def _issued_by_any(anchor: TrustAnchor, tokens: List[str]) -> bool:
    issuer = unescape_dn(anchor.issuer).lower()
    return any(token.lower() in issuer for token in tokens)


def resolve_intermediates(store: TrustStore, roots: List[TrustAnchor]) -> List[TrustAnchor]:
    """
    Find intermediate CAs that name one of ``roots`` as their issuer.

    This is a naming heuristic, not chain validation: an intermediate is
    included when its issuer string contains a root's linkage token
    (case-insensitive). Signatures are never checked, so a certificate
    with a look-alike issuer name would be picked up too.

    Args:
        store: Trust store whose intermediate scope is scanned
        roots: Matched root anchors

    Returns:
        Linked intermediates in discovery order, each thumbprint once and
        none that is already a root. Empty when nothing links.
    """
    tokens = [t for t in (linkage_token(root) for root in roots) if t]
    root_thumbprints = {root.thumbprint for root in roots}

    found: List[TrustAnchor] = []
    seen = set(root_thumbprints)
    for anchor in store.list_intermediate_anchors():
        if anchor.thumbprint in seen:
            continue
        if _issued_by_any(anchor, tokens):
            seen.add(anchor.thumbprint)
            found.append(anchor)
            logger.debug(f"Linked intermediate: {anchor.subject} (issuer: {anchor.issuer})")

    if not found:
        logger.warning(partial_chain_message(roots))
    else:
        logger.info(f"Found {len(found)} intermediate certificate(s)")
    return found


def partial_chain_message(roots: Iterable[TrustAnchor]) -> str:
    names = ", ".join(linkage_token(root) for root in roots)
    return f"{PartialChainWarning.__name__}: no intermediate certificates issued by {names}; bundle will contain roots only"


def _unique_sorted(anchors: Iterable[TrustAnchor]) -> List[TrustAnchor]:
    by_thumbprint = {}
    for anchor in anchors:
        by_thumbprint.setdefault(anchor.thumbprint, anchor)
    return [by_thumbprint[t] for t in sorted(by_thumbprint)]


def build_chain_set(roots: List[TrustAnchor], intermediates: List[TrustAnchor]) -> ChainSet:
    """
    Order anchors for a deterministic bundle.

    Roots sorted by thumbprint, then intermediates sorted by thumbprint.
    An anchor present in both lists is kept as a root only.
    """
    sorted_roots = _unique_sorted(roots)
    root_thumbprints = {root.thumbprint for root in sorted_roots}
    sorted_intermediates = _unique_sorted(a for a in intermediates if a.thumbprint not in root_thumbprints)
    return ChainSet(roots=sorted_roots, intermediates=sorted_intermediates)
