"""Data models for trust bundle construction and config patching."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class Mode(str, Enum):
    """Invocation mode. Exactly one per run."""

    APPLY = "apply"
    DRY_RUN = "dry-run"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class TrustAnchor:
    """A certificate read from the trust store. Identity is the thumbprint."""

    subject: str = field(compare=False)
    issuer: str = field(compare=False)
    thumbprint: str  # uppercase hex SHA-1 of the DER bytes
    raw: bytes = field(compare=False, repr=False)  # DER

    @property
    def is_self_signed(self) -> bool:
        return self.subject == self.issuer


@dataclass
class ChainSet:
    """Matched roots followed by the intermediates linked to them."""

    roots: List[TrustAnchor] = field(default_factory=list)
    intermediates: List[TrustAnchor] = field(default_factory=list)

    @property
    def anchors(self) -> List[TrustAnchor]:
        return self.roots + self.intermediates

    @property
    def thumbprints(self) -> List[str]:
        return [anchor.thumbprint for anchor in self.anchors]


@dataclass(frozen=True)
class BackupRef:
    """Pointer to the backup taken before a config mutation."""

    target: Path
    path: Optional[Path]  # None when the target did not exist before apply
    timestamp: str
    created: bool = False


@dataclass
class BundleOptions:
    """Options shared by every apply/dry-run invocation."""

    patterns: List[str]
    apply_config: bool = True
    set_session_vars: bool = False
    directive_key: str = "ssl_verify"
    include_public_roots: bool = False


@dataclass
class AnchorSummary:
    """Reportable view of a TrustAnchor."""

    subject: str
    issuer: str
    thumbprint: str


@dataclass
class RunReport:
    """Outcome of a single apply, dry-run or rollback invocation."""

    mode: Mode
    timestamp: datetime
    config_path: Path
    patterns: List[str] = field(default_factory=list)
    roots: List[AnchorSummary] = field(default_factory=list)
    intermediates: List[AnchorSummary] = field(default_factory=list)
    bundle_path: Optional[Path] = None
    bundle_written: bool = False
    directive: Optional[str] = None  # "key: value" as written (or previewed)
    backup: Optional[BackupRef] = None
    diff: str = ""
    session_vars: Dict[str, str] = field(default_factory=dict)
    purged: List[Path] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class StatusReport:
    """Read-only view of the current config and bundle state."""

    config_path: Path
    config_exists: bool
    directive_key: str
    directive_value: Optional[str]
    bundle_path: Optional[Path]
    bundle_exists: bool
    bundle_blocks: int
    backups: List[BackupRef] = field(default_factory=list)
