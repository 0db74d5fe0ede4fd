"""Apply, dry-run and rollback pipelines."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from trustpatch.bundle import count_pem_blocks, public_roots_pem, render_bundle, write_bundle
from trustpatch.chain import build_chain_set, partial_chain_message, resolve_intermediates
from trustpatch.config_patch import (
    apply_directive,
    list_backups,
    preview_directive,
    read_directive,
    restore,
)
from trustpatch.fileio import remove_file
from trustpatch.models import (
    AnchorSummary,
    BundleOptions,
    ChainSet,
    Mode,
    RunReport,
    StatusReport,
    TrustAnchor,
)
from trustpatch.truststore import TrustStore, find_anchors

logger = logging.getLogger(__name__)

# Variables understood by common TLS clients (OpenSSL, requests, curl, conda)
SESSION_VARIABLES = ["SSL_CERT_FILE", "REQUESTS_CA_BUNDLE", "CURL_CA_BUNDLE", "CONDA_SSL_VERIFY"]


def _summaries(anchors: List[TrustAnchor]) -> List[AnchorSummary]:
    return [AnchorSummary(subject=a.subject, issuer=a.issuer, thumbprint=a.thumbprint) for a in anchors]


def session_variables(bundle_path: Path) -> Dict[str, str]:
    return {name: str(bundle_path) for name in SESSION_VARIABLES}


def bundle_from_directive(value: Optional[str]) -> Optional[Path]:
    """The bundle a directive value points to, if it is a file path at all."""
    if not value or value.lower() in ("true", "false", "yes", "no", "null", "~"):
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else None


class Orchestrator:
    """
    Runs one invocation in one explicitly chosen mode.

    Rollback and status only touch files, so ``store`` may be None for them.

    The config file is always the last thing written, after the bundle, so
    a failure never leaves it pointing at a missing bundle.
    """

    def __init__(self, store: Optional[TrustStore], options: BundleOptions, backup_dir: Path):
        self.store = store
        self.options = options
        self.backup_dir = Path(backup_dir)

    def run(
        self,
        mode: Mode,
        config_path: Path,
        bundle_path: Optional[Path] = None,
        purge_generated: bool = False,
    ) -> RunReport:
        if mode == Mode.APPLY:
            return self.apply(self._require_bundle_path(bundle_path), config_path)
        if mode == Mode.DRY_RUN:
            return self.dry_run(self._require_bundle_path(bundle_path), config_path)
        if mode == Mode.ROLLBACK:
            return self.rollback(config_path, purge_generated=purge_generated, bundle_path=bundle_path)
        raise ValueError(f"Unknown mode: {mode}")

    @staticmethod
    def _require_bundle_path(bundle_path: Optional[Path]) -> Path:
        if bundle_path is None:
            raise ValueError("A bundle path is required for apply and dry-run")
        return Path(bundle_path)

    def build_chain(self, report: RunReport) -> ChainSet:
        """Discover roots and intermediates and record them on ``report``."""
        if self.store is None:
            raise ValueError("A trust store is required for apply and dry-run")
        roots = find_anchors(self.store, self.options.patterns)
        intermediates = resolve_intermediates(self.store, roots)
        if not intermediates:
            report.warnings.append(partial_chain_message(roots))

        chain = build_chain_set(roots, intermediates)
        report.roots = _summaries(chain.roots)
        report.intermediates = _summaries(chain.intermediates)
        return chain

    def _new_report(self, mode: Mode, config_path: Path, bundle_path: Optional[Path]) -> RunReport:
        return RunReport(
            mode=mode,
            timestamp=datetime.now(timezone.utc),
            config_path=Path(config_path),
            patterns=list(self.options.patterns),
            bundle_path=Path(bundle_path) if bundle_path else None,
        )

    def _extra_pem(self) -> Optional[bytes]:
        if self.options.include_public_roots:
            return public_roots_pem()
        return None

    def apply(self, bundle_path: Path, config_path: Path) -> RunReport:
        bundle_path = Path(bundle_path)
        report = self._new_report(Mode.APPLY, config_path, bundle_path)
        chain = self.build_chain(report)

        write_bundle(chain, bundle_path, extra_pem=self._extra_pem())
        report.bundle_written = True

        if self.options.apply_config:
            key = self.options.directive_key
            report.backup = apply_directive(report.config_path, key, str(bundle_path), self.backup_dir)
            report.directive = f"{key}: {bundle_path}"
        else:
            logger.info("Config update disabled, bundle written only")

        if self.options.set_session_vars:
            report.session_vars = session_variables(bundle_path)
        return report

    def dry_run(self, bundle_path: Path, config_path: Path) -> RunReport:
        """Run discovery and render everything, but write nothing."""
        bundle_path = Path(bundle_path)
        report = self._new_report(Mode.DRY_RUN, config_path, bundle_path)
        chain = self.build_chain(report)

        data = render_bundle(chain, extra_pem=self._extra_pem())
        logger.info(f"Would write {len(data)} bytes ({len(chain.anchors)} certificate(s)) to {bundle_path}")

        if self.options.apply_config:
            key = self.options.directive_key
            report.directive = f"{key}: {bundle_path}"
            report.diff = preview_directive(report.config_path, key, str(bundle_path))
            if not report.diff:
                logger.info(f"{report.config_path} already up to date")

        if self.options.set_session_vars:
            report.session_vars = session_variables(bundle_path)
        return report

    def rollback(
        self,
        config_path: Path,
        purge_generated: bool = False,
        bundle_path: Optional[Path] = None,
    ) -> RunReport:
        """
        Restore the newest backup of ``config_path``.

        With ``purge_generated`` the bundle is deleted too: ``bundle_path`` if
        given, else whatever the directive pointed to before restoring. A
        bundle still referenced by the restored config is kept.
        """
        report = self._new_report(Mode.ROLLBACK, config_path, bundle_path)
        key = self.options.directive_key
        pointed_to = read_directive(report.config_path, key)

        report.backup = restore(report.config_path, self.backup_dir)

        if purge_generated:
            target = report.bundle_path or bundle_from_directive(pointed_to)
            report.bundle_path = target
            still_used = read_directive(report.config_path, key)
            if target is None:
                logger.info("No generated bundle recorded, nothing to purge")
            elif bundle_from_directive(still_used) == target:
                logger.warning(f"Restored config still uses {target}, not deleting it")
                report.warnings.append(f"Kept {target}: restored config still references it")
            elif remove_file(target):
                report.purged.append(target)
                logger.info(f"Deleted generated bundle {target}")
            else:
                logger.info(f"Generated bundle {target} already gone")
        return report

    def status(self, config_path: Path, bundle_path: Optional[Path] = None) -> StatusReport:
        """Read-only snapshot of config, bundle and backups."""
        config_path = Path(config_path)
        key = self.options.directive_key
        value = read_directive(config_path, key)

        target = Path(bundle_path) if bundle_path else bundle_from_directive(value)
        bundle_exists = bool(target and target.is_file())
        return StatusReport(
            config_path=config_path,
            config_exists=config_path.exists(),
            directive_key=key,
            directive_value=value,
            bundle_path=target,
            bundle_exists=bundle_exists,
            bundle_blocks=count_pem_blocks(target) if bundle_exists else 0,
            backups=list_backups(config_path, self.backup_dir),
        )
