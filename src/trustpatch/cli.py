"""CLI entry point using Typer."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from trustpatch.config_patch import list_backups, purge_backups
from trustpatch.exceptions import TrustPatchError
from trustpatch.models import BundleOptions, Mode, RunReport
from trustpatch.orchestrator import Orchestrator
from trustpatch.reporter import (
    generate_json_report,
    generate_status_report,
    generate_text_report,
    set_color_output,
)
from trustpatch.truststore import PemFileTrustStore, SystemTrustStore, TrustStore

app = typer.Typer(help="Build a trust bundle from the OS trust store and point tool configs at it")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = ".condarc"
DEFAULT_BACKUP_DIR = Path(".trustpatch") / "backups"


def _config_path(config_path: Optional[Path]) -> Path:
    path = config_path if config_path else Path.home() / DEFAULT_CONFIG_NAME
    return path.expanduser().absolute()


def _backup_dir(backup_dir: Optional[Path]) -> Path:
    path = backup_dir if backup_dir else Path.home() / DEFAULT_BACKUP_DIR
    return path.expanduser().absolute()


def _parse_patterns(patterns: Optional[str]) -> List[str]:
    if not patterns:
        return []
    return [p.strip() for p in patterns.split(",") if p.strip()]


def _open_store(store_file: Optional[Path]) -> TrustStore:
    if store_file:
        return PemFileTrustStore(store_file.expanduser())
    return SystemTrustStore()


def _set_verbose(verbose: bool) -> None:
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("trustpatch").setLevel(logging.DEBUG)


def _fail(error: TrustPatchError) -> None:
    typer.echo(f"{error.kind}: {error}", err=True)
    sys.exit(error.exit_code)


def _export_lines(report: RunReport) -> List[str]:
    if sys.platform == "win32":
        return [f'$env:{name} = "{value}"' for name, value in report.session_vars.items()]
    return [f'export {name}="{value}"' for name, value in report.session_vars.items()]


def _emit(report: RunReport, json_output: bool, to_stderr: bool = False) -> None:
    text = generate_json_report(report) if json_output else generate_text_report(report)
    typer.echo(text, err=to_stderr)


@app.command()
def apply(
    patterns: Optional[str] = typer.Option(
        None,
        "--patterns",
        envvar="TRUSTPATCH_PATTERNS",
        help="Comma-separated subject globs of the root certificates to trust, e.g. '*Zscaler Root CA*'",
    ),
    bundle_path: Path = typer.Option(..., "--bundle-path", help="Where to write the PEM bundle"),
    config_path: Optional[Path] = typer.Option(
        None, "--config-path", envvar="TRUSTPATCH_CONFIG_PATH", help="Config file to patch (default: ~/.condarc)"
    ),
    backup_dir: Optional[Path] = typer.Option(
        None, "--backup-dir", envvar="TRUSTPATCH_BACKUP_DIR", help="Backup directory (default: ~/.trustpatch/backups)"
    ),
    key: str = typer.Option("ssl_verify", "--key", help="Config directive that points at the bundle"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing anything"),
    no_config: bool = typer.Option(False, "--no-config", help="Only write the bundle, leave the config alone"),
    print_env: bool = typer.Option(
        False, "--print-env", help="Print shell export lines for SSL_CERT_FILE and friends (report goes to stderr)"
    ),
    include_public_roots: bool = typer.Option(
        False, "--include-public-roots", help="Append the public CA bundle (certifi) after the matched chain"
    ),
    store_file: Optional[Path] = typer.Option(
        None, "--store-file", help="Read certificates from this PEM file instead of the OS trust store"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Build the bundle from matching trust anchors and point the config at it.
    """
    _set_verbose(verbose)
    set_color_output(color and not json_output)

    options = BundleOptions(
        patterns=_parse_patterns(patterns),
        apply_config=not no_config,
        set_session_vars=print_env,
        directive_key=key,
        include_public_roots=include_public_roots,
    )
    orchestrator = Orchestrator(_open_store(store_file), options, _backup_dir(backup_dir))
    mode = Mode.DRY_RUN if dry_run else Mode.APPLY

    try:
        report = orchestrator.run(mode, _config_path(config_path), bundle_path.expanduser().absolute())
    except TrustPatchError as e:
        logger.debug(f"{mode.value} failed for patterns {options.patterns}", exc_info=True)
        _fail(e)
        return

    _emit(report, json_output, to_stderr=print_env)
    if print_env:
        for line in _export_lines(report):
            typer.echo(line)


@app.command()
def rollback(
    config_path: Optional[Path] = typer.Option(
        None, "--config-path", envvar="TRUSTPATCH_CONFIG_PATH", help="Config file to restore (default: ~/.condarc)"
    ),
    backup_dir: Optional[Path] = typer.Option(
        None, "--backup-dir", envvar="TRUSTPATCH_BACKUP_DIR", help="Backup directory (default: ~/.trustpatch/backups)"
    ),
    purge_generated: bool = typer.Option(
        False, "--purge-generated", help="Also delete the bundle the config pointed at"
    ),
    bundle_path: Optional[Path] = typer.Option(
        None, "--bundle-path", help="Bundle to delete with --purge-generated (default: read from the config)"
    ),
    key: str = typer.Option("ssl_verify", "--key", help="Config directive that points at the bundle"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Restore the config from its newest backup.
    """
    _set_verbose(verbose)
    set_color_output(color and not json_output)

    options = BundleOptions(patterns=[], directive_key=key)
    orchestrator = Orchestrator(None, options, _backup_dir(backup_dir))
    explicit_bundle = bundle_path.expanduser().absolute() if bundle_path else None

    try:
        report = orchestrator.run(
            Mode.ROLLBACK, _config_path(config_path), bundle_path=explicit_bundle, purge_generated=purge_generated
        )
    except TrustPatchError as e:
        _fail(e)
        return

    _emit(report, json_output)


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(
        None, "--config-path", envvar="TRUSTPATCH_CONFIG_PATH", help="Config file to inspect (default: ~/.condarc)"
    ),
    bundle_path: Optional[Path] = typer.Option(
        None, "--bundle-path", help="Bundle to inspect (default: read from the config)"
    ),
    backup_dir: Optional[Path] = typer.Option(
        None, "--backup-dir", envvar="TRUSTPATCH_BACKUP_DIR", help="Backup directory (default: ~/.trustpatch/backups)"
    ),
    key: str = typer.Option("ssl_verify", "--key", help="Config directive that points at the bundle"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
):
    """
    Show which bundle the config points at and which backups exist.
    """
    set_color_output(color and not json_output)

    orchestrator = Orchestrator(None, BundleOptions(patterns=[], directive_key=key), _backup_dir(backup_dir))
    explicit_bundle = bundle_path.expanduser().absolute() if bundle_path else None

    try:
        result = orchestrator.status(_config_path(config_path), explicit_bundle)
    except TrustPatchError as e:
        _fail(e)
        return

    typer.echo(generate_json_report(result) if json_output else generate_status_report(result))


@app.command()
def backups(
    config_path: Optional[Path] = typer.Option(
        None, "--config-path", envvar="TRUSTPATCH_CONFIG_PATH", help="Config file whose backups to list (default: ~/.condarc)"
    ),
    backup_dir: Optional[Path] = typer.Option(
        None, "--backup-dir", envvar="TRUSTPATCH_BACKUP_DIR", help="Backup directory (default: ~/.trustpatch/backups)"
    ),
    purge: bool = typer.Option(False, "--purge", help="Delete old backups"),
    keep: int = typer.Option(0, "--keep", min=0, help="With --purge, number of newest backups to keep"),
):
    """
    List (or purge) backups of a config file.
    """
    target = _config_path(config_path)
    directory = _backup_dir(backup_dir)

    try:
        if purge:
            removed = purge_backups(target, directory, keep=keep)
            typer.echo(f"Deleted {len(removed)} backup(s) of {target}")
            return

        refs = list_backups(target, directory)
    except TrustPatchError as e:
        _fail(e)
        return

    if not refs:
        typer.echo(f"No backups of {target} in {directory}")
        return
    for ref in refs:
        typer.echo(f"{ref.timestamp}  {ref.path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
