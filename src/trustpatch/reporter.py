"""Report generation (text and JSON)."""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from io import StringIO
from pathlib import Path
from typing import Any, Union

from rich.console import Console
from rich.markup import escape

from trustpatch.models import Mode, RunReport, StatusReport

logger = logging.getLogger(__name__)

# Global flag for colored output
_use_color = True


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def _colorize(text: str, style: str) -> str:
    if not _use_color:
        return text
    output = StringIO()
    console = Console(file=output, force_terminal=True, color_system="standard", width=1000, highlight=False)
    console.print(f"[{style}]{escape(text)}[/{style}]", end="")
    return output.getvalue()


def _format_diff(diff: str) -> list:
    lines = []
    for line in diff.splitlines():
        if line.startswith(("+++", "---")):
            lines.append(_colorize(line, "bold"))
        elif line.startswith("+"):
            lines.append(_colorize(line, "green"))
        elif line.startswith("-"):
            lines.append(_colorize(line, "red"))
        elif line.startswith("@@"):
            lines.append(_colorize(line, "cyan"))
        else:
            lines.append(line)
    return lines


def generate_text_report(report: RunReport) -> str:
    """
    Generate human-readable text report.

    Args:
        report: RunReport to render

    Returns:
        Formatted text report
    """
    titles = {
        Mode.APPLY: "Trust Bundle Apply",
        Mode.DRY_RUN: "Trust Bundle Dry Run (no changes written)",
        Mode.ROLLBACK: "Config Rollback",
    }
    lines = []
    lines.append("=" * 70)
    lines.append(titles[report.mode])
    lines.append("=" * 70)
    lines.append(f"Timestamp: {report.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    lines.append(f"Config: {report.config_path}")
    if report.patterns and report.mode != Mode.ROLLBACK:
        lines.append(f"Patterns: {', '.join(report.patterns)}")
    lines.append("")

    if report.roots:
        lines.append(f"Root Certificates ({len(report.roots)}):")
        for anchor in report.roots:
            lines.append(f"  - {anchor.subject}")
            lines.append(f"    Thumbprint: {anchor.thumbprint}")
        lines.append("")

    if report.mode != Mode.ROLLBACK:
        lines.append(f"Intermediate Certificates ({len(report.intermediates)}):")
        for anchor in report.intermediates:
            lines.append(f"  - {anchor.subject}")
            lines.append(f"    Issuer: {anchor.issuer}")
            lines.append(f"    Thumbprint: {anchor.thumbprint}")
        if not report.intermediates:
            lines.append("  (none, roots only)")
        lines.append("")

    if report.bundle_path:
        if report.mode == Mode.DRY_RUN:
            lines.append(f"Bundle: {report.bundle_path} (would be written)")
        elif report.bundle_written:
            lines.append(f"Bundle: {report.bundle_path} " + _colorize("written", "green"))
        elif report.mode == Mode.ROLLBACK:
            lines.append(f"Bundle: {report.bundle_path}")

    if report.directive:
        verb = "Would set" if report.mode == Mode.DRY_RUN else "Set"
        lines.append(f"{verb}: {report.directive}")

    if report.backup:
        if report.backup.created:
            lines.append(f"Backup: none ({report.backup.target} was created)")
        elif report.mode == Mode.ROLLBACK:
            lines.append(f"Restored from: {report.backup.path}")
        else:
            lines.append(f"Backup: {report.backup.path}")

    for path in report.purged:
        lines.append(f"Deleted: {path}")

    if report.mode == Mode.DRY_RUN and report.directive:
        lines.append("")
        if report.diff:
            lines.append("Config Diff:")
            lines.extend(_format_diff(report.diff))
        else:
            lines.append("Config Diff: no changes")

    if report.session_vars:
        lines.append("")
        lines.append("Session Variables:")
        for name, value in report.session_vars.items():
            lines.append(f"  {name}={value}")

    if report.warnings:
        lines.append("")
        lines.append(_colorize("Warnings:", "yellow"))
        for warning in report.warnings:
            lines.append(f"  ⚠ {warning}")

    lines.append("=" * 70)
    return "\n".join(lines)


def generate_status_report(status: StatusReport) -> str:
    """Generate human-readable status report."""
    def yes_no(flag: bool) -> str:
        return _colorize("yes", "green") if flag else _colorize("no", "red")

    lines = []
    lines.append("=" * 70)
    lines.append("Trust Bundle Status")
    lines.append("=" * 70)
    lines.append(f"Config: {status.config_path} (exists: {yes_no(status.config_exists)})")
    if status.directive_value is None:
        lines.append(f"Directive: {status.directive_key} not set")
    else:
        lines.append(f"Directive: {status.directive_key}: {status.directive_value}")
    if status.bundle_path:
        lines.append(f"Bundle: {status.bundle_path} (exists: {yes_no(status.bundle_exists)})")
        if status.bundle_exists:
            lines.append(f"Certificates in bundle: {status.bundle_blocks}")
    lines.append(f"Backups: {len(status.backups)}")
    if status.backups:
        lines.append(f"Newest backup: {status.backups[-1].path}")
    lines.append("=" * 70)
    return "\n".join(lines)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Type {type(obj)} not serializable")


def generate_json_report(report: Union[RunReport, StatusReport]) -> str:
    """
    Generate JSON report.

    Args:
        report: RunReport or StatusReport

    Returns:
        JSON string
    """
    data = asdict(report)
    return json.dumps(data, indent=2, default=_serialize)
