"""
Reversible patching of a single directive in a YAML-style config file.

Only the first ``key:`` line (plus any deeper-indented continuation lines)
is owned. Every other line is passed through unchanged, including its line
ending. Existing files are copied to a timestamped backup before each write.
"""

import difflib
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote

from trustpatch.exceptions import IOFailure, NoBackupError
from trustpatch.fileio import atomic_write_bytes, read_bytes, remove_file
from trustpatch.models import BackupRef

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
BACKUP_SUFFIX = ".bak"
ENCODING = "utf-8"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _split_lines(text: str) -> List[str]:
    """Split on LF only, keeping endings, so CRLF and odd separators survive."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


def _indent_width(line: str) -> int:
    stripped = line.lstrip(" \t")
    return len(line) - len(stripped)


def _parse_value(raw: str) -> str:
    value = raw.strip()
    value = re.sub(r"\s+#.*$", "", value)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value


class ConfigDocument:
    """
    A config file as an ordered list of raw lines with one owned directive.

    The directive span is located on parse; ``set`` and ``remove`` edit it
    in place and ``render`` joins everything back together.
    """

    def __init__(self, lines: List[str], key: str):
        self.lines = list(lines)
        self.key = key
        self._pattern = re.compile(rf"^(?P<indent>\ufeff?[ \t]*){re.escape(key)}[ \t]*:(?P<value>.*?)\r?\n?$")

    @classmethod
    def parse(cls, text: str, key: str) -> "ConfigDocument":
        return cls(_split_lines(text), key)

    def render(self) -> str:
        return "".join(self.lines)

    def _span(self) -> Optional[Tuple[int, int]]:
        """Line range [start, end) of the first directive occurrence."""
        for start, line in enumerate(self.lines):
            if self._pattern.match(line):
                base = _indent_width(line.lstrip("\ufeff"))
                end = start + 1
                while end < len(self.lines):
                    following = self.lines[end]
                    if not following.strip() or _indent_width(following) <= base:
                        break
                    end += 1
                return start, end
        return None

    def get(self) -> Optional[str]:
        span = self._span()
        if span is None:
            return None
        match = self._pattern.match(self.lines[span[0]])
        return _parse_value(match.group("value"))

    def _newline(self) -> str:
        if self.lines and self.lines[0].endswith("\r\n"):
            return "\r\n"
        return "\n"

    def set(self, value: str) -> None:
        directive = f"{self.key}: {value}"
        span = self._span()
        if span is not None:
            start, end = span
            indent = self._pattern.match(self.lines[start]).group("indent")
            ending = _line_ending(self.lines[end - 1])
            self.lines[start:end] = [indent + directive + ending]
            return

        newline = self._newline()
        if self.lines and not self.lines[-1].endswith("\n"):
            self.lines[-1] += newline
        self.lines.append(directive + newline)

    def remove(self) -> bool:
        span = self._span()
        if span is None:
            return False
        start, end = span
        prefix = self._pattern.match(self.lines[start]).group("indent")
        del self.lines[start:end]
        # keep a leading BOM when the directive was the first line
        if prefix.startswith("\ufeff") and self.lines:
            self.lines[0] = "\ufeff" + self.lines[0]
        return True


def _decode(data: bytes) -> str:
    return data.decode(ENCODING, errors="surrogateescape")


def _encode(text: str) -> bytes:
    return text.encode(ENCODING, errors="surrogateescape")


def sanitize_target(path: Path) -> str:
    """Flatten a target path into a backup file name prefix that cannot collide."""
    return quote(os.path.abspath(os.path.expanduser(str(path))), safe="")


def _backup_pattern(path: Path) -> "re.Pattern[str]":
    return re.compile(rf"^{re.escape(sanitize_target(path))}-(\d{{8}}-\d{{6}})(?:-(\d+))?{re.escape(BACKUP_SUFFIX)}$")


def list_backups(path: Path, backup_dir: Path) -> List[BackupRef]:
    """Backups of ``path`` in ``backup_dir``, oldest first."""
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        return []

    pattern = _backup_pattern(path)
    found = []
    try:
        for entry in backup_dir.iterdir():
            match = pattern.match(entry.name)
            if match and entry.is_file():
                found.append((match.group(1), int(match.group(2) or 0), entry))
    except OSError as e:
        raise IOFailure(backup_dir, f"cannot list backups: {e.strerror or e}") from e

    found.sort(key=lambda item: (item[0], item[1]))
    return [BackupRef(target=Path(path), path=entry, timestamp=ts) for ts, _, entry in found]


def create_backup(path: Path, backup_dir: Path) -> BackupRef:
    """Copy the current bytes of ``path`` to a new, never-overwritten backup file."""
    path = Path(path)
    backup_dir = Path(backup_dir)
    data = read_bytes(path)
    timestamp = _utcnow().strftime(TIMESTAMP_FORMAT)
    prefix = f"{sanitize_target(path)}-{timestamp}"

    backup_path = backup_dir / f"{prefix}{BACKUP_SUFFIX}"
    counter = 1
    while backup_path.exists():
        backup_path = backup_dir / f"{prefix}-{counter}{BACKUP_SUFFIX}"
        counter += 1

    atomic_write_bytes(backup_path, data)
    logger.info(f"Backed up {path} to {backup_path}")
    return BackupRef(target=path, path=backup_path, timestamp=timestamp)


def read_directive(path: Path, key: str) -> Optional[str]:
    """Current value of ``key`` in ``path``, or None if the file or directive is missing."""
    path = Path(path)
    if not path.exists():
        return None
    return ConfigDocument.parse(_decode(read_bytes(path)), key).get()


def _patched_text(path: Path, key: str, value: str) -> Tuple[Optional[str], str]:
    """(current text or None if missing, patched text)."""
    if not path.exists():
        return None, f"{key}: {value}\n"
    current = _decode(read_bytes(path))
    document = ConfigDocument.parse(current, key)
    document.set(value)
    return current, document.render()


def apply_directive(path: Path, key: str, value: str, backup_dir: Path) -> BackupRef:
    """
    Set ``key: value`` in ``path``.

    A missing file is created with only the directive. Otherwise the first
    existing directive is replaced, or the directive is appended. Existing
    files are backed up before being rewritten, even when the content does
    not change.

    Returns:
        Reference to the backup (``created=True`` when the file was new)
    """
    path = Path(path)
    value = str(value)
    current, patched = _patched_text(path, key, value)

    if current is None:
        atomic_write_bytes(path, _encode(patched))
        logger.info(f"Created {path} with {key}: {value}")
        return BackupRef(target=path, path=None, timestamp=_utcnow().strftime(TIMESTAMP_FORMAT), created=True)

    backup = create_backup(path, backup_dir)
    atomic_write_bytes(path, _encode(patched))
    if patched == current:
        logger.info(f"{path} already has {key}: {value}")
    else:
        logger.info(f"Set {key}: {value} in {path}")
    return backup


def remove_directive(path: Path, key: str, backup_dir: Path) -> Optional[BackupRef]:
    """
    Remove the owned directive from ``path``.

    Returns:
        The backup taken, or None when there was nothing to remove
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"{path} does not exist, nothing to remove")
        return None

    document = ConfigDocument.parse(_decode(read_bytes(path)), key)
    if not document.remove():
        logger.debug(f"{key} not present in {path}")
        return None

    backup = create_backup(path, backup_dir)
    atomic_write_bytes(path, _encode(document.render()))
    logger.info(f"Removed {key} from {path}")
    return backup


def restore(path: Path, backup_dir: Path, backup: Optional[BackupRef] = None) -> BackupRef:
    """
    Put back a backup of ``path`` byte for byte.

    Without an explicit ``backup`` the newest one for ``path`` is used. A
    ``created`` reference deletes the file, since it did not exist before.

    Raises:
        NoBackupError: No backup exists for ``path``
    """
    path = Path(path)
    if backup is None:
        backups = list_backups(path, backup_dir)
        if not backups:
            raise NoBackupError(path, Path(backup_dir))
        backup = backups[-1]

    if backup.created:
        remove_file(path)
        logger.info(f"Removed {path} (it did not exist before apply)")
        return backup

    if backup.path is None or not backup.path.is_file():
        raise NoBackupError(path, Path(backup_dir))

    atomic_write_bytes(path, read_bytes(backup.path))
    logger.info(f"Restored {path} from {backup.path}")
    return backup


def purge_backups(path: Path, backup_dir: Path, keep: int = 0) -> List[Path]:
    """Delete all but the newest ``keep`` backups of ``path``. Returns deleted files."""
    backups = list_backups(path, backup_dir)
    doomed = backups[: max(len(backups) - max(keep, 0), 0)]
    removed = []
    for ref in doomed:
        if remove_file(ref.path):
            removed.append(ref.path)
            logger.debug(f"Deleted backup {ref.path}")
    logger.info(f"Purged {len(removed)} backup(s) of {path}")
    return removed


def preview_directive(path: Path, key: str, value: str) -> str:
    """Unified diff of what ``apply_directive`` would change. Writes nothing."""
    path = Path(path)
    current, patched = _patched_text(path, key, str(value))
    before = _split_lines(current) if current is not None else []
    after = _split_lines(patched)
    diff = difflib.unified_diff(
        before,
        after,
        fromfile=str(path) if current is not None else "/dev/null",
        tofile=str(path),
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in diff)
