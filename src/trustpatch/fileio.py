"""Atomic file writes shared by the bundle writer and the config patcher."""

import logging
import os
import tempfile
from pathlib import Path

from trustpatch.exceptions import IOFailure

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    Replace ``path`` with ``data`` so readers see either the old or the new file.

    The temp file lives in the destination directory so the final
    ``os.replace`` stays on one filesystem.

    Raises:
        IOFailure: directory cannot be created or the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure(path.parent, f"cannot create directory: {e.strerror or e}") from e

    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            try:
                os.chmod(tmp_name, path.stat().st_mode & 0o777)
            except OSError:
                logger.debug(f"Could not copy permissions of {path} to temp file")
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise IOFailure(path, f"write failed: {e.strerror or e}") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.debug(f"Wrote {len(data)} bytes to {path}")


def read_bytes(path: Path) -> bytes:
    """Read a file, mapping OS errors to IOFailure."""
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise IOFailure(path, f"read failed: {e.strerror or e}") from e


def remove_file(path: Path) -> bool:
    """Delete ``path`` if present. Returns True when a file was removed."""
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IOFailure(path, f"delete failed: {e.strerror or e}") from e
    return True
