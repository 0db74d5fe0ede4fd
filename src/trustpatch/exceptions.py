"""Exceptions raised by trustpatch."""

from pathlib import Path
from typing import List, Optional


class TrustPatchError(Exception):
    """Base class for fatal trustpatch errors."""

    exit_code = 1

    @property
    def kind(self) -> str:
        return type(self).__name__


class NoMatchError(TrustPatchError):
    """No trust anchor in the root store matched the supplied patterns."""

    exit_code = 2

    def __init__(self, patterns: List[str], store: Optional[str] = None):
        self.patterns = list(patterns)
        self.store = store
        where = f" in {store}" if store else ""
        if self.patterns:
            message = f"No trusted root certificate{where} matched patterns: {', '.join(self.patterns)}"
        else:
            message = "No match patterns supplied"
        super().__init__(message)


class NoBackupError(TrustPatchError):
    """Rollback was requested but no backup exists for the target."""

    exit_code = 3

    def __init__(self, target: Path, backup_dir: Path):
        self.target = Path(target)
        self.backup_dir = Path(backup_dir)
        super().__init__(f"No backup of {self.target} found in {self.backup_dir}")


class IOFailure(TrustPatchError):
    """A store could not be read or a file could not be written."""

    exit_code = 4

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class PartialChainWarning(UserWarning):
    """No intermediate certificates were linked to the matched roots."""
