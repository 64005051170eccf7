"""Lock file tracking which local files map to which remote vals.

The lock file (``vt.lock``) is a JSON object keyed by filename::

    {
      "hello.tsx": {"id": "...", "name": "hello", "hash": "<sha256 hex>"}
    }

It records the state of the last successful sync and is rewritten in full
at the end of every sync.
"""

import json
import logging
import os
import stat
import tempfile
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import VtLockFileError, VtLockFileNotFoundError
from ..utils import VAL_EXTENSION

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "vt.lock"


def val_filename(name: str, extension: str = VAL_EXTENSION) -> str:
    """Return the local filename for a val name."""
    return f"{name}.{extension}"


@dataclass
class LockEntry:
    """Remote identity and last synced content hash of one local file."""

    id: str
    """Remote val ID"""

    name: str
    """Val name at the time of the last sync"""

    hash: str
    """SHA-256 hex digest of the last synced content"""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "LockEntry":
        try:
            return cls(id=str(data["id"]), name=str(data["name"]), hash=str(data["hash"]))
        except (KeyError, TypeError) as e:
            raise VtLockFileError(f"Invalid lock entry {data!r}: missing {e}") from e


class LockFile:
    """In-memory view of ``vt.lock``: filename -> LockEntry."""

    def __init__(self, entries: Optional[dict[str, LockEntry]] = None):
        self.entries: dict[str, LockEntry] = dict(entries or {})

    def __contains__(self, filename: object) -> bool:
        return filename in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LockFile):
            return NotImplemented
        return self.entries == other.entries

    def get(self, filename: str) -> Optional[LockEntry]:
        return self.entries.get(filename)

    def set(self, filename: str, entry: LockEntry) -> None:
        self.entries[filename] = entry

    def remove(self, filename: str) -> Optional[LockEntry]:
        return self.entries.pop(filename, None)

    def find_by_id(self, val_id: str) -> Optional[tuple[str, LockEntry]]:
        """Find the entry referencing a remote val.

        Returns:
            Tuple of (filename, entry), or None
        """
        for filename, entry in self.entries.items():
            if entry.id == val_id:
                return filename, entry
        return None

    def rename(self, old_filename: str, new_filename: str, new_name: str) -> LockEntry:
        """Move an entry to a new filename key and update its name."""
        entry = self.entries.pop(old_filename)
        entry.name = new_name
        self.entries[new_filename] = entry
        return entry

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            filename: self.entries[filename].to_dict()
            for filename in sorted(self.entries)
        }

    @classmethod
    def from_dict(cls, data: object) -> "LockFile":
        if not isinstance(data, dict):
            raise VtLockFileError("Lock file must contain a JSON object")
        return cls(
            {
                str(filename): LockEntry.from_dict(entry)
                for filename, entry in data.items()
            }
        )

    @classmethod
    def load(cls, path: Path) -> "LockFile":
        """Read a lock file.

        Args:
            path: Path to ``vt.lock``

        Raises:
            VtLockFileNotFoundError: If the file does not exist
            VtLockFileError: If the file is not valid JSON or has bad entries
        """
        if not path.exists():
            raise VtLockFileNotFoundError(str(path))

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise VtLockFileError(f"Malformed lock file {path}: {e}") from e

        lock = cls.from_dict(data)
        logger.debug(f"Loaded {len(lock)} lock entries from {path}")
        return lock

    def save(self, path: Path) -> None:
        """Write the lock file, replacing the previous content.

        The JSON is written to a temporary file in the same directory and
        moved into place, so a crash never leaves a truncated lock file.
        An existing file keeps its permissions; a new one gets 0644.
        """
        mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else 0o644
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
            # mkstemp creates the file as 0600
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {len(self)} lock entries to {path}")
