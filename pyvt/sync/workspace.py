"""Layout of a local sync workspace."""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..utils import VAL_EXTENSION
from .lockfile import LOCK_FILE_NAME, LockFile

logger = logging.getLogger(__name__)

SCRIPTS_DIR_NAME = "vals"
ENV_FILE_NAME = ".env"


@dataclass
class SyncWorkspace:
    """Paths used by a sync.

    A workspace is a directory holding ``vt.lock``, the ``.env`` file and a
    ``vals/`` directory with one ``<name>.tsx`` file per val.
    """

    scripts_dir: Path
    lock_path: Path
    env_path: Path
    extension: str = VAL_EXTENSION

    @classmethod
    def from_root(cls, root: Path) -> "SyncWorkspace":
        """Build the standard layout below ``root``."""
        return cls(
            scripts_dir=root / SCRIPTS_DIR_NAME,
            lock_path=root / LOCK_FILE_NAME,
            env_path=root / ENV_FILE_NAME,
        )

    def local_files(self) -> list[str]:
        """Return the names of the val files in the scripts directory, sorted."""
        if not self.scripts_dir.is_dir():
            return []
        suffix = f".{self.extension}"
        return sorted(
            p.name
            for p in self.scripts_dir.iterdir()
            if p.is_file() and p.name.endswith(suffix)
        )

    def file_path(self, filename: str) -> Path:
        return self.scripts_dir / filename

    def initialize(self) -> None:
        """Create the scripts directory and an empty lock file.

        Raises:
            FileExistsError: If the workspace already has a lock file
        """
        if self.lock_path.exists():
            raise FileExistsError(f"Lock file already exists: {self.lock_path}")
        self.scripts_dir.mkdir(parents=True, exist_ok=True)
        LockFile().save(self.lock_path)
        logger.debug(f"Initialized sync workspace at {self.lock_path.parent}")
