"""Two-way sync between a local directory of val files and the remote store."""

from .engine import SyncEngine, SyncResult, always_confirm, never_confirm
from .lockfile import LOCK_FILE_NAME, LockEntry, LockFile, val_filename
from .workspace import ENV_FILE_NAME, SCRIPTS_DIR_NAME, SyncWorkspace

__all__ = [
    "SyncEngine",
    "SyncResult",
    "always_confirm",
    "never_confirm",
    "LOCK_FILE_NAME",
    "LockEntry",
    "LockFile",
    "val_filename",
    "ENV_FILE_NAME",
    "SCRIPTS_DIR_NAME",
    "SyncWorkspace",
]
