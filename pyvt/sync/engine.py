"""Two-way sync between a local workspace and the user's remote vals."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..api import VtClient
from ..exceptions import VtNotFoundError, VtSyncError
from ..output import OutputFormatter
from ..utils import format_env_file, hash_content, is_env_key, parse_env_file
from .lockfile import LockEntry, LockFile, val_filename
from .workspace import SyncWorkspace

logger = logging.getLogger(__name__)

ConfirmFunc = Callable[[str], bool]


def always_confirm(prompt: str) -> bool:
    return True


def never_confirm(prompt: str) -> bool:
    return False


def read_val_file(path: Path) -> str:
    """Read a val file as UTF-8 without newline translation.

    Raises:
        VtSyncError: If the file cannot be read or is not valid UTF-8
    """
    try:
        return path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as e:
        raise VtSyncError(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise VtSyncError(f"Cannot read {path}: {e}") from e


def write_val_file(path: Path, code: str) -> None:
    """Write val code byte for byte, keeping its line endings.

    Raises:
        VtSyncError: If the file cannot be written
    """
    try:
        path.write_bytes(code.encode("utf-8"))
    except OSError as e:
        raise VtSyncError(f"Cannot write {path}: {e}") from e


@dataclass
class SyncResult:
    """Outcome of a sync run."""

    lock: LockFile
    created_remote: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    deleted_remote: list[str] = field(default_factory=list)
    created_local: list[str] = field(default_factory=list)
    updated_local: list[str] = field(default_factory=list)
    renamed_local: list[tuple[str, str]] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    """Lock entries dropped because their val no longer exists remotely"""
    skipped: list[str] = field(default_factory=list)
    env_updated: bool = False

    @property
    def remote_mutations(self) -> int:
        return len(self.created_remote) + len(self.pushed) + len(self.deleted_remote)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.remote_mutations
            or self.created_local
            or self.updated_local
            or self.renamed_local
            or self.pruned
            or self.env_updated
        )

    def to_dict(self) -> dict:
        return {
            "created_remote": self.created_remote,
            "pushed": self.pushed,
            "deleted_remote": self.deleted_remote,
            "created_local": self.created_local,
            "updated_local": self.updated_local,
            "renamed_local": [list(pair) for pair in self.renamed_local],
            "pruned": self.pruned,
            "skipped": self.skipped,
            "env_updated": self.env_updated,
        }


class SyncEngine:
    """Reconciles a directory of val files with the user's remote vals.

    A sync runs these steps in order, sequentially:

    1. load ``vt.lock``
    2. push local changes: create vals for new files, push new versions
       for modified files
    3. offer to delete remote vals whose local file was removed
    4. pull remote changes: write new vals, update changed files, follow
       renames, drop entries of vals deleted remotely
    5. rewrite the env file if the remote environment changed
    6. save ``vt.lock``

    Local changes are pushed before remote changes are pulled, so when the
    same val changed on both sides the local version wins.

    Any API or file error aborts the run before the lock file is written.
    A 404 on a push or delete means the val is already gone remotely; its
    entry is dropped instead.
    Declining a confirmation only skips that one action; it is offered
    again on the next sync.
    """

    def __init__(
        self,
        client: VtClient,
        confirm: ConfirmFunc = never_confirm,
        output: Optional[OutputFormatter] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Authenticated API client
            confirm: Callback asked before creating, deleting or overwriting;
                     returns True to proceed
            output: Output formatter for progress messages
        """
        self.client = client
        self.confirm = confirm
        self.output = output or OutputFormatter(quiet=True)

    def sync(self, workspace: SyncWorkspace) -> SyncResult:
        """Run a full sync of ``workspace``.

        Args:
            workspace: Paths of the scripts directory, lock file and env file

        Returns:
            SyncResult with the updated lock file and what was changed

        Raises:
            VtLockFileNotFoundError: If the workspace has no lock file
            VtLockFileError: If the lock file is malformed
            VtSyncError: If a local file cannot be read or written
            VtAPIError: If a remote call fails
        """
        lock = LockFile.load(workspace.lock_path)
        result = SyncResult(lock=lock)

        self._push_local_changes(workspace, lock, result)
        self._handle_local_deletions(workspace, lock, result)
        self._pull_remote_changes(workspace, lock, result)
        self._sync_env(workspace, result)

        try:
            lock.save(workspace.lock_path)
        except OSError as e:
            raise VtSyncError(f"Cannot write {workspace.lock_path}: {e}") from e
        logger.info(
            f"Sync complete: {result.remote_mutations} remote change(s), "
            f"{len(result.created_local) + len(result.updated_local)} local change(s)"
        )
        return result

    def _push_local_changes(
        self, workspace: SyncWorkspace, lock: LockFile, result: SyncResult
    ) -> None:
        for filename in workspace.local_files():
            content = read_val_file(workspace.file_path(filename))
            content_hash = hash_content(content)
            entry = lock.get(filename)

            if entry is not None:
                if entry.hash == content_hash:
                    continue
                try:
                    self.client.create_version(entry.id, content)
                except VtNotFoundError:
                    self.output.warning(
                        f"Val {entry.name} no longer exists remotely"
                    )
                    lock.remove(filename)
                    result.pruned.append(filename)
                else:
                    entry.hash = content_hash
                    result.pushed.append(filename)
                    self.output.info(f"Pushed new version of {entry.name}")
                    continue

            self._create_remote(workspace, lock, filename, content, result)

    def _create_remote(
        self,
        workspace: SyncWorkspace,
        lock: LockFile,
        filename: str,
        content: str,
        result: SyncResult,
    ) -> None:
        if not self.confirm(f"Create {filename} remotely?"):
            logger.debug(f"Skipped creating {filename}")
            result.skipped.append(filename)
            return
        name = filename[: -len(workspace.extension) - 1]
        val = self.client.create_val(name, content)
        lock.set(
            filename, LockEntry(id=val.id, name=val.name, hash=hash_content(content))
        )
        result.created_remote.append(filename)
        self.output.info(f"Created val {val.name}")

    def _handle_local_deletions(
        self, workspace: SyncWorkspace, lock: LockFile, result: SyncResult
    ) -> None:
        for filename, entry in list(lock.entries.items()):
            if workspace.file_path(filename).exists():
                continue
            if not self.confirm(f"Val {entry.name} was deleted. Delete it remotely?"):
                logger.debug(f"Kept remote val {entry.name}")
                result.skipped.append(filename)
                continue

            try:
                self.client.delete_val(entry.id)
            except VtNotFoundError:
                logger.debug(f"Val {entry.name} was already deleted remotely")
            lock.remove(filename)
            result.deleted_remote.append(filename)
            self.output.info(f"Deleted val {entry.name}")

    def _pull_remote_changes(
        self, workspace: SyncWorkspace, lock: LockFile, result: SyncResult
    ) -> None:
        user = self.client.get_current_user()
        vals = self.client.list_user_vals(user.id)
        logger.debug(f"Found {len(vals)} remote val(s) for {user.username}")

        try:
            workspace.scripts_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VtSyncError(f"Cannot create {workspace.scripts_dir}: {e}") from e

        for val in vals:
            filename = val_filename(val.name, workspace.extension)
            found = lock.find_by_id(val.id)

            if found is None:
                path = workspace.file_path(filename)
                if path.exists() and not self.confirm(
                    f"Overwrite local {filename} with remote val {val.name}?"
                ):
                    result.skipped.append(filename)
                    continue
                write_val_file(path, val.code)
                lock.set(
                    filename,
                    LockEntry(id=val.id, name=val.name, hash=hash_content(val.code)),
                )
                result.created_local.append(filename)
                self.output.info(f"Pulled new val {val.name} into {filename}")
                continue

            lock_key, entry = found
            if hash_content(val.code) != entry.hash:
                if self.confirm(f"Update {lock_key}?"):
                    fresh = self.client.get_val(val.id)
                    write_val_file(workspace.file_path(lock_key), fresh.code)
                    entry.hash = hash_content(fresh.code)
                    result.updated_local.append(lock_key)
                    self.output.info(f"Updated {lock_key}")
                else:
                    result.skipped.append(lock_key)

            if val.name != entry.name:
                self._rename_local(workspace, lock, lock_key, val.name, result)

        self._prune_deleted_remote(lock, {val.id for val in vals}, result)

    def _prune_deleted_remote(
        self, lock: LockFile, remote_ids: set[str], result: SyncResult
    ) -> None:
        """Drop entries whose val is missing from the remote listing.

        A local file left behind becomes unmapped and is offered for
        creation on the next sync.
        """
        for filename, entry in list(lock.entries.items()):
            if entry.id in remote_ids:
                continue
            lock.remove(filename)
            result.pruned.append(filename)
            self.output.info(f"Val {entry.name} was deleted remotely")

    def _rename_local(
        self,
        workspace: SyncWorkspace,
        lock: LockFile,
        old_filename: str,
        new_name: str,
        result: SyncResult,
    ) -> None:
        new_filename = val_filename(new_name, workspace.extension)
        old_path = workspace.file_path(old_filename)
        new_path = workspace.file_path(new_filename)

        if new_filename in lock or new_path.exists():
            self.output.warning(
                f"Cannot rename {old_filename} to {new_filename}: target exists"
            )
            result.skipped.append(old_filename)
            return

        if old_path.exists():
            try:
                old_path.rename(new_path)
            except OSError as e:
                raise VtSyncError(
                    f"Cannot rename {old_filename} to {new_filename}: {e}"
                ) from e
        lock.rename(old_filename, new_filename, new_name)
        result.renamed_local.append((old_filename, new_filename))
        self.output.info(f"Renamed {old_filename} to {new_filename}")

    def _sync_env(self, workspace: SyncWorkspace, result: SyncResult) -> None:
        remote_env: dict[str, str] = {}
        for key, value in self.client.get_env().items():
            if is_env_key(key):
                remote_env[key] = value
            else:
                logger.warning(f"Skipping environment variable {key!r}: invalid name")

        env_path = workspace.env_path
        local_env: dict[str, str] = {}
        try:
            if env_path.exists():
                local_env = parse_env_file(env_path.read_text(encoding="utf-8"))

            if remote_env == local_env:
                return

            env_path.write_text(format_env_file(remote_env), encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise VtSyncError(f"Cannot update {env_path}: {e}") from e
        result.env_updated = True
        self.output.info(f"Updated {env_path.name}")
