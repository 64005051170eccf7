"""Tests for the vt.lock file and workspace layout."""

import json
import stat

import pytest

from pyvt.exceptions import VtLockFileError, VtLockFileNotFoundError
from pyvt.sync import LockEntry, LockFile, SyncWorkspace, val_filename


@pytest.fixture
def lock():
    return LockFile(
        {
            "b.tsx": LockEntry(id="2", name="b", hash="hb"),
            "a.tsx": LockEntry(id="1", name="a", hash="ha"),
        }
    )


class TestLockFile:
    """Tests for LockFile."""

    def test_val_filename(self):
        assert val_filename("hello") == "hello.tsx"
        assert val_filename("hello", "ts") == "hello.ts"

    def test_find_by_id(self, lock):
        assert lock.find_by_id("2") == ("b.tsx", LockEntry(id="2", name="b", hash="hb"))
        assert lock.find_by_id("missing") is None

    def test_rename(self, lock):
        entry = lock.rename("a.tsx", "c.tsx", "c")

        assert "a.tsx" not in lock
        assert lock.get("c.tsx") is entry
        assert entry.name == "c"
        assert entry.id == "1"

    def test_iteration_is_a_snapshot(self, lock):
        """Test that entries can be removed while iterating."""
        for filename in lock:
            lock.remove(filename)
        assert len(lock) == 0

    def test_save_sorted_and_indented(self, lock, tmp_path):
        path = tmp_path / "vt.lock"

        lock.save(path)

        text = path.read_text()
        assert text.index('"a.tsx"') < text.index('"b.tsx"')
        assert text.endswith("\n")
        assert json.loads(text) == {
            "a.tsx": {"id": "1", "name": "a", "hash": "ha"},
            "b.tsx": {"id": "2", "name": "b", "hash": "hb"},
        }

    def test_save_leaves_no_temp_files(self, lock, tmp_path):
        lock.save(tmp_path / "vt.lock")
        lock.save(tmp_path / "vt.lock")

        assert [p.name for p in tmp_path.iterdir()] == ["vt.lock"]

    def test_new_file_is_world_readable(self, lock, tmp_path):
        path = tmp_path / "vt.lock"

        lock.save(path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_save_keeps_existing_mode(self, lock, tmp_path):
        path = tmp_path / "vt.lock"
        path.write_text("{}")
        path.chmod(0o664)

        lock.save(path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o664

    def test_load_round_trip(self, lock, tmp_path):
        path = tmp_path / "vt.lock"
        lock.save(path)

        assert LockFile.load(path) == lock

    def test_load_missing(self, tmp_path):
        with pytest.raises(VtLockFileNotFoundError) as exc_info:
            LockFile.load(tmp_path / "vt.lock")
        assert exc_info.value.path == str(tmp_path / "vt.lock")

    def test_load_malformed_json(self, tmp_path):
        path = tmp_path / "vt.lock"
        path.write_text("[1,")

        with pytest.raises(VtLockFileError, match="Malformed lock file"):
            LockFile.load(path)

    def test_load_not_an_object(self, tmp_path):
        path = tmp_path / "vt.lock"
        path.write_text("[]")

        with pytest.raises(VtLockFileError, match="JSON object"):
            LockFile.load(path)

    def test_load_entry_missing_field(self, tmp_path):
        path = tmp_path / "vt.lock"
        path.write_text(json.dumps({"a.tsx": {"id": "1", "name": "a"}}))

        with pytest.raises(VtLockFileError, match="Invalid lock entry"):
            LockFile.load(path)


class TestSyncWorkspace:
    """Tests for the workspace layout."""

    def test_from_root(self, tmp_path):
        ws = SyncWorkspace.from_root(tmp_path)
        assert ws.scripts_dir == tmp_path / "vals"
        assert ws.lock_path == tmp_path / "vt.lock"
        assert ws.env_path == tmp_path / ".env"

    def test_initialize(self, tmp_path):
        ws = SyncWorkspace.from_root(tmp_path / "new")

        ws.initialize()

        assert ws.scripts_dir.is_dir()
        assert LockFile.load(ws.lock_path) == LockFile()

    def test_initialize_twice(self, tmp_path):
        ws = SyncWorkspace.from_root(tmp_path)
        ws.initialize()

        with pytest.raises(FileExistsError):
            ws.initialize()

    def test_local_files(self, tmp_path):
        ws = SyncWorkspace.from_root(tmp_path)
        ws.initialize()
        (ws.scripts_dir / "b.tsx").write_text("")
        (ws.scripts_dir / "a.tsx").write_text("")
        (ws.scripts_dir / "readme.md").write_text("")
        (ws.scripts_dir / "nested.tsx").mkdir()

        assert ws.local_files() == ["a.tsx", "b.tsx"]

    def test_local_files_without_scripts_dir(self, tmp_path):
        assert SyncWorkspace.from_root(tmp_path).local_files() == []
