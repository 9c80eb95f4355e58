"""Tests for the transactional directory-merge engine."""

import os
from pathlib import Path

import pytest
from anomaly_modpack import BackupTargetNotCleanError
from anomaly_modpack import Composite
from anomaly_modpack import DirectorySource
from anomaly_modpack import GuardedTransaction
from anomaly_modpack import InstallFailedAndUnrecoverableError
from anomaly_modpack import InstallFailedButRevertedError
from anomaly_modpack import Nested
from anomaly_modpack import TransactionSource
from anomaly_modpack import guarded_install


def write_tree(root: Path, files: dict[str, str]) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def snapshot(root: Path) -> dict[str, bytes]:
    """Relative path -> bytes of every file under root."""
    return {
        str(Path(dirpath, name).relative_to(root)): Path(dirpath, name).read_bytes()
        for dirpath, _dirs, names in os.walk(root)
        for name in names
    }


class FailingSource:
    """Source that writes its inner files, then fails."""

    def __init__(self, inner: TransactionSource, extra: set[Path] = frozenset()):
        self.inner = inner
        self.extra = set(extra)

    def relative_paths(self) -> set[Path]:
        return self.inner.relative_paths() | self.extra

    def apply(self, destination_root: Path) -> None:
        self.inner.apply(destination_root)
        raise OSError("disk full")


def test_relative_paths_lists_files_only(tmp_path):
    """Test enumeration covers nested files and skips directories."""
    src = write_tree(
        tmp_path / "src",
        {"config.rs": "", "uwu.rs": "", "dir/config.rs": "", "dir2/config.rs": "", "dir2/dir2/config.rs": ""},
    )
    (src / "empty").mkdir()

    paths = DirectorySource(src).relative_paths()

    assert paths == {Path(p) for p in ["config.rs", "uwu.rs", "dir/config.rs", "dir2/config.rs", "dir2/dir2/config.rs"]}


def test_relative_paths_equal_written_files(tmp_path):
    """Test apply into an empty destination writes exactly relative_paths()."""
    src = write_tree(tmp_path / "src", {"a.txt": "1", "x/b.txt": "2", "x/y/c.txt": "3"})
    dest = tmp_path / "dest"

    source = DirectorySource(src)
    source.apply(dest)

    assert {Path(p) for p in snapshot(dest)} == source.relative_paths()
    assert snapshot(dest) == snapshot(src)


def test_apply_merges_without_deleting(tmp_path):
    """Test apply overwrites collisions and keeps unrelated files."""
    src = write_tree(tmp_path / "src", {"a.txt": "new"})
    dest = write_tree(tmp_path / "dest", {"a.txt": "old", "keep.txt": "keep"})

    DirectorySource(src).apply(dest)

    assert snapshot(dest) == {"a.txt": b"new", "keep.txt": b"keep"}


def test_directory_source_requires_directory(tmp_path):
    """Test construction fails eagerly on a non-directory."""
    (tmp_path / "file").write_text("x")

    with pytest.raises(NotADirectoryError):
        DirectorySource(tmp_path / "file")
    with pytest.raises(NotADirectoryError):
        DirectorySource(tmp_path / "missing")


def test_nested_prefixes_paths(tmp_path):
    """Test Nested relocates paths and writes under the prefix."""
    src = write_tree(tmp_path / "src", {"config.rs": "", "dir/config.rs": ""})
    dest = tmp_path / "dest"

    nested = Nested(DirectorySource(src), "mo2")
    nested.apply(dest)

    assert nested.relative_paths() == {Path("mo2/config.rs"), Path("mo2/dir/config.rs")}
    assert {Path(p) for p in snapshot(dest)} == nested.relative_paths()


def test_nested_rejects_escaping_prefix(tmp_path):
    """Test the prefix must stay inside the destination."""
    source = DirectorySource(tmp_path)

    with pytest.raises(ValueError):
        Nested(source, "../outside")
    with pytest.raises(ValueError):
        Nested(source, tmp_path)


def test_composite_union_and_last_write_wins(tmp_path):
    """Test Composite unions paths and applies members in order."""
    first = write_tree(tmp_path / "first", {"same.txt": "first", "one.txt": "1"})
    second = write_tree(tmp_path / "second", {"same.txt": "second", "two.txt": "2"})
    dest = tmp_path / "dest"

    plan = Composite([DirectorySource(first)]).add(DirectorySource(second))
    plan.apply(dest)

    assert plan.relative_paths() == {Path("same.txt"), Path("one.txt"), Path("two.txt")}
    assert snapshot(dest) == {"same.txt": b"second", "one.txt": b"1", "two.txt": b"2"}


def test_composite_of_nested_sources(tmp_path):
    """Test wrappers nest uniformly."""
    a = write_tree(tmp_path / "a", {"gamedata/a.script": "a"})
    b = write_tree(tmp_path / "b", {"gamedata/b.script": "b"})

    plan = Composite([Nested(DirectorySource(a), "AddonA"), Nested(DirectorySource(b), "AddonB")])
    plan.apply(tmp_path / "mods")

    assert isinstance(plan, TransactionSource)
    assert plan.relative_paths() == {Path("AddonA/gamedata/a.script"), Path("AddonB/gamedata/b.script")}
    assert snapshot(tmp_path / "mods") == {"AddonA/gamedata/a.script": b"a", "AddonB/gamedata/b.script": b"b"}


def test_guarded_success(tmp_path):
    """Test a committed transaction overwrites A, keeps B, adds C, removes the backup."""
    dest = write_tree(tmp_path / "dest", {"A": "old A", "B": "old B"})
    src = write_tree(tmp_path / "src", {"A": "new A", "sub/C": "new C"})
    backup = tmp_path / "backup"

    tr = GuardedTransaction(DirectorySource(src), dest, backup)
    tr.run()

    assert tr.committed
    assert snapshot(dest) == {"A": b"new A", "B": b"old B", "sub/C": b"new C"}
    assert not backup.exists()


def test_guarded_backup_copies_existing_files_only(tmp_path):
    """Test only files present at the destination are backed up."""
    dest = write_tree(tmp_path / "dest", {"resources/ModOrganizer.ini": "ini", "B": "b"})
    src = write_tree(tmp_path / "src", {"resources/ModOrganizer.ini": "new", "resources/nxmhandler.ini": "new"})
    backup = tmp_path / "backup"

    with GuardedTransaction(DirectorySource(src), dest, backup) as tr:
        tr.backup()
        assert snapshot(backup) == {"resources/ModOrganizer.ini": b"ini"}

    assert not backup.exists()
    assert snapshot(dest) == {"resources/ModOrganizer.ini": b"ini", "B": b"b"}


def test_guarded_failure_restores_previous_state(tmp_path):
    """Test a failed apply is rolled back byte for byte."""
    dest = write_tree(tmp_path / "dest", {"A": "old A", "B": "old B"})
    before = snapshot(dest)
    src = write_tree(tmp_path / "src", {"A": "new A", "sub/deeper/C": "new C"})
    backup = tmp_path / "backup"

    with pytest.raises(InstallFailedButRevertedError) as exc_info:
        GuardedTransaction(FailingSource(DirectorySource(src)), dest, backup).run()

    assert isinstance(exc_info.value.original, OSError)
    assert snapshot(dest) == before
    # Directories created by the failed apply are gone too
    assert sorted(p.name for p in dest.iterdir()) == ["A", "B"]
    assert not backup.exists()


def test_guarded_failure_removes_created_destination_root(tmp_path):
    """Test a destination root created by the failed apply is removed again."""
    src = write_tree(tmp_path / "src", {"Addon/gamedata/a.ltx": "a"})
    dest = tmp_path / "mods"
    backup = tmp_path / "backup"

    with pytest.raises(InstallFailedButRevertedError):
        GuardedTransaction(FailingSource(DirectorySource(src)), dest, backup).run()

    assert not dest.exists()
    assert not backup.exists()


def test_guarded_failure_keeps_preexisting_directories(tmp_path):
    """Test rollback only removes directories it created."""
    dest = write_tree(tmp_path / "dest", {"sub/keep.txt": "keep"})
    (dest / "empty").mkdir()
    src = write_tree(tmp_path / "src", {"sub/new.txt": "new", "empty/new.txt": "new"})

    with pytest.raises(InstallFailedButRevertedError):
        GuardedTransaction(FailingSource(DirectorySource(src)), dest, tmp_path / "backup").run()

    assert snapshot(dest) == {"sub/keep.txt": b"keep"}
    assert (dest / "empty").is_dir()


def test_guarded_unrecoverable_keeps_backup(tmp_path, monkeypatch):
    """Test a failing rollback surfaces both errors and preserves the backup."""
    dest = write_tree(tmp_path / "dest", {"A": "old A"})
    src = write_tree(tmp_path / "src", {"A": "new A"})
    backup = tmp_path / "backup"
    tr = GuardedTransaction(FailingSource(DirectorySource(src)), dest, backup)

    def broken_rollback() -> None:
        raise PermissionError("locked")

    monkeypatch.setattr(tr, "rollback", broken_rollback)

    with pytest.raises(InstallFailedAndUnrecoverableError) as exc_info:
        tr.run()

    error = exc_info.value
    assert isinstance(error.original, OSError)
    assert isinstance(error.rollback_error, PermissionError)
    assert error.backup_dir == backup
    assert str(backup) in str(error)
    assert snapshot(backup) == {"A": b"old A"}


def test_guarded_backup_target_not_clean(tmp_path):
    """Test a non-empty backup directory is refused and left untouched."""
    dest = write_tree(tmp_path / "dest", {"A": "old"})
    src = write_tree(tmp_path / "src", {"A": "new"})
    backup = write_tree(tmp_path / "backup", {"precious": "data"})

    with pytest.raises(BackupTargetNotCleanError):
        GuardedTransaction(DirectorySource(src), dest, backup).run()

    assert snapshot(backup) == {"precious": b"data"}
    assert snapshot(dest) == {"A": b"old"}


def test_guarded_backup_target_is_file(tmp_path):
    """Test a file at the backup path is refused."""
    (tmp_path / "backup").write_text("x")
    src = write_tree(tmp_path / "src", {"A": "new"})

    with pytest.raises(BackupTargetNotCleanError):
        GuardedTransaction(DirectorySource(src), tmp_path / "dest", tmp_path / "backup").run()


def test_guarded_existing_empty_backup_dir(tmp_path):
    """Test an existing empty backup directory is accepted."""
    backup = tmp_path / "backup"
    backup.mkdir()
    src = write_tree(tmp_path / "src", {"A": "new"})

    GuardedTransaction(DirectorySource(src), tmp_path / "dest", backup).run()

    assert (tmp_path / "dest" / "A").read_text() == "new"
    assert not backup.exists()


def test_guarded_empty_source(tmp_path):
    """Test an empty plan is a successful no-op."""
    dest = write_tree(tmp_path / "dest", {"A": "a"})

    tr = GuardedTransaction(Composite(), dest, tmp_path / "backup")
    tr.run()

    assert tr.committed
    assert snapshot(dest) == {"A": b"a"}
    assert not (tmp_path / "backup").exists()


def test_apply_requires_backup(tmp_path):
    """Test apply refuses to run without a backup."""
    tr = GuardedTransaction(Composite(), tmp_path, tmp_path / "backup")

    with pytest.raises(RuntimeError):
        tr.apply()


def test_interrupted_run_keeps_backup(tmp_path):
    """Test an interrupt during apply leaves the backup as recovery artifact."""

    class Interrupted(BaseException):
        pass

    class InterruptedSource(FailingSource):
        def apply(self, destination_root: Path) -> None:
            self.inner.apply(destination_root)
            raise Interrupted

    dest = write_tree(tmp_path / "dest", {"A": "old"})
    src = write_tree(tmp_path / "src", {"A": "new"})
    backup = tmp_path / "backup"

    with pytest.raises(Interrupted):
        GuardedTransaction(InterruptedSource(DirectorySource(src)), dest, backup).run()

    assert snapshot(backup) == {"A": b"old"}


def test_guarded_install_directory(tmp_path):
    """Test guarded_install merges a tree and cleans its temporary backup."""
    dest = write_tree(tmp_path / "mo2", {"ModOrganizer.ini": "old"})
    src = write_tree(tmp_path / "prepared", {"ModOrganizer.ini": "new", "plugins/x.dll": "x"})

    guarded_install(src, dest)

    assert snapshot(dest) == {"ModOrganizer.ini": b"new", "plugins/x.dll": b"x"}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["mo2", "prepared"]
