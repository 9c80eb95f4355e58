"""Transactional directory merges.

A merge plan is built from small sources that all expose the same two
operations (enumerate files, apply to a root):

- DirectorySource: an existing directory tree
- Nested: another source relocated under a prefix directory
- Composite: an ordered list of sources, applied in order (last write wins)

GuardedTransaction wraps any plan against a live destination root: files that
would be overwritten are copied to a backup directory first, and a failed
apply is rolled back from that backup. The backup directory lives only as
long as the transaction; it is kept on disk solely when the destination could
not be restored (or the run was interrupted) so a human can recover.
"""

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType

from .exceptions import BackupTargetNotCleanError
from .exceptions import InstallFailedAndUnrecoverableError
from .exceptions import InstallFailedButRevertedError
from .protocols import TransactionSource

logger = logging.getLogger(__name__)


def _raise(error: OSError) -> None:
    raise error


class DirectorySource:
    """Readable directory tree to merge into a destination.

    The whole tree is walked at construction time, so an unreadable entry
    fails here rather than halfway through a merge.
    """

    def __init__(self, root: Path):
        root = Path(root)
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")

        for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
            for filename in filenames:
                path = Path(dirpath) / filename
                if not os.access(path, os.R_OK):
                    raise PermissionError(f"File is not readable: {path}")

        self.root = root

    def __repr__(self) -> str:
        return f"DirectorySource({self.root!s})"

    def _files(self) -> Iterator[Path]:
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                yield Path(dirpath) / filename

    def relative_paths(self) -> set[Path]:
        return {path.relative_to(self.root) for path in self._files()}

    def apply(self, destination_root: Path) -> None:
        destination_root.mkdir(parents=True, exist_ok=True)
        for path in self._files():
            target = destination_root / path.relative_to(self.root)
            target.parent.mkdir(parents=True, exist_ok=True)
            # copyfile, not copy2: a directory in the way must fail, not swallow the file
            shutil.copyfile(path, target)
            shutil.copystat(path, target)


class Nested:
    """Source relocated under an extra relative directory."""

    def __init__(self, inner: TransactionSource, prefix: str | Path):
        prefix = Path(prefix)
        if prefix.is_absolute() or ".." in prefix.parts:
            raise ValueError(f"Prefix must be a relative path inside the destination: {prefix}")
        self.inner = inner
        self.prefix = prefix

    def __repr__(self) -> str:
        return f"Nested({self.inner!r}, {str(self.prefix)!r})"

    def relative_paths(self) -> set[Path]:
        return {self.prefix / path for path in self.inner.relative_paths()}

    def apply(self, destination_root: Path) -> None:
        self.inner.apply(destination_root / self.prefix)


class Composite:
    """Ordered collection of sources merged one after another."""

    def __init__(self, sources: Iterable[TransactionSource] = ()):
        self.sources: list[TransactionSource] = list(sources)

    def __repr__(self) -> str:
        return f"Composite({self.sources!r})"

    def __iter__(self) -> Iterator[TransactionSource]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    def add(self, source: TransactionSource) -> "Composite":
        self.sources.append(source)
        return self

    def relative_paths(self) -> set[Path]:
        paths: set[Path] = set()
        for source in self.sources:
            paths |= source.relative_paths()
        return paths

    def apply(self, destination_root: Path) -> None:
        for source in self.sources:
            source.apply(destination_root)


class GuardedTransaction:
    """
    Merge a source into a live root with automatic backup and rollback.

    Usage:
        >>> GuardedTransaction(plan, mods_root, backup_dir).run()

    or, to drive the phases separately:
        >>> with GuardedTransaction(plan, mods_root, backup_dir) as tr:
        ...     tr.backup()
        ...     tr.apply()

    Leaving the `with` block deletes the backup directory unless the
    destination could not be restored.
    """

    def __init__(self, inner: TransactionSource, destination_root: Path, backup_root: Path):
        self.inner = inner
        self.destination_root = Path(destination_root)
        self.backup_root = Path(backup_root)
        self.committed = False
        self.keep_backup = False
        self._owns_backup = False
        self._paths: set[Path] | None = None
        self._created_dirs: list[Path] = []
        self._created_root = False

    def __enter__(self) -> "GuardedTransaction":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None and not isinstance(exc, Exception):
            # Interrupted mid-run (KeyboardInterrupt, SystemExit): the backup is the recovery artifact
            self.keep_backup = True
            logger.error(f"Transaction interrupted; original files kept in {self.backup_root}")
        self.close()

    def _relative_paths(self) -> set[Path]:
        if self._paths is None:
            self._paths = self.inner.relative_paths()
        return self._paths

    def _check_backup_root(self) -> None:
        if self.backup_root.is_file():
            raise BackupTargetNotCleanError(
                f"Backup path is a file: {self.backup_root}",
                context={"backup_root": str(self.backup_root)},
            )
        if self.backup_root.is_dir() and any(self.backup_root.iterdir()):
            raise BackupTargetNotCleanError(
                f"Backup directory is not empty: {self.backup_root}",
                context={"backup_root": str(self.backup_root)},
            )

    def backup(self) -> None:
        """
        Copy every destination file the source would overwrite into backup_root.

        Files that do not exist yet are not backed up; their absence is what
        rollback restores.

        Raises:
            BackupTargetNotCleanError: If backup_root is a file or a non-empty directory
            OSError: If a destination file could not be copied
        """
        self._check_backup_root()
        self.backup_root.mkdir(parents=True, exist_ok=True)
        self._owns_backup = True

        paths = self._relative_paths()
        self._created_root = not self.destination_root.exists()
        created_dirs: set[Path] = set()
        backed_up = 0
        for path in paths:
            for parent in path.parents:
                if parent != Path(".") and not (self.destination_root / parent).exists():
                    created_dirs.add(parent)

            current = self.destination_root / path
            if not current.is_file():
                continue
            target = self.backup_root / path
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(current, target)
            backed_up += 1

        # Deepest first, so rollback can rmdir children before parents
        self._created_dirs = sorted(created_dirs, key=lambda p: len(p.parts), reverse=True)
        logger.debug(f"Backed up {backed_up} of {len(paths)} files from {self.destination_root} to {self.backup_root}")

    def apply(self) -> None:
        """
        Merge the source into destination_root, rolling back on failure.

        Raises:
            InstallFailedButRevertedError: Apply failed, destination restored
            InstallFailedAndUnrecoverableError: Apply and restore both failed;
                backup_root is kept for manual recovery
        """
        if not self._owns_backup:
            raise RuntimeError("backup() must succeed before apply()")

        try:
            self.inner.apply(self.destination_root)
        except Exception as e:
            logger.warning(f"Merge into {self.destination_root} failed, rolling back: {e}")
            try:
                self.rollback()
            except Exception as rollback_error:
                self.keep_backup = True
                logger.error(
                    f"Rollback of {self.destination_root} failed: {rollback_error}. "
                    f"Original files are in {self.backup_root}"
                )
                raise InstallFailedAndUnrecoverableError(
                    e,
                    rollback_error,
                    self.backup_root,
                    context={"destination_root": str(self.destination_root)},
                ) from e
            logger.info(f"Rolled back {self.destination_root} to its previous state")
            raise InstallFailedButRevertedError(
                e, context={"destination_root": str(self.destination_root)}
            ) from e

        self.committed = True
        logger.info(f"Committed {len(self._relative_paths())} files into {self.destination_root}")

    def rollback(self) -> None:
        """Remove every file the source touches, then restore the backup tree."""
        for path in self._relative_paths():
            target = self.destination_root / path
            if target.is_file() or target.is_symlink():
                target.unlink(missing_ok=True)

        for directory in self._created_dirs:
            candidate = self.destination_root / directory
            if candidate.is_dir() and not any(candidate.iterdir()):
                candidate.rmdir()

        if self._created_root:
            # Nothing existed before, so there is no backup to restore
            if self.destination_root.is_dir() and not any(self.destination_root.iterdir()):
                self.destination_root.rmdir()
            return

        shutil.copytree(self.backup_root, self.destination_root, dirs_exist_ok=True)

    def run(self) -> None:
        """Backup, apply, and clean up the backup directory."""
        with self:
            self.backup()
            self.apply()

    def close(self) -> None:
        """Delete the backup directory unless it must be kept for recovery."""
        if not self._owns_backup or self.keep_backup:
            return
        try:
            shutil.rmtree(self.backup_root)
        except OSError as e:
            logger.warning(f"Could not delete backup directory {self.backup_root}: {e}")
        self._owns_backup = False


def guarded_install(
    source_dir: Path,
    destination_root: Path,
    backup_root: Path | None = None,
) -> None:
    """
    Merge a whole directory tree into destination_root as one guarded transaction.

    Args:
        source_dir: Prepared tree to install
        destination_root: Live directory to merge into (created if needed)
        backup_root: Empty or missing directory for the backup; a temporary
            directory beside destination_root when omitted

    Raises:
        InstallFailedButRevertedError: Merge failed, destination restored
        InstallFailedAndUnrecoverableError: Merge and restore failed
    """
    source = DirectorySource(source_dir)
    destination_root.mkdir(parents=True, exist_ok=True)
    if backup_root is None:
        backup_root = Path(tempfile.mkdtemp(prefix=f".{destination_root.name}-backup-", dir=destination_root.parent))

    GuardedTransaction(source, destination_root, backup_root).run()
